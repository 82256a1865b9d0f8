import json

import pytest
from click.testing import CliRunner

from brightsteps.cli import cli
from brightsteps.db import dispose_engines


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.setenv("BRIGHTSTEPS_DATABASE_URL", f"sqlite:///{tmp_path / 'cli.sqlite'}")
    monkeypatch.setenv("BRIGHTSTEPS_UPLOAD_DIR", str(tmp_path / "uploads"))
    yield CliRunner()
    dispose_engines()


@pytest.fixture
def pack_file(tmp_path, factcards_doc):
    path = tmp_path / "animals.json"
    path.write_text(json.dumps(factcards_doc), encoding="utf-8")
    return path


def _create_and_save(runner, pack_file):
    result = runner.invoke(cli, [
        "create-pack", "--title", "Animal Facts", "--module", "factcards", "--pack-id", "animals",
    ])
    assert result.exit_code == 0, result.output
    result = runner.invoke(cli, ["save-pack", "animals", str(pack_file)])
    assert result.exit_code == 0, result.output


def _cache_key(runner):
    result = runner.invoke(cli, ["entries", "--pack-id", "animals", "--item-id", "fc_001"])
    return result.output.split()[0]


class TestCli:
    def test_init_db(self, runner):
        result = runner.invoke(cli, ["init-db"])
        assert result.exit_code == 0
        assert "Database initialized" in result.output

    def test_create_and_list(self, runner):
        result = runner.invoke(cli, ["create-pack", "--title", "Words", "--module", "vocabvoice"])
        assert result.exit_code == 0
        assert "[OK] vocabvoice-" in result.output

        result = runner.invoke(cli, ["list-packs"])
        assert "Words" in result.output

    def test_create_duplicate_fails(self, runner):
        args = ["create-pack", "--title", "A", "--module", "factcards", "--pack-id", "dup"]
        assert runner.invoke(cli, args).exit_code == 0
        result = runner.invoke(cli, args)
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_save_pack_reports_issues(self, runner, tmp_path):
        runner.invoke(cli, ["create-pack", "--title", "A", "--module", "factcards", "--pack-id", "draft"])
        doc = tmp_path / "draft.json"
        doc.write_text(json.dumps({"items": [{"prompt": "Q"}]}), encoding="utf-8")

        result = runner.invoke(cli, ["save-pack", "draft", str(doc)])
        assert result.exit_code == 0
        assert "saved (1 items)" in result.output
        assert "/items/0/answer" in result.output

    def test_generate_then_history(self, runner, pack_file):
        _create_and_save(runner, pack_file)

        result = runner.invoke(cli, [
            "generate", "--module", "factcards", "--pack-id", "animals", "--item-id", "fc_001",
        ])
        assert result.exit_code == 0, result.output
        assert "[OK] fc_001" in result.output
        assert "audio: /api/assets/" in result.output

        result = runner.invoke(cli, ["history", "--pack-id", "animals", "--item-id", "fc_001"])
        assert "[success]" in result.output

    def test_generate_unknown_item_fails(self, runner, pack_file):
        _create_and_save(runner, pack_file)
        result = runner.invoke(cli, [
            "generate", "--module", "factcards", "--pack-id", "animals", "--item-id", "nope",
        ])
        assert result.exit_code == 1
        assert "[FAIL] nope" in result.output

    def test_generate_defaults_to_every_item(self, runner, pack_file):
        _create_and_save(runner, pack_file)
        result = runner.invoke(cli, ["generate", "--module", "factcards", "--pack-id", "animals"])
        assert result.exit_code == 0, result.output
        assert "[OK] fc_001" in result.output
        assert "[OK] fc_002" in result.output

        entries = runner.invoke(cli, ["entries", "--pack-id", "animals"]).output
        assert "fc_001" in entries
        assert "fc_002" in entries

    def test_generate_every_item_collects_failures(self, runner, pack_file):
        _create_and_save(runner, pack_file)
        result = runner.invoke(cli, ["generate", "--module", "vocabvoice", "--pack-id", "animals"])
        assert result.exit_code == 1
        assert "[FAIL] fc_001" in result.output
        assert "[FAIL] fc_002" in result.output

    def test_generate_every_item_of_unknown_pack(self, runner):
        result = runner.invoke(cli, ["generate", "--module", "factcards", "--pack-id", "ghost"])
        assert result.exit_code == 1
        assert "[FAIL] Pack not found: ghost" in result.output

    def test_flag_and_invalidate(self, runner, pack_file):
        _create_and_save(runner, pack_file)
        runner.invoke(cli, ["generate", "--module", "factcards", "--pack-id", "animals", "--item-id", "fc_001"])
        key = _cache_key(runner)

        result = runner.invoke(cli, ["flag", key])
        assert "flagged=True" in result.output
        result = runner.invoke(cli, ["entries", "--pack-id", "animals"])
        assert "[flagged]" in result.output

        result = runner.invoke(cli, ["invalidate", key])
        assert "invalidated" in result.output
        result = runner.invoke(cli, ["invalidate", key])
        assert "No cache entry" in result.output

    def test_flag_unknown_key(self, runner):
        result = runner.invoke(cli, ["flag", "deadbeef"])
        assert result.exit_code == 1

    def test_read_asset(self, runner, pack_file, tmp_path):
        _create_and_save(runner, pack_file)
        runner.invoke(cli, ["generate", "--module", "factcards", "--pack-id", "animals", "--item-id", "fc_001"])
        entries = runner.invoke(cli, ["entries", "--pack-id", "animals"]).output
        asset_id = entries.split("audio=")[1].split()[0]

        out = tmp_path / "clip.wav"
        result = runner.invoke(cli, ["read-asset", asset_id, "--output", str(out)])
        assert result.exit_code == 0, result.output
        assert out.read_bytes().startswith(b"RIFF")

    def test_delete_pack(self, runner, pack_file):
        _create_and_save(runner, pack_file)
        result = runner.invoke(cli, ["delete-pack", "animals", "--yes"])
        assert result.exit_code == 0
        assert "[OK] animals deleted" in result.output

        result = runner.invoke(cli, ["list-packs"])
        assert "(none)" in result.output

    def test_delete_pack_rejects_unsafe_id(self, runner, pack_file, tmp_path):
        _create_and_save(runner, pack_file)
        result = runner.invoke(cli, ["delete-pack", "..", "--yes"])
        assert result.exit_code == 1
        assert "Invalid pack id" in result.output
        assert (tmp_path / "cli.sqlite").exists()
        assert "animals" in runner.invoke(cli, ["list-packs"]).output

    def test_add_image_for_item(self, runner, pack_file, tmp_path):
        _create_and_save(runner, pack_file)
        image = tmp_path / "dog.png"
        image.write_bytes(b"\x89PNG....")

        result = runner.invoke(cli, [
            "add-image", "animals", str(image), "--mime-type", "image/png",
            "--alt", "A dog", "--item-id", "fc_001",
        ])
        assert result.exit_code == 0, result.output
        assert "[OK] asset_" in result.output

        result = runner.invoke(cli, [
            "add-image", "animals", str(image), "--mime-type", "image/png", "--item-id", "nope",
        ])
        assert result.exit_code == 1

    def test_remove_item(self, runner, pack_file):
        _create_and_save(runner, pack_file)
        runner.invoke(cli, ["generate", "--module", "factcards", "--pack-id", "animals", "--item-id", "fc_001"])

        result = runner.invoke(cli, ["remove-item", "animals", "fc_001"])
        assert result.exit_code == 0, result.output
        assert "[OK] fc_001 removed (1 items left)" in result.output
        assert "(none)" in runner.invoke(cli, ["entries", "--pack-id", "animals"]).output

        result = runner.invoke(cli, ["remove-item", "animals", "fc_001"])
        assert result.exit_code == 1
