import pytest

from brightsteps.errors import NotFound


def _upsert(cache_store, key="a" * 64, item_id="fc_001", **overrides):
    values = dict(
        cache_key=key,
        module_type="factcards",
        pack_id="animals",
        item_id=item_id,
        prompt_version="learn-v1",
        provider="openai",
        model="gpt-5-mini",
        content_payload={"headline": "First"},
    )
    values.update(overrides)
    return cache_store.upsert(**values)


class TestGenerationCacheStore:
    def test_get_missing_returns_none(self, cache_store):
        assert cache_store.get("nope") is None

    def test_upsert_then_get(self, cache_store, factcards_pack):
        created = _upsert(cache_store)
        fetched = cache_store.get(created.cache_key)
        assert fetched.content_payload == {"headline": "First"}
        assert fetched.flagged is False
        assert fetched.audio_ref is None

    def test_upsert_replaces_every_column(self, cache_store, factcards_pack):
        first = _upsert(
            cache_store,
            audio_asset_id="asset_old",
            audio_relative_path="animals/audio/old.mp3",
            audio_mime_type="audio/mpeg",
            flagged=True,
        )
        second = _upsert(cache_store, content_payload={"headline": "Second"})

        assert second.cache_key == first.cache_key
        assert second.content_payload == {"headline": "Second"}
        assert second.audio_asset_id is None
        assert second.audio_relative_path is None
        assert second.flagged is False
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    def test_one_entry_per_key(self, cache_store, factcards_pack):
        _upsert(cache_store)
        _upsert(cache_store, content_payload={"headline": "Again"})
        assert len(cache_store.list_by_pack_item("animals", "fc_001")) == 1

    def test_set_flagged(self, cache_store, factcards_pack):
        entry = _upsert(cache_store)
        flagged = cache_store.set_flagged(entry.cache_key)
        assert flagged.flagged is True
        assert cache_store.get(entry.cache_key).flagged is True
        assert cache_store.set_flagged(entry.cache_key, False).flagged is False

    def test_set_flagged_missing(self, cache_store):
        with pytest.raises(NotFound):
            cache_store.set_flagged("missing")

    def test_invalidate(self, cache_store, factcards_pack):
        entry = _upsert(cache_store)
        assert cache_store.invalidate(entry.cache_key) is True
        assert cache_store.get(entry.cache_key) is None
        assert cache_store.invalidate(entry.cache_key) is False

    def test_list_by_pack_item_variants(self, cache_store, factcards_pack):
        _upsert(cache_store, key="a" * 64, prompt_version="learn-v1")
        _upsert(cache_store, key="b" * 64, prompt_version="learn-v2")
        _upsert(cache_store, key="c" * 64, item_id="fc_002")

        entries = cache_store.list_by_pack_item("animals", "fc_001")
        assert {e.prompt_version for e in entries} == {"learn-v1", "learn-v2"}
        assert len(cache_store.list_by_pack("animals")) == 3

    def test_delete_by_pack(self, cache_store, factcards_pack):
        _upsert(cache_store, key="a" * 64)
        _upsert(cache_store, key="b" * 64, item_id="fc_002")
        assert cache_store.delete_by_pack("animals") == 2
        assert cache_store.list_by_pack("animals") == []
        assert cache_store.delete_by_pack("animals") == 0
