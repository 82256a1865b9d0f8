import pytest

from brightsteps.config import Settings
from brightsteps.core.assets import AssetStore
from brightsteps.core.cache_store import GenerationCacheStore
from brightsteps.core.coordinator import SingleFlightCoordinator
from brightsteps.core.history import GenerationHistoryLog
from brightsteps.core.packs import PackRepository
from brightsteps.core.service import ContentService
from brightsteps.db import dispose_engines, get_session_factory, init_db
from brightsteps.services.fallback_generator import FallbackGenerator


def factcards_payload(pack_id: str = "animals") -> dict:
    return {
        "schemaVersion": "2.0.0",
        "packId": pack_id,
        "moduleType": "factcards",
        "title": "Animal Facts",
        "description": "Simple facts about animals",
        "version": "1.0.0",
        "language": "en",
        "ageBand": "6-10",
        "topics": ["animals"],
        "settings": {"defaultSupportLevel": 2, "audioEnabledByDefault": True},
        "assets": [
            {"id": "img_cat", "kind": "image", "path": "images/cat.png", "alt": "A sleeping cat"},
        ],
        "items": [
            {
                "id": "fc_001",
                "type": "factcard",
                "topic": "animals",
                "prompt": "How many legs does a cat have?",
                "answer": "Four",
                "media": {"imageRef": "img_cat"},
            },
            {
                "id": "fc_002",
                "type": "factcard",
                "topic": "animals",
                "prompt": "What sound does a cow make?",
                "answer": "Moo",
            },
        ],
    }


def vocab_payload(pack_id: str = "big-words") -> dict:
    return {
        "schemaVersion": "2.0.0",
        "packId": pack_id,
        "moduleType": "vocabvoice",
        "title": "Big Words",
        "version": "1.0.0",
        "language": "en",
        "ageBand": "6-10",
        "topics": ["animals"],
        "assets": [
            {"id": "aud_elephant", "kind": "audio", "path": "audio/elephant.mp3"},
        ],
        "items": [
            {
                "id": "vw_001",
                "type": "vocabword",
                "topic": "animals",
                "word": "Elephant",
                "syllables": ["el", "e", "phant"],
                "definition": "A very large grey animal with a trunk.",
                "exampleSentence": "The elephant drinks water with its trunk.",
                "review": {
                    "sentencePrompt": "Say the word elephant.",
                    "acceptedPronunciations": ["elephant"],
                },
                "media": {"pronunciationAudioRef": "aud_elephant"},
            },
        ],
    }


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway database and upload dir."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'db' / 'test.sqlite'}",
        upload_dir=str(tmp_path / "uploads"),
        generation_workers=4,
    )


@pytest.fixture
def session_factory(settings):
    """File-backed SQLite so worker threads get their own connections."""
    init_db(settings.database_url)
    yield get_session_factory(settings.database_url)
    dispose_engines()


@pytest.fixture
def cache_store(session_factory):
    return GenerationCacheStore(session_factory)


@pytest.fixture
def history_log(session_factory):
    return GenerationHistoryLog(session_factory)


@pytest.fixture
def asset_store(session_factory, settings):
    return AssetStore(session_factory, settings.upload_dir)


@pytest.fixture
def pack_repo(session_factory, cache_store, history_log, asset_store):
    return PackRepository(session_factory, cache_store, history_log, asset_store)


@pytest.fixture
def coordinator(session_factory, cache_store, history_log, asset_store):
    coord = SingleFlightCoordinator(
        session_factory, cache_store, history_log, asset_store, max_workers=4,
    )
    yield coord
    coord.shutdown()


@pytest.fixture
def service(settings, pack_repo, cache_store, history_log, asset_store, coordinator):
    return ContentService(
        settings,
        pack_repo,
        cache_store,
        history_log,
        asset_store,
        coordinator,
        generator=FallbackGenerator(pack_repo),
    )


@pytest.fixture
def factcards_pack(pack_repo):
    """A saved, valid factcards pack with two items."""
    pack_repo.create("Animal Facts", "factcards", pack_id="animals")
    return pack_repo.save("animals", factcards_payload("animals")).record


@pytest.fixture
def vocab_pack(pack_repo):
    pack_repo.create("Big Words", "vocabvoice", pack_id="big-words")
    return pack_repo.save("big-words", vocab_payload("big-words")).record


@pytest.fixture
def factcards_doc():
    return factcards_payload()


@pytest.fixture
def vocab_doc():
    return vocab_payload()
