"""Outer surface over the stores and the coordinator."""

import fnmatch
import logging
from dataclasses import dataclass, field

from brightsteps.config import Settings, get_settings
from brightsteps.core.assets import AssetBlob, AssetStore
from brightsteps.core.cache_store import GenerationCacheStore
from brightsteps.core.coordinator import GenerateFn, SingleFlightCoordinator
from brightsteps.core.history import GenerationHistoryLog
from brightsteps.core.packs import PackRepository, find_item
from brightsteps.core.validator import ContentValidator
from brightsteps.db import get_session_factory, init_db
from brightsteps.errors import BrightStepsError, InvalidRequest, NotFound
from brightsteps.models.pack import AssetKind, ModuleType
from brightsteps.models.schemas import (
    AssetRecord,
    CacheEntry,
    GenerationRequest,
    HistoryRecord,
    PackRecord,
    ValidationResult,
)

logger = logging.getLogger(__name__)


@dataclass
class ContentResult:
    cache_key: str
    module_type: str
    pack_id: str
    item_id: str
    provider: str
    model: str
    prompt_version: str
    flagged: bool
    payload: dict
    validation: ValidationResult
    asset_url_by_id: dict[str, str] = field(default_factory=dict)
    audio_url: str | None = None


class ContentService:
    """Learn/vocab content for pack items, generated once and cached."""

    def __init__(
        self,
        settings: Settings,
        packs: PackRepository,
        cache: GenerationCacheStore,
        history: GenerationHistoryLog,
        assets: AssetStore,
        coordinator: SingleFlightCoordinator,
        generator: GenerateFn | None = None,
        validator: ContentValidator | None = None,
    ):
        self.settings = settings
        self.packs = packs
        self.cache = cache
        self.history = history
        self.assets = assets
        self.coordinator = coordinator
        self.generator = generator
        self.validator = validator or ContentValidator()

    def get_or_generate(
        self,
        module_type: str,
        pack_id: str,
        item_id: str,
        provider: str | None = None,
        model: str | None = None,
        prompt_version: str | None = None,
        force: bool = False,
        timeout: float | None = None,
        generator: GenerateFn | None = None,
    ) -> ContentResult:
        """Cached content for one pack item, generating it if needed.

        Raises:
            InvalidRequest: Unknown module type or one that does not match the pack.
            NotFound: Unknown pack or item.
            GenerationFailure: Generation failed or this caller timed out.
        """
        try:
            module = ModuleType(module_type)
        except ValueError:
            raise InvalidRequest(
                f"Unknown module type: {module_type}", pack_id=pack_id, item_id=item_id,
            )

        pack = self.packs.require(pack_id)
        if pack.module_type != module:
            raise InvalidRequest(
                f"Pack {pack_id} is a {pack.module_type.value} pack, not {module.value}",
                pack_id=pack_id,
                item_id=item_id,
            )
        if find_item(pack.payload, item_id) is None:
            raise NotFound(
                f"Item {item_id} not found in pack {pack_id}",
                pack_id=pack_id,
                item_id=item_id,
            )

        generate_fn = generator or self.generator
        if generate_fn is None:
            raise InvalidRequest("No generation capability configured", pack_id=pack_id)

        request = GenerationRequest(
            module_type=module.value,
            pack_id=pack_id,
            item_id=item_id,
            provider=provider or self.settings.default_provider,
            model=model or self.settings.default_model,
            prompt_version=prompt_version or self.settings.prompt_version_for(module.value),
        )
        entry = self.coordinator.get_or_generate(request, generate_fn, force=force, timeout=timeout)
        if entry.audio_asset_id:
            field = "pronunciationAudioRef" if module == ModuleType.VOCABVOICE else None
            self._link_item_asset(pack_id, item_id, entry.audio_asset_id, field)
        return self._result(entry)

    def read_asset(self, asset_id: str) -> AssetBlob:
        return self.assets.get(asset_id)

    def add_image_asset(
        self,
        pack_id: str,
        data: bytes,
        mime_type: str,
        alt_text: str | None = None,
        item_id: str | None = None,
    ) -> AssetRecord:
        """Store an uploaded image and list it in the pack's assets.

        With ``item_id`` the image becomes that item's ``media.imageRef``; the
        image it replaces is deleted once nothing else points at it.

        Raises:
            InvalidRequest: Disallowed MIME type or file too large.
            NotFound: Unknown pack or item.
        """
        pack = self.packs.require(pack_id)
        if item_id is not None and find_item(pack.payload, item_id) is None:
            raise NotFound(
                f"Item {item_id} not found in pack {pack_id}", pack_id=pack_id, item_id=item_id,
            )
        mime = (mime_type or "").strip().lower()
        if not any(fnmatch.fnmatch(mime, p.lower()) for p in self.settings.allowed_image_mime_types):
            logger.warning("Rejected %s upload for pack %s", mime_type, pack_id)
            raise InvalidRequest(f"Image type not allowed: {mime_type}", pack_id=pack_id)
        if len(data) > self.settings.upload_max_image_bytes:
            raise InvalidRequest(
                f"Image exceeds {self.settings.upload_max_image_mb} MB limit", pack_id=pack_id,
            )

        record = self.assets.put(pack_id, AssetKind.IMAGE, data, mime, alt_text=alt_text)
        try:
            if item_id is None:
                self.packs.register_asset(pack_id, record)
            else:
                self._link_item_asset(pack_id, item_id, record.asset_id, "imageRef", record)
        except BrightStepsError:
            self.assets.delete(record.asset_id)
            raise
        return record

    def remove_item(self, pack_id: str, item_id: str) -> PackRecord:
        """Remove an item with its cached content and the assets only it used.

        Generation history is kept.

        Raises:
            NotFound: Unknown pack or item.
        """
        self.packs.remove_item(pack_id, item_id)
        for entry in self.cache.list_by_pack_item(pack_id, item_id):
            self.cache.invalidate(entry.cache_key)
            if entry.audio_asset_id:
                self.packs.release_asset(pack_id, entry.audio_asset_id)
        return self.packs.require(pack_id)

    def asset_url(self, asset_id: str) -> str:
        return f"{self.settings.asset_url_prefix.rstrip('/')}/{asset_id}"

    def delete_pack(self, pack_id: str) -> bool:
        return self.packs.delete(pack_id)

    def history_for(self, pack_id: str, item_id: str, limit: int = 20) -> list[HistoryRecord]:
        return self.history.latest(pack_id, item_id, limit=limit)

    def entries_for(self, pack_id: str, item_id: str | None = None) -> list[CacheEntry]:
        if item_id is None:
            return self.cache.list_by_pack(pack_id)
        return self.cache.list_by_pack_item(pack_id, item_id)

    def flag(self, cache_key: str, flagged: bool = True) -> CacheEntry:
        return self.cache.set_flagged(cache_key, flagged)

    def invalidate(self, cache_key: str) -> bool:
        entry = self.cache.get(cache_key)
        if not self.cache.invalidate(cache_key):
            return False
        if entry is not None and entry.audio_asset_id:
            self.packs.release_asset(entry.pack_id, entry.audio_asset_id)
        return True

    def shutdown(self) -> None:
        self.coordinator.shutdown()

    def _link_item_asset(
        self,
        pack_id: str,
        item_id: str,
        asset_id: str,
        field: str | None = None,
        record: AssetRecord | None = None,
    ) -> None:
        """List an asset in the pack and, with ``field``, point the item's media at it."""
        pack = self.packs.require(pack_id)
        item = find_item(pack.payload, item_id) or {}
        media = item.get("media") if isinstance(item.get("media"), dict) else {}
        listed = any(
            isinstance(a, dict) and a.get("id") == asset_id
            for a in pack.payload.get("assets") or []
        )
        if listed and (field is None or media.get(field) == asset_id):
            return

        record = record or self.assets.get_record(asset_id)
        if record is None:
            return
        self.packs.register_asset(pack_id, record)
        if field is None:
            return
        previous = self.packs.set_item_media(pack_id, item_id, field, asset_id)
        logger.info("Linked asset %s to %s/%s as %s", asset_id, pack_id, item_id, field)
        if previous and previous != asset_id:
            self.packs.release_asset(pack_id, previous)

    def _asset_urls(self, pack_id: str) -> dict[str, str]:
        pack = self.packs.get(pack_id)
        if pack is None:
            return {}
        listed = {a.get("id") for a in pack.payload.get("assets") or [] if isinstance(a, dict)}
        return {
            record.asset_id: self.asset_url(record.asset_id)
            for record in self.assets.list_for_pack(pack_id)
            if record.asset_id in listed
        }

    def _result(self, entry: CacheEntry) -> ContentResult:
        asset_urls = self._asset_urls(entry.pack_id)
        audio_url = None
        if entry.audio_asset_id:
            audio_url = self.asset_url(entry.audio_asset_id)
            asset_urls[entry.audio_asset_id] = audio_url

        return ContentResult(
            cache_key=entry.cache_key,
            module_type=entry.module_type.value,
            pack_id=entry.pack_id,
            item_id=entry.item_id,
            provider=entry.provider,
            model=entry.model,
            prompt_version=entry.prompt_version,
            flagged=entry.flagged,
            payload=entry.content_payload,
            validation=self.validator.validate_content(
                entry.module_type.value, entry.content_payload,
            ),
            asset_url_by_id=asset_urls,
            audio_url=audio_url,
        )


def build_content_service(
    settings: Settings | None = None,
    generator: GenerateFn | None = None,
) -> ContentService:
    """Wire stores, coordinator and generator against the configured database."""
    settings = settings or get_settings()
    init_db(settings.database_url)
    session_factory = get_session_factory(settings.database_url)

    cache = GenerationCacheStore(session_factory)
    history = GenerationHistoryLog(session_factory)
    assets = AssetStore(session_factory, settings.upload_dir)
    packs = PackRepository(session_factory, cache, history, assets)
    coordinator = SingleFlightCoordinator(
        session_factory,
        cache,
        history,
        assets,
        max_workers=settings.generation_workers,
        wait_timeout=settings.generation_wait_timeout_seconds,
    )

    if generator is None:
        from brightsteps.services.fallback_generator import FallbackGenerator

        generator = FallbackGenerator(packs)

    return ContentService(settings, packs, cache, history, assets, coordinator, generator)
