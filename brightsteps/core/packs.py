"""Pack CRUD, item/asset linking and the cascading delete across assets, cache, history and packs."""

import copy
import logging
import re
import uuid
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from brightsteps.core.assets import AssetStore, asset_entry, referenced_asset_ids
from brightsteps.core.cache_store import GenerationCacheStore
from brightsteps.core.history import GenerationHistoryLog
from brightsteps.core.validator import ContentValidator
from brightsteps.db import session_scope
from brightsteps.errors import Conflict, InvalidRequest, NotFound
from brightsteps.models.pack import ModuleType, Pack
from brightsteps.models.schemas import AssetRecord, PackRecord, ValidationResult

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "2.0.0"

_PACK_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")

_ITEM_TYPES = {
    ModuleType.FACTCARDS: ("factcard", "fc"),
    ModuleType.PICTUREPHRASES: ("picturephrase", "pp"),
    ModuleType.VOCABVOICE: ("vocabword", "vw"),
}

_DEFAULT_SETTINGS = {"defaultSupportLevel": 2, "audioEnabledByDefault": True}


@dataclass
class SaveResult:
    """A persisted pack plus the (non-fatal) validation outcome of its payload."""

    record: PackRecord
    validation: ValidationResult


def validate_pack_id(pack_id: str) -> str:
    """Pack ids double as upload directory names, so keep them path-safe."""
    if not isinstance(pack_id, str) or not _PACK_ID_RE.match(pack_id) or ".." in pack_id:
        raise InvalidRequest(f"Invalid pack id: {pack_id!r}", pack_id=pack_id or None)
    return pack_id


def new_pack_id(module_type: ModuleType) -> str:
    return f"{module_type.value}-{uuid.uuid4().hex[:10]}"


def empty_pack_payload(
    pack_id: str,
    module_type: ModuleType,
    title: str,
    description: str | None = None,
    language: str | None = None,
    age_band: str | None = None,
    topics: list[str] | None = None,
) -> dict:
    return {
        "schemaVersion": SCHEMA_VERSION,
        "packId": pack_id,
        "moduleType": module_type.value,
        "title": title,
        "description": (description or "").strip(),
        "version": "1.0.0",
        "language": (language or "").strip() or "en",
        "ageBand": (age_band or "").strip() or "6-10",
        "topics": list(topics) if topics else ["general"],
        "settings": dict(_DEFAULT_SETTINGS),
        "assets": [],
        "items": [],
    }


def _blank(value) -> bool:
    return value is None or not str(value).strip()


def normalize_pack_payload(pack_id: str, module_type: ModuleType, payload) -> dict:
    """Fill in the pack envelope so a partially edited document can be stored."""
    base = copy.deepcopy(payload) if isinstance(payload, dict) else {}

    if _blank(base.get("schemaVersion")):
        base["schemaVersion"] = SCHEMA_VERSION
    base["packId"] = pack_id
    base["moduleType"] = module_type.value
    if _blank(base.get("title")):
        base["title"] = pack_id
    if _blank(base.get("version")):
        base["version"] = "1.0.0"
    if _blank(base.get("language")):
        base["language"] = "en"
    if _blank(base.get("ageBand")):
        base["ageBand"] = "6-10"
    if not isinstance(base.get("topics"), list) or not base["topics"]:
        base["topics"] = ["general"]
    if not isinstance(base.get("assets"), list):
        base["assets"] = []
    if not isinstance(base.get("settings"), dict):
        base["settings"] = dict(_DEFAULT_SETTINGS)

    item_type, id_prefix = _ITEM_TYPES[module_type]
    items = []
    for index, entry in enumerate(base.get("items") or []):
        if not isinstance(entry, dict):
            continue
        item = dict(entry)
        if _blank(item.get("id")):
            item["id"] = f"{id_prefix}_{index + 1:03d}"
        item["type"] = item_type
        if _blank(item.get("topic")):
            item["topic"] = "general"
        items.append(item)
    base["items"] = items

    return base


class PackRepository:

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache_store: GenerationCacheStore,
        history_log: GenerationHistoryLog,
        asset_store: AssetStore,
        validator: ContentValidator | None = None,
    ):
        self._session_factory = session_factory
        self._cache = cache_store
        self._history = history_log
        self._assets = asset_store
        self._validator = validator or ContentValidator()

    def create(
        self,
        title: str,
        module_type: ModuleType | str,
        pack_id: str | None = None,
        description: str | None = None,
        language: str | None = None,
        age_band: str | None = None,
        topics: list[str] | None = None,
    ) -> PackRecord:
        """Create an empty pack.

        Raises:
            InvalidRequest: Unknown module type, blank title or unsafe pack id.
            Conflict: If ``pack_id`` is already taken.
        """
        try:
            module_type = ModuleType(module_type)
        except ValueError:
            raise InvalidRequest(f"Unknown module type: {module_type}")
        if _blank(title):
            raise InvalidRequest("Pack title is required")

        if pack_id and pack_id.strip():
            pack_id = validate_pack_id(pack_id.strip())
        else:
            pack_id = new_pack_id(module_type)
        title = title.strip()
        payload = empty_pack_payload(
            pack_id, module_type, title,
            description=description, language=language,
            age_band=age_band, topics=topics,
        )

        with session_scope(self._session_factory) as s:
            if s.get(Pack, pack_id) is not None:
                raise Conflict(f"Pack already exists: {pack_id}", pack_id=pack_id)
            row = Pack(pack_id=pack_id, title=title, module_type=module_type, payload=payload)
            s.add(row)
            try:
                s.flush()
            except IntegrityError:
                raise Conflict(f"Pack already exists: {pack_id}", pack_id=pack_id)
            record = PackRecord.model_validate(row)

        logger.info("Created %s pack %s (%s)", module_type.value, pack_id, title)
        return record

    def get(self, pack_id: str) -> PackRecord | None:
        with session_scope(self._session_factory) as s:
            row = s.get(Pack, pack_id)
            return PackRecord.model_validate(row) if row else None

    def require(self, pack_id: str) -> PackRecord:
        record = self.get(pack_id)
        if record is None:
            raise NotFound(f"Pack not found: {pack_id}", pack_id=pack_id)
        return record

    def list_packs(self, module_type: ModuleType | str | None = None) -> list[PackRecord]:
        with session_scope(self._session_factory) as s:
            query = select(Pack).order_by(Pack.updated_at.desc())
            if module_type is not None:
                query = query.where(Pack.module_type == ModuleType(module_type))
            return [PackRecord.model_validate(r) for r in s.scalars(query).all()]

    def save(self, pack_id: str, payload) -> SaveResult:
        """Persist an edited pack document, valid or not.

        Validation issues are returned for the editor to surface; they never
        block the write.

        Raises:
            NotFound: If the pack does not exist.
        """
        with session_scope(self._session_factory) as s:
            row = s.get(Pack, pack_id)
            if row is None:
                raise NotFound(f"Pack not found: {pack_id}", pack_id=pack_id)

            normalized = normalize_pack_payload(pack_id, row.module_type, payload)
            validation = self._validator.validate_pack(normalized)
            row.payload = normalized
            row.title = str(normalized["title"]).strip()
            s.flush()
            record = PackRecord.model_validate(row)

        if validation.success:
            logger.info("Saved pack %s", pack_id)
        else:
            logger.info("Saved pack %s with %d validation issue(s)", pack_id, len(validation.issues))
        return SaveResult(record=record, validation=validation)

    # ── Item and asset links ─────────────────────────────────────

    def register_asset(self, pack_id: str, record: AssetRecord) -> PackRecord:
        """Add (or refresh) a stored asset in the pack's ``assets`` list."""
        if record.pack_id != pack_id:
            raise InvalidRequest(
                f"Asset {record.asset_id} belongs to pack {record.pack_id}", pack_id=pack_id,
            )

        def add(doc: dict) -> None:
            _drop_asset_entry(doc, record.asset_id)
            doc["assets"].append(asset_entry(record))

        pack, _ = self._update_payload(pack_id, add)
        logger.debug("Registered %s asset %s in pack %s", record.kind.value, record.asset_id, pack_id)
        return pack

    def set_item_media(self, pack_id: str, item_id: str, field: str, asset_id: str) -> str | None:
        """Point ``item.media[field]`` at an asset and return the ref it replaced.

        Raises:
            NotFound: Unknown pack or item.
        """

        def link(doc: dict) -> str | None:
            item = find_item(doc, item_id)
            if item is None:
                raise NotFound(
                    f"Item {item_id} not found in pack {pack_id}", pack_id=pack_id, item_id=item_id,
                )
            if not isinstance(item.get("media"), dict):
                item["media"] = {}
            previous = item["media"].get(field)
            item["media"][field] = asset_id
            return previous

        _, previous = self._update_payload(pack_id, link)
        return previous

    def remove_item(self, pack_id: str, item_id: str) -> PackRecord:
        """Drop an item and release the assets only it referenced.

        Raises:
            NotFound: Unknown pack or item.
        """
        refs: set[str] = set()

        def drop(doc: dict) -> None:
            item = find_item(doc, item_id)
            if item is None:
                raise NotFound(
                    f"Item {item_id} not found in pack {pack_id}", pack_id=pack_id, item_id=item_id,
                )
            refs.update(referenced_asset_ids({"items": [item]}))
            doc["items"] = [i for i in doc.get("items") or [] if i is not item]

        self._update_payload(pack_id, drop)
        for asset_id in sorted(refs):
            self.release_asset(pack_id, asset_id)

        logger.info("Removed item %s from pack %s", item_id, pack_id)
        return self.require(pack_id)

    def release_asset(self, pack_id: str, asset_id: str) -> bool:
        """Forget an asset nothing in the pack points at any more.

        The stored file is deleted unless a cache entry still plays it.
        Returns True if a stored asset was deleted.
        """
        pack = self.require(pack_id)
        if asset_id in referenced_asset_ids(pack.payload):
            return False

        stored = self._assets.get_record(asset_id)
        in_cache = any(e.audio_asset_id == asset_id for e in self._cache.list_by_pack(pack_id))
        if stored is not None and stored.pack_id == pack_id and not in_cache:
            return self._assets.delete(asset_id)

        self._update_payload(pack_id, lambda doc: _drop_asset_entry(doc, asset_id))
        return False

    def _update_payload(self, pack_id: str, mutate):
        with session_scope(self._session_factory) as s:
            row = s.get(Pack, pack_id)
            if row is None:
                raise NotFound(f"Pack not found: {pack_id}", pack_id=pack_id)
            doc = copy.deepcopy(row.payload) if isinstance(row.payload, dict) else {}
            result = mutate(doc)
            row.payload = doc
            s.flush()
            return PackRecord.model_validate(row), result

    def delete(self, pack_id: str) -> bool:
        """Remove a pack and everything it owns.

        Steps run in a fixed order and each is delete-if-exists, so re-running
        after a partial failure finishes the job. Returns True if the pack
        record itself was still present.

        Raises:
            InvalidRequest: If ``pack_id`` is not a path-safe pack id.
        """
        validate_pack_id(pack_id)
        steps = (
            ("assets", self._assets.delete_by_pack),
            ("cache entries", self._cache.delete_by_pack),
            ("history records", self._history.delete_by_pack),
            ("pack record", self._delete_record),
        )
        removed = {}
        for name, step in steps:
            removed[name] = step(pack_id)
            logger.debug("Pack %s: removed %d %s", pack_id, removed[name], name)

        existed = removed["pack record"] > 0
        logger.info(
            "Deleted pack %s (assets=%d, cache=%d, history=%d, existed=%s)",
            pack_id, removed["assets"], removed["cache entries"],
            removed["history records"], existed,
        )
        return existed

    def _delete_record(self, pack_id: str) -> int:
        with session_scope(self._session_factory) as s:
            result = s.execute(delete(Pack).where(Pack.pack_id == pack_id))
            return result.rowcount


def find_item(payload: dict, item_id: str) -> dict | None:
    for entry in (payload or {}).get("items") or []:
        if isinstance(entry, dict) and str(entry.get("id", "")) == item_id:
            return entry
    return None


def _drop_asset_entry(doc: dict, asset_id: str) -> None:
    doc["assets"] = [
        a for a in doc.get("assets") or []
        if not (isinstance(a, dict) and a.get("id") == asset_id)
    ]
