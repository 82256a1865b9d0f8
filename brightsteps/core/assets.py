"""Binary asset storage: bytes on disk, metadata in the pack_assets table."""

import copy
import hashlib
import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from brightsteps.db import session_scope
from brightsteps.errors import InvalidRequest, NotFound, StorageFailure
from brightsteps.models.generation import LearnContentCache
from brightsteps.models.pack import AssetKind, Pack, PackAsset
from brightsteps.models.schemas import AssetRecord

logger = logging.getLogger(__name__)

_EXTENSION_BY_MIME_FRAGMENT = (
    ("mpeg", "mp3"),
    ("mp3", "mp3"),
    ("wav", "wav"),
    ("ogg", "ogg"),
    ("m4a", "m4a"),
    ("mp4", "m4a"),
    ("png", "png"),
    ("jpeg", "jpg"),
    ("jpg", "jpg"),
    ("webp", "webp"),
    ("gif", "gif"),
)


@dataclass
class AssetBlob:
    """Bytes of a stored asset plus the MIME type it was stored with."""

    data: bytes
    mime_type: str


def extension_for_mime(mime_type: str) -> str:
    lowered = mime_type.lower()
    for fragment, ext in _EXTENSION_BY_MIME_FRAGMENT:
        if fragment in lowered:
            return ext
    return "bin"


def _new_asset_id() -> str:
    return f"asset_{uuid.uuid4().hex}"


def asset_entry(record: AssetRecord) -> dict:
    """The pack document's ``assets[]`` entry for a stored asset."""
    entry = {"id": record.asset_id, "kind": record.kind.value, "path": record.relative_path}
    if record.alt_text:
        entry["alt"] = record.alt_text
    if record.transcript:
        entry["transcript"] = record.transcript
    return entry


def referenced_asset_ids(payload) -> set[str]:
    """Asset ids the pack's items and thumbnail point at."""
    refs = set()
    if not isinstance(payload, dict):
        return refs
    for item in payload.get("items") or []:
        media = item.get("media") if isinstance(item, dict) else None
        if isinstance(media, dict):
            refs.update(v for v in media.values() if isinstance(v, str) and v)
    settings = payload.get("settings")
    if isinstance(settings, dict) and settings.get("packThumbnailImageRef"):
        refs.add(settings["packThumbnailImageRef"])
    return refs


def strip_asset_refs(payload, asset_id: str) -> dict | None:
    """Copy of ``payload`` without any mention of ``asset_id``; None if it had none."""
    if not isinstance(payload, dict):
        return None
    doc = copy.deepcopy(payload)
    changed = False

    assets = doc.get("assets")
    if isinstance(assets, list):
        kept = [a for a in assets if not (isinstance(a, dict) and a.get("id") == asset_id)]
        if len(kept) != len(assets):
            doc["assets"] = kept
            changed = True

    for item in doc.get("items") or []:
        media = item.get("media") if isinstance(item, dict) else None
        if not isinstance(media, dict):
            continue
        for key in [k for k, v in media.items() if v == asset_id]:
            del media[key]
            changed = True

    settings = doc.get("settings")
    if isinstance(settings, dict) and settings.get("packThumbnailImageRef") == asset_id:
        del settings["packThumbnailImageRef"]
        changed = True

    return doc if changed else None


class AssetStore:

    def __init__(self, session_factory: sessionmaker[Session], upload_dir: str):
        self._session_factory = session_factory
        self._root = Path(upload_dir).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve_path(self, relative_path: str) -> Path:
        """Absolute path for a stored relative path, confined to the upload root."""
        full = (self._root / relative_path).resolve()
        if not full.is_relative_to(self._root):
            raise InvalidRequest(f"Asset path escapes upload root: {relative_path}")
        return full

    def build_relative_path(self, pack_id: str, kind: AssetKind, data: bytes, mime_type: str) -> str:
        """``<pack>/<kind>/<content hash>-<suffix>.<ext>``; unique even for identical bytes."""
        digest = hashlib.sha256(data).hexdigest()[:16]
        suffix = uuid.uuid4().hex[:8]
        ext = extension_for_mime(mime_type)
        return f"{pack_id}/{kind.value}/{digest}-{suffix}.{ext}"

    def put(
        self,
        pack_id: str,
        kind: AssetKind | str,
        data: bytes,
        mime_type: str,
        alt_text: str | None = None,
        transcript: str | None = None,
    ) -> AssetRecord:
        """Write bytes to disk, then record them.

        The file lands before the row, so a failed insert leaves at most an
        unreferenced file behind; we try to remove it.

        Raises:
            InvalidRequest: On empty data or a blank MIME type.
            StorageFailure: If the file or the row cannot be written.
        """
        kind = AssetKind(kind)
        if not data:
            raise InvalidRequest("Asset data is empty", pack_id=pack_id)
        if not mime_type or not mime_type.strip():
            raise InvalidRequest("Asset MIME type is required", pack_id=pack_id)

        relative_path = self.build_relative_path(pack_id, kind, data, mime_type)
        full_path = self.resolve_path(relative_path)

        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
        except OSError as e:
            raise StorageFailure(f"Failed to write asset file: {e}", pack_id=pack_id) from e

        try:
            with session_scope(self._session_factory) as s:
                row = PackAsset(
                    asset_id=_new_asset_id(),
                    pack_id=pack_id,
                    kind=kind,
                    relative_path=relative_path,
                    mime_type=mime_type.strip(),
                    alt_text=alt_text,
                    transcript=transcript,
                )
                s.add(row)
                s.flush()
                record = AssetRecord.model_validate(row)
        except StorageFailure:
            self._unlink_quietly(full_path)
            raise

        logger.info(
            "Stored %s asset %s (%d bytes) at %s",
            kind.value, record.asset_id, len(data), relative_path,
        )
        return record

    def get_record(self, asset_id: str) -> AssetRecord | None:
        with session_scope(self._session_factory) as s:
            row = s.get(PackAsset, asset_id)
            return AssetRecord.model_validate(row) if row else None

    def get(self, asset_id: str) -> AssetBlob:
        """Read an asset's bytes.

        Raises:
            NotFound: If the record or its file is missing.
        """
        record = self.get_record(asset_id)
        if record is None:
            raise NotFound(f"Asset not found: {asset_id}")

        full_path = self.resolve_path(record.relative_path)
        try:
            data = full_path.read_bytes()
        except FileNotFoundError:
            logger.warning("Asset %s has no file at %s", asset_id, full_path)
            raise NotFound(f"Asset file missing: {asset_id}", pack_id=record.pack_id)
        except OSError as e:
            raise StorageFailure(
                f"Failed to read asset {asset_id}: {e}", pack_id=record.pack_id
            ) from e

        return AssetBlob(data=data, mime_type=record.mime_type)

    def list_for_pack(self, pack_id: str) -> list[AssetRecord]:
        with session_scope(self._session_factory) as s:
            rows = s.scalars(
                select(PackAsset)
                .where(PackAsset.pack_id == pack_id)
                .order_by(PackAsset.created_at.asc())
            ).all()
            return [AssetRecord.model_validate(r) for r in rows]

    def delete(self, asset_id: str) -> bool:
        """Remove the record, then the file (best effort). Returns True if a record existed.

        Cache entries that used the asset as audio lose that reference, and the
        owning pack document drops its entry and any item refs to it, in the
        same transaction as the record.
        """
        with session_scope(self._session_factory) as s:
            row = s.get(PackAsset, asset_id)
            if row is None:
                return False
            relative_path = row.relative_path

            cleared = s.execute(
                update(LearnContentCache)
                .where(LearnContentCache.audio_asset_id == asset_id)
                .values(audio_asset_id=None, audio_relative_path=None, audio_mime_type=None)
            ).rowcount
            if cleared:
                logger.info("Cleared audio of %d cache entries using asset %s", cleared, asset_id)

            pack = s.get(Pack, row.pack_id)
            stripped = strip_asset_refs(pack.payload, asset_id) if pack is not None else None
            if stripped is not None:
                pack.payload = stripped
            s.delete(row)

        self._remove_file(relative_path)
        logger.info("Deleted asset %s", asset_id)
        return True

    def delete_by_pack(self, pack_id: str) -> int:
        """Remove every asset of a pack and its upload directory.

        Raises:
            InvalidRequest: If the pack directory is not strictly below the upload root.
        """
        pack_dir = self.pack_dir(pack_id)
        assets = self.list_for_pack(pack_id)
        for asset in assets:
            self.delete(asset.asset_id)

        if pack_dir.exists():
            try:
                shutil.rmtree(pack_dir)
            except OSError:
                logger.warning("Failed to remove pack upload dir %s", pack_dir, exc_info=True)
        return len(assets)

    def pack_dir(self, pack_id: str) -> Path:
        """Upload directory of one pack; never the root itself or anything above it."""
        if not pack_id or not pack_id.strip():
            raise InvalidRequest("Pack id is required")
        full = self.resolve_path(pack_id)
        if full == self._root:
            raise InvalidRequest(f"Pack directory resolves to upload root: {pack_id!r}")
        return full

    def _remove_file(self, relative_path: str) -> None:
        try:
            full_path = self.resolve_path(relative_path)
        except InvalidRequest:
            logger.warning("Skipping file removal outside upload root: %s", relative_path)
            return
        self._unlink_quietly(full_path)

    @staticmethod
    def _unlink_quietly(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to delete asset file %s", path, exc_info=True)
