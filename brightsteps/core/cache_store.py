"""Durable mapping from cache key to the latest accepted generation result."""

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from brightsteps.db import session_scope
from brightsteps.errors import NotFound
from brightsteps.models.generation import LearnContentCache
from brightsteps.models.pack import ModuleType
from brightsteps.models.schemas import CacheEntry

logger = logging.getLogger(__name__)

# Everything but the key and created_at is replaced on upsert.
_REPLACED_COLUMNS = (
    "module_type",
    "pack_id",
    "item_id",
    "prompt_version",
    "provider",
    "model",
    "content_payload",
    "audio_asset_id",
    "audio_relative_path",
    "audio_mime_type",
    "flagged",
    "updated_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _insert_for(session: Session):
    """Dialect-native INSERT supporting ON CONFLICT DO UPDATE."""
    if session.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert


class GenerationCacheStore:

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, cache_key: str, session: Session | None = None) -> CacheEntry | None:
        with session_scope(self._session_factory, session) as s:
            row = s.get(LearnContentCache, cache_key, populate_existing=True)
            return CacheEntry.model_validate(row) if row else None

    def upsert(
        self,
        *,
        cache_key: str,
        module_type: ModuleType | str,
        pack_id: str,
        item_id: str,
        prompt_version: str,
        provider: str,
        model: str,
        content_payload: dict,
        audio_asset_id: str | None = None,
        audio_relative_path: str | None = None,
        audio_mime_type: str | None = None,
        flagged: bool = False,
        session: Session | None = None,
    ) -> CacheEntry:
        """Insert or fully replace the entry for ``cache_key``."""
        now = _utcnow()
        values = {
            "cache_key": cache_key,
            "module_type": ModuleType(module_type),
            "pack_id": pack_id,
            "item_id": item_id,
            "prompt_version": prompt_version,
            "provider": provider,
            "model": model,
            "content_payload": content_payload,
            "audio_asset_id": audio_asset_id,
            "audio_relative_path": audio_relative_path,
            "audio_mime_type": audio_mime_type,
            "flagged": flagged,
            "created_at": now,
            "updated_at": now,
        }

        with session_scope(self._session_factory, session) as s:
            insert = _insert_for(s)
            stmt = insert(LearnContentCache).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[LearnContentCache.cache_key],
                set_={col: stmt.excluded[col] for col in _REPLACED_COLUMNS},
            )
            s.execute(stmt)
            row = s.get(LearnContentCache, cache_key, populate_existing=True)
            entry = CacheEntry.model_validate(row)

        logger.debug("Cache upsert: %s (%s/%s)", cache_key[:12], pack_id, item_id)
        return entry

    def set_flagged(self, cache_key: str, flagged: bool = True) -> CacheEntry:
        """Mark an entry as rejected (or accepted again) by manual review.

        Raises:
            NotFound: If no entry exists for the key.
        """
        with session_scope(self._session_factory) as s:
            row = s.get(LearnContentCache, cache_key)
            if row is None:
                raise NotFound(f"Cache entry not found: {cache_key}")
            row.flagged = flagged
            row.updated_at = _utcnow()
            s.flush()
            entry = CacheEntry.model_validate(row)

        logger.info(
            "Cache entry %s %s", cache_key[:12], "flagged" if flagged else "unflagged",
        )
        return entry

    def invalidate(self, cache_key: str) -> bool:
        """Remove an entry without touching history. Returns True if one existed."""
        with session_scope(self._session_factory) as s:
            result = s.execute(
                delete(LearnContentCache).where(LearnContentCache.cache_key == cache_key)
            )
            removed = result.rowcount > 0

        if removed:
            logger.info("Cache entry invalidated: %s", cache_key[:12])
        return removed

    def list_by_pack_item(self, pack_id: str, item_id: str) -> list[CacheEntry]:
        """All entries for an item across provider/model/prompt-version variants."""
        with session_scope(self._session_factory) as s:
            rows = s.scalars(
                select(LearnContentCache)
                .where(
                    LearnContentCache.pack_id == pack_id,
                    LearnContentCache.item_id == item_id,
                )
                .order_by(LearnContentCache.updated_at.desc())
            ).all()
            return [CacheEntry.model_validate(r) for r in rows]

    def list_by_pack(self, pack_id: str) -> list[CacheEntry]:
        with session_scope(self._session_factory) as s:
            rows = s.scalars(
                select(LearnContentCache)
                .where(LearnContentCache.pack_id == pack_id)
                .order_by(LearnContentCache.item_id, LearnContentCache.updated_at.desc())
            ).all()
            return [CacheEntry.model_validate(r) for r in rows]

    def delete_by_pack(self, pack_id: str) -> int:
        with session_scope(self._session_factory) as s:
            result = s.execute(
                delete(LearnContentCache).where(LearnContentCache.pack_id == pack_id)
            )
            return result.rowcount
