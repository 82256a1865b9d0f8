"""Append-only audit log of generation attempts."""

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from brightsteps.db import session_scope
from brightsteps.models.generation import GenerationHistory, GenerationStatus
from brightsteps.models.pack import ModuleType
from brightsteps.models.schemas import GenerationRequest, HistoryRecord

logger = logging.getLogger(__name__)


class GenerationHistoryLog:

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def append(
        self,
        request: GenerationRequest,
        cache_key: str,
        status: GenerationStatus,
        output_payload: dict | None = None,
        error_message: str | None = None,
        session: Session | None = None,
    ) -> HistoryRecord:
        """Record one physical generation attempt. The id comes from the database."""
        with session_scope(self._session_factory, session) as s:
            row = GenerationHistory(
                pack_id=request.pack_id,
                item_id=request.item_id,
                module_type=ModuleType(request.module_type),
                cache_key=cache_key,
                provider=request.provider,
                model=request.model,
                prompt_version=request.prompt_version,
                output_payload=output_payload,
                status=status,
                error_message=error_message,
            )
            s.add(row)
            s.flush()
            record = HistoryRecord.model_validate(row)

        logger.info(
            "History #%d: %s/%s %s (%s %s %s)",
            record.id, request.pack_id, request.item_id, status.value,
            request.provider, request.model, request.prompt_version,
        )
        return record

    def latest(self, pack_id: str, item_id: str, limit: int = 20) -> list[HistoryRecord]:
        """Most recent attempts for an item, newest first."""
        with session_scope(self._session_factory) as s:
            rows = s.scalars(
                select(GenerationHistory)
                .where(
                    GenerationHistory.pack_id == pack_id,
                    GenerationHistory.item_id == item_id,
                )
                .order_by(GenerationHistory.id.desc())
                .limit(limit)
            ).all()
            return [HistoryRecord.model_validate(r) for r in rows]

    def count(self, pack_id: str, item_id: str | None = None) -> int:
        with session_scope(self._session_factory) as s:
            query = select(func.count()).select_from(GenerationHistory).where(
                GenerationHistory.pack_id == pack_id
            )
            if item_id is not None:
                query = query.where(GenerationHistory.item_id == item_id)
            return s.scalar(query) or 0

    def delete_by_pack(self, pack_id: str) -> int:
        with session_scope(self._session_factory) as s:
            result = s.execute(
                delete(GenerationHistory).where(GenerationHistory.pack_id == pack_id)
            )
            return result.rowcount
