"""ORM models for the learn-content cache and the generation audit log."""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from brightsteps.db import Base
from brightsteps.models.pack import ModuleType


class GenerationStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LearnContentCache(Base):
    __tablename__ = "learn_content_cache"
    __table_args__ = (
        Index("idx_learn_content_pack_item", "pack_id", "item_id", "updated_at"),
    )

    cache_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    module_type: Mapped[ModuleType] = mapped_column(Enum(ModuleType), nullable=False)
    pack_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("packs.pack_id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(String(128), nullable=False)
    prompt_version: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    content_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    audio_asset_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    audio_relative_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    audio_mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<LearnContentCache(cache_key='{self.cache_key[:12]}', "
            f"pack_id='{self.pack_id}', item_id='{self.item_id}')>"
        )


class GenerationHistory(Base):
    __tablename__ = "generation_history"
    __table_args__ = (
        Index("idx_generation_history_pack_item", "pack_id", "item_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pack_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("packs.pack_id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(String(128), nullable=False)
    module_type: Mapped[ModuleType] = mapped_column(Enum(ModuleType), nullable=False)
    cache_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    prompt_version: Mapped[str] = mapped_column(String(64), nullable=False)
    output_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[GenerationStatus] = mapped_column(
        Enum(GenerationStatus), nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<GenerationHistory(id={self.id}, item_id='{self.item_id}', "
            f"status='{self.status.value}')>"
        )
