import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from brightsteps.db import Base


class ModuleType(str, enum.Enum):
    FACTCARDS = "factcards"
    PICTUREPHRASES = "picturephrases"
    VOCABVOICE = "vocabvoice"


class AssetKind(str, enum.Enum):
    IMAGE = "image"
    AUDIO = "audio"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Pack(Base):
    __tablename__ = "packs"

    pack_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    module_type: Mapped[ModuleType] = mapped_column(Enum(ModuleType), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    assets: Mapped[list["PackAsset"]] = relationship(
        back_populates="pack", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return (
            f"<Pack(pack_id='{self.pack_id}', "
            f"module_type='{self.module_type.value}')>"
        )


class PackAsset(Base):
    __tablename__ = "pack_assets"

    asset_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    pack_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("packs.pack_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[AssetKind] = mapped_column(Enum(AssetKind), nullable=False)
    relative_path: Mapped[str] = mapped_column(String(500), unique=True, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    alt_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    pack: Mapped["Pack"] = relationship(back_populates="assets")

    def __repr__(self) -> str:
        return (
            f"<PackAsset(asset_id='{self.asset_id}', "
            f"kind='{self.kind.value}', path='{self.relative_path}')>"
        )
