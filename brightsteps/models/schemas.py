from datetime import datetime

from pydantic import BaseModel, Field

from brightsteps.models.generation import GenerationStatus
from brightsteps.models.pack import AssetKind, ModuleType


class GenerationRequest(BaseModel):
    """Descriptor of one generation; fully determines its cache key."""

    module_type: str
    pack_id: str
    item_id: str
    provider: str
    model: str
    prompt_version: str

    model_config = {"frozen": True}


class AudioRef(BaseModel):
    relative_path: str
    mime_type: str
    asset_id: str | None = None


class CacheEntry(BaseModel):
    """Latest accepted generation result for one cache key."""

    cache_key: str
    module_type: ModuleType
    pack_id: str
    item_id: str
    prompt_version: str
    provider: str
    model: str
    content_payload: dict
    audio_asset_id: str | None = None
    audio_relative_path: str | None = None
    audio_mime_type: str | None = None
    flagged: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def audio_ref(self) -> AudioRef | None:
        if not self.audio_relative_path or not self.audio_mime_type:
            return None
        return AudioRef(
            relative_path=self.audio_relative_path,
            mime_type=self.audio_mime_type,
            asset_id=self.audio_asset_id,
        )


class HistoryRecord(BaseModel):
    id: int
    pack_id: str
    item_id: str
    module_type: ModuleType
    cache_key: str
    provider: str
    model: str
    prompt_version: str
    output_payload: dict | None = None
    status: GenerationStatus
    error_message: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AssetRecord(BaseModel):
    asset_id: str
    pack_id: str
    kind: AssetKind
    relative_path: str
    mime_type: str
    alt_text: str | None = None
    transcript: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PackRecord(BaseModel):
    pack_id: str
    title: str
    module_type: ModuleType
    payload: dict = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ValidationIssue(BaseModel):
    path: str
    message: str


class ValidationResult(BaseModel):
    """Outcome of a schema check. Issues are data, never exceptions."""

    success: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    def messages(self) -> list[str]:
        return [f"{issue.path}: {issue.message}" for issue in self.issues]
