"""Schema checks for pack documents and generated content.

Validation never raises: every problem comes back as a ValidationIssue with a
JSON-pointer-like path so editors can show it next to the offending field.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from brightsteps.models.schemas import ValidationIssue, ValidationResult

NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Pack building blocks ─────────────────────────────────────────


class AssetSchema(_Camel):
    id: NonEmptyStr
    kind: Literal["image", "audio"]
    path: NonEmptyStr
    alt: str | None = None
    transcript: str | None = None
    duration_ms: Annotated[int, Field(gt=0)] | None = None


class TokenSchema(_Camel):
    id: NonEmptyStr
    text: NonEmptyStr
    pos: str | None = None


class SentenceGroupSchema(_Camel):
    intent: NonEmptyStr
    canonical: NonEmptyStr
    acceptable: Annotated[list[NonEmptyStr], Field(min_length=1)]
    required_word_ids: list[NonEmptyStr] = Field(default_factory=list)
    min_words: Annotated[int, Field(ge=1)]
    max_words: Annotated[int, Field(ge=1)]


class FactCardMedia(_Camel):
    image_ref: str | None = None
    prompt_audio_ref: str | None = None
    answer_audio_ref: str | None = None


class FactCardItemSchema(_Camel):
    id: NonEmptyStr
    type: Literal["factcard"]
    topic: NonEmptyStr
    prompt: NonEmptyStr
    answer: NonEmptyStr
    variants: list[NonEmptyStr] | None = None
    distractors: list[NonEmptyStr] | None = None
    hints: list[NonEmptyStr] | None = None
    media: FactCardMedia | None = None


class PicturePhraseMedia(_Camel):
    image_ref: NonEmptyStr
    prompt_audio_ref: str | None = None


class HintLevels(BaseModel):
    level3: str | None = None
    level2: str | None = None
    level1: str | None = None
    level0: str | None = None


class PicturePhraseItemSchema(_Camel):
    id: NonEmptyStr
    type: Literal["picturephrase"]
    topic: NonEmptyStr
    media: PicturePhraseMedia
    word_bank: Annotated[list[TokenSchema], Field(min_length=1)]
    sentence_groups: Annotated[list[SentenceGroupSchema], Field(min_length=1)]
    distractors: list[TokenSchema] | None = None
    hint_levels: HintLevels | None = None


class VocabReview(_Camel):
    sentence_prompt: NonEmptyStr
    accepted_pronunciations: list[NonEmptyStr] = Field(default_factory=list)


class VocabMedia(_Camel):
    pronunciation_audio_ref: NonEmptyStr
    image_ref: str | None = None
    slow_audio_ref: str | None = None


class VocabAiMeta(_Camel):
    provider: NonEmptyStr = "manual"
    model: NonEmptyStr = "manual"
    prompt_version: NonEmptyStr = "manual"
    generated_at: NonEmptyStr = "manual"


class VocabWordItemSchema(_Camel):
    id: NonEmptyStr
    type: Literal["vocabword"]
    topic: NonEmptyStr
    word: NonEmptyStr
    syllables: Annotated[list[NonEmptyStr], Field(min_length=1)]
    definition: NonEmptyStr
    part_of_speech: str | None = None
    example_sentence: NonEmptyStr
    review: VocabReview
    hints: list[NonEmptyStr] = Field(default_factory=list)
    media: VocabMedia
    ai_meta: VocabAiMeta | None = None


class PackSettings(_Camel):
    default_support_level: Annotated[int, Field(ge=0, le=3)] | None = None
    audio_enabled_by_default: bool | None = None
    pack_thumbnail_image_ref: NonEmptyStr | None = None


class _PackBase(_Camel):
    schema_version: NonEmptyStr
    pack_id: NonEmptyStr
    title: NonEmptyStr
    description: str | None = None
    version: NonEmptyStr
    language: NonEmptyStr
    age_band: NonEmptyStr
    topics: Annotated[list[NonEmptyStr], Field(min_length=1)]
    settings: PackSettings | None = None
    assets: list[AssetSchema]


class FactCardsPack(_PackBase):
    module_type: Literal["factcards"]
    items: Annotated[list[FactCardItemSchema], Field(min_length=1)]


class PicturePhrasesPack(_PackBase):
    module_type: Literal["picturephrases"]
    items: Annotated[list[PicturePhraseItemSchema], Field(min_length=1)]


class VocabVoicePack(_PackBase):
    module_type: Literal["vocabvoice"]
    items: Annotated[list[VocabWordItemSchema], Field(min_length=1)]


PACK_MODELS: dict[str, type[_PackBase]] = {
    "factcards": FactCardsPack,
    "picturephrases": PicturePhrasesPack,
    "vocabvoice": VocabVoicePack,
}


# ── Generated content ────────────────────────────────────────────


class LearnContent(_Camel):
    headline: NonEmptyStr
    teach_text: NonEmptyStr
    speak_text: NonEmptyStr
    key_points: Annotated[list[NonEmptyStr], Field(max_length=4)] = Field(default_factory=list)
    practice_prompt: str | None = None


class VocabWordContent(_Camel):
    word: NonEmptyStr
    syllables: Annotated[list[NonEmptyStr], Field(min_length=1)]
    definition: NonEmptyStr
    part_of_speech: str | None = None
    example_sentence: NonEmptyStr
    hints: list[NonEmptyStr] = Field(default_factory=list)
    review_sentence: NonEmptyStr
    accepted_pronunciations: list[NonEmptyStr] = Field(default_factory=list)


CONTENT_MODELS: dict[str, type[_Camel]] = {
    "factcards": LearnContent,
    "picturephrases": LearnContent,
    "vocabvoice": VocabWordContent,
}


def _path(loc: tuple) -> str:
    return "/" + "/".join(str(part) for part in loc)


def _issues_from_error(error: ValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(path=_path(err["loc"]), message=err["msg"])
        for err in error.errors()
    ]


def _result(issues: list[ValidationIssue]) -> ValidationResult:
    return ValidationResult(success=not issues, issues=issues)


class ContentValidator:

    def validate_pack(self, payload: Any) -> ValidationResult:
        if not isinstance(payload, dict):
            return _result([ValidationIssue(path="/", message="Pack must be an object")])

        module_type = payload.get("moduleType")
        model = PACK_MODELS.get(module_type) if isinstance(module_type, str) else None
        if model is None:
            return _result([ValidationIssue(
                path="/moduleType",
                message=f"Unknown module type: {module_type!r}",
            )])

        try:
            pack = model.model_validate(payload)
        except ValidationError as e:
            return _result(_issues_from_error(e))

        return _result(_check_references(pack))

    def validate_content(self, module_type: str, payload: Any) -> ValidationResult:
        model = CONTENT_MODELS.get(module_type)
        if model is None:
            return _result([ValidationIssue(
                path="/", message=f"Unknown module type: {module_type!r}",
            )])
        try:
            model.model_validate(payload)
        except ValidationError as e:
            return _result(_issues_from_error(e))
        return _result([])


def _check_references(pack: _PackBase) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    def add(path: str, message: str) -> None:
        issues.append(ValidationIssue(path=path, message=message))

    assets_by_id: dict[str, AssetSchema] = {}
    for asset in pack.assets:
        if asset.id in assets_by_id:
            add("/assets", f"Duplicate asset id: {asset.id}")
        assets_by_id[asset.id] = asset
        if asset.kind == "image" and not asset.alt:
            add("/assets", f"Image asset {asset.id} must include alt text")

    def check_ref(item_label: str, ref: str, expected_kind: str | None = None) -> None:
        asset = assets_by_id.get(ref)
        if asset is None:
            add("/items", f"{item_label} references missing asset {ref}")
        elif expected_kind and asset.kind != expected_kind:
            add("/items", f"{item_label} ref {ref} must point to an {expected_kind} asset")

    item_ids: set[str] = set()
    for item in pack.items:
        if item.id in item_ids:
            add("/items", f"Duplicate item id: {item.id}")
        item_ids.add(item.id)

        if isinstance(item, FactCardItemSchema):
            media = item.media or FactCardMedia()
            for ref in (media.image_ref, media.prompt_audio_ref, media.answer_audio_ref):
                if ref:
                    check_ref(f"FactCard item {item.id}", ref)

        elif isinstance(item, PicturePhraseItemSchema):
            for ref in (item.media.image_ref, item.media.prompt_audio_ref):
                if ref:
                    check_ref(f"PicturePhrase item {item.id}", ref)
            word_ids = {token.id for token in item.word_bank}
            for group in item.sentence_groups:
                if group.min_words > group.max_words:
                    add("/items", f"PicturePhrase item {item.id} has invalid min/max words")
                for required in group.required_word_ids:
                    if required not in word_ids:
                        add(
                            "/items",
                            f"PicturePhrase item {item.id} required word {required} "
                            "not found in wordBank",
                        )

        elif isinstance(item, VocabWordItemSchema):
            for ref in (item.media.pronunciation_audio_ref, item.media.slow_audio_ref):
                if ref:
                    check_ref(f"VocabWord item {item.id} audio", ref, "audio")
            if item.media.image_ref:
                check_ref(f"VocabWord item {item.id} image", item.media.image_ref, "image")
            accepted = [value.strip().lower() for value in item.review.accepted_pronunciations]
            if item.word.strip().lower() not in accepted:
                add(
                    "/items",
                    f"VocabWord item {item.id} must include the base word "
                    "in review.acceptedPronunciations",
                )

    thumbnail = pack.settings.pack_thumbnail_image_ref if pack.settings else None
    if thumbnail:
        asset = assets_by_id.get(thumbnail)
        if asset is None:
            add("/settings/packThumbnailImageRef", f"Pack thumbnail references missing asset {thumbnail}")
        elif asset.kind != "image":
            add("/settings/packThumbnailImageRef", f"Pack thumbnail asset {thumbnail} must be an image")

    return issues
