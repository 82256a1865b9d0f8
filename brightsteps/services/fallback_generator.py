"""Offline generation capability: deterministic content built from the pack item.

Used when no AI provider is wired in (CLI, local editing, tests). Output has
the same shape a provider would return, so it flows through the cache,
history and asset stores unchanged.
"""

import io
import logging
import re
import wave

from brightsteps.core.coordinator import GeneratedContent
from brightsteps.core.packs import PackRepository, find_item
from brightsteps.errors import GenerationFailure
from brightsteps.models.schemas import GenerationRequest

logger = logging.getLogger(__name__)

PROVIDER_ID = "fallback"

_VOWEL_GROUP_RE = re.compile(r"[^aeiouy]*[aeiouy]+(?:[^aeiouy]*$|[^aeiouy](?=[^aeiouy]))?", re.IGNORECASE)


def _normalize(value) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip()


def split_syllables(word: str) -> list[str]:
    """Rough vowel-group split; good enough for a placeholder."""
    clean = _normalize(word)
    if not clean:
        return []
    parts = [p for p in _VOWEL_GROUP_RE.findall(clean) if p]
    if "".join(parts) != clean:
        return [clean]
    return parts


def silent_wav(duration_ms: int = 400, sample_rate: int = 8000) -> bytes:
    """A short mono 16-bit silent WAV clip."""
    frames = int(sample_rate * duration_ms / 1000)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(b"\x00\x00" * frames)
    return buffer.getvalue()


def factcard_content(item: dict) -> dict:
    prompt = _normalize(item.get("prompt"))
    answer = _normalize(item.get("answer"))
    speak = f"{answer}. Question: {prompt}." if prompt else answer
    content = {
        "headline": "Learn this fact",
        "teachText": f"{prompt} The answer is {answer}.".strip(),
        "speakText": speak.strip(),
        "keyPoints": [answer] if answer else [],
    }
    if prompt:
        content["practicePrompt"] = prompt
    return content


def picturephrase_content(item: dict) -> dict:
    groups = item.get("sentenceGroups") or []
    canonical = ""
    if groups and isinstance(groups[0], dict):
        canonical = _normalize(groups[0].get("canonical"))
    canonical = canonical or "The picture shows a scene."
    words = [
        _normalize(token.get("text"))
        for token in item.get("wordBank") or []
        if isinstance(token, dict)
    ]
    return {
        "headline": "Learn this sentence",
        "teachText": canonical,
        "speakText": canonical,
        "keyPoints": [w for w in words if w][:3],
        "practicePrompt": "Say the sentence clearly using simple words.",
    }


def vocab_content(item: dict) -> dict:
    word = _normalize(item.get("word"))
    topic = _normalize(item.get("topic")) or "general"
    syllables = split_syllables(word) or [word]
    return {
        "word": word,
        "syllables": syllables,
        "definition": f"A word about {topic}: {word}.",
        "partOfSpeech": "",
        "exampleSentence": f"I can say the word {word}.",
        "hints": [f"It starts with {word[0]}."] if word else [],
        "reviewSentence": f"Say the word {word}.",
        "acceptedPronunciations": [word.lower()] if word else [],
    }


_BUILDERS = {
    "factcards": factcard_content,
    "picturephrases": picturephrase_content,
    "vocabvoice": vocab_content,
}


class FallbackGenerator:
    """Callable generation capability backed by the stored pack document."""

    def __init__(self, packs: PackRepository, with_audio: bool = True):
        self._packs = packs
        self._with_audio = with_audio

    def __call__(self, request: GenerationRequest) -> GeneratedContent:
        pack = self._packs.get(request.pack_id)
        if pack is None:
            raise GenerationFailure(
                f"Pack not found: {request.pack_id}", pack_id=request.pack_id,
            )

        item = find_item(pack.payload, request.item_id)
        if item is None:
            raise GenerationFailure(
                f"Item {request.item_id} not found in pack {request.pack_id}",
                pack_id=request.pack_id,
                item_id=request.item_id,
            )

        builder = _BUILDERS.get(request.module_type)
        if builder is None:
            raise GenerationFailure(f"No fallback content for {request.module_type}")

        content = builder(item)
        logger.info("Fallback content built for %s/%s", request.pack_id, request.item_id)

        if not self._with_audio:
            return GeneratedContent(content_payload=content)
        return GeneratedContent(
            content_payload=content,
            audio_bytes=silent_wav(),
            audio_mime_type="audio/wav",
        )
