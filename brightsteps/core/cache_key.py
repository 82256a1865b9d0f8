"""Deterministic cache keys for generation requests."""

import hashlib

from brightsteps.errors import InvalidRequest
from brightsteps.models.schemas import GenerationRequest

FIELD_SEPARATOR = "\x1f"

# Fixed order; changing it changes every key.
KEY_FIELDS = ("module_type", "pack_id", "item_id", "provider", "model", "prompt_version")


def derive_cache_key(request: GenerationRequest) -> str:
    """SHA256 of the request fields joined with a reserved separator.

    Raises:
        InvalidRequest: If a field is empty or contains the separator.
    """
    values = []
    for name in KEY_FIELDS:
        value = getattr(request, name)
        if not isinstance(value, str) or not value.strip():
            raise InvalidRequest(
                f"Generation request field '{name}' must be a non-empty string",
                pack_id=request.pack_id or None,
                item_id=request.item_id or None,
            )
        if FIELD_SEPARATOR in value:
            raise InvalidRequest(
                f"Generation request field '{name}' contains a reserved character",
                pack_id=request.pack_id or None,
                item_id=request.item_id or None,
            )
        values.append(value)

    payload = FIELD_SEPARATOR.join(values)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
