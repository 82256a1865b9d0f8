import hashlib

import pytest

from brightsteps.core.cache_key import FIELD_SEPARATOR, KEY_FIELDS, derive_cache_key
from brightsteps.errors import InvalidRequest
from brightsteps.models.schemas import GenerationRequest

BASE = dict(
    module_type="factcards",
    pack_id="animals",
    item_id="fc_001",
    provider="openai",
    model="gpt-5-mini",
    prompt_version="learn-v1",
)


def _request(**overrides) -> GenerationRequest:
    return GenerationRequest(**{**BASE, **overrides})


class TestDeriveCacheKey:
    def test_deterministic(self):
        assert derive_cache_key(_request()) == derive_cache_key(_request())

    def test_sha256_hex_digest(self):
        key = derive_cache_key(_request())
        assert len(key) == 64
        int(key, 16)

    def test_known_layout(self):
        joined = FIELD_SEPARATOR.join(BASE[name] for name in KEY_FIELDS)
        expected = hashlib.sha256(joined.encode("utf-8")).hexdigest()
        assert derive_cache_key(_request()) == expected

    @pytest.mark.parametrize("field", KEY_FIELDS)
    def test_every_field_changes_key(self, field):
        changed = _request(**{field: BASE[field] + "x"})
        assert derive_cache_key(changed) != derive_cache_key(_request())

    def test_field_boundaries_matter(self):
        a = _request(pack_id="ab", item_id="c")
        b = _request(pack_id="a", item_id="bc")
        assert derive_cache_key(a) != derive_cache_key(b)

    @pytest.mark.parametrize("value", ["", "   "])
    def test_blank_field_rejected(self, value):
        with pytest.raises(InvalidRequest):
            derive_cache_key(_request(model=value))

    def test_separator_in_field_rejected(self):
        with pytest.raises(InvalidRequest) as exc:
            derive_cache_key(_request(item_id=f"fc{FIELD_SEPARATOR}001"))
        assert "reserved" in exc.value.message
