import copy

import pytest

from brightsteps.core.validator import ContentValidator


@pytest.fixture
def validator():
    return ContentValidator()


def _picturephrases_payload():
    return {
        "schemaVersion": "2.0.0",
        "packId": "park",
        "moduleType": "picturephrases",
        "title": "At the Park",
        "version": "1.0.0",
        "language": "en",
        "ageBand": "6-10",
        "topics": ["outdoors"],
        "assets": [{"id": "img_dog", "kind": "image", "path": "images/dog.png", "alt": "A dog running"}],
        "items": [{
            "id": "pp_001",
            "type": "picturephrase",
            "topic": "outdoors",
            "media": {"imageRef": "img_dog"},
            "wordBank": [
                {"id": "w1", "text": "dog"},
                {"id": "w2", "text": "runs"},
            ],
            "sentenceGroups": [{
                "intent": "describe",
                "canonical": "The dog runs.",
                "acceptable": ["The dog runs.", "A dog runs."],
                "requiredWordIds": ["w1", "w2"],
                "minWords": 2,
                "maxWords": 5,
            }],
        }],
    }


def _paths(result):
    return [issue.path for issue in result.issues]


def _messages(result):
    return " | ".join(issue.message for issue in result.issues)


class TestValidatePack:
    def test_valid_factcards(self, validator, factcards_doc):
        result = validator.validate_pack(factcards_doc)
        assert result.success, result.messages()
        assert result.issues == []

    def test_valid_vocab(self, validator, vocab_doc):
        assert validator.validate_pack(vocab_doc).success

    def test_valid_picturephrases(self, validator):
        assert validator.validate_pack(_picturephrases_payload()).success

    def test_not_an_object(self, validator):
        result = validator.validate_pack(["nope"])
        assert not result.success
        assert _paths(result) == ["/"]

    def test_unknown_module_type(self, validator, factcards_doc):
        payload = factcards_doc
        payload["moduleType"] = "quiz"
        result = validator.validate_pack(payload)
        assert not result.success
        assert _paths(result) == ["/moduleType"]

    def test_missing_field_reports_path(self, validator, factcards_doc):
        payload = factcards_doc
        del payload["items"][1]["answer"]
        result = validator.validate_pack(payload)
        assert not result.success
        assert "/items/1/answer" in _paths(result)

    def test_empty_items_rejected(self, validator, factcards_doc):
        payload = factcards_doc
        payload["items"] = []
        assert not validator.validate_pack(payload).success

    def test_duplicate_item_ids(self, validator, factcards_doc):
        payload = factcards_doc
        payload["items"][1]["id"] = "fc_001"
        result = validator.validate_pack(payload)
        assert not result.success
        assert "Duplicate item id: fc_001" in _messages(result)

    def test_duplicate_asset_ids(self, validator, factcards_doc):
        payload = factcards_doc
        payload["assets"].append(copy.deepcopy(payload["assets"][0]))
        assert "Duplicate asset id" in _messages(validator.validate_pack(payload))

    def test_image_without_alt(self, validator, factcards_doc):
        payload = factcards_doc
        payload["assets"][0]["alt"] = ""
        assert "must include alt text" in _messages(validator.validate_pack(payload))

    def test_dangling_asset_reference(self, validator, factcards_doc):
        payload = factcards_doc
        payload["items"][0]["media"]["imageRef"] = "img_missing"
        result = validator.validate_pack(payload)
        assert not result.success
        assert "references missing asset img_missing" in _messages(result)

    def test_vocab_audio_ref_must_be_audio(self, validator, vocab_doc):
        payload = vocab_doc
        payload["assets"][0]["kind"] = "image"
        payload["assets"][0]["alt"] = "Elephant"
        assert "must point to an audio asset" in _messages(validator.validate_pack(payload))

    def test_vocab_word_in_accepted_pronunciations(self, validator, vocab_doc):
        payload = vocab_doc
        payload["items"][0]["review"]["acceptedPronunciations"] = ["elefant"]
        assert "acceptedPronunciations" in _messages(validator.validate_pack(payload))

    def test_picturephrase_required_word_missing(self, validator):
        payload = _picturephrases_payload()
        payload["items"][0]["sentenceGroups"][0]["requiredWordIds"] = ["w9"]
        assert "required word w9" in _messages(validator.validate_pack(payload))

    def test_picturephrase_min_over_max(self, validator):
        payload = _picturephrases_payload()
        payload["items"][0]["sentenceGroups"][0]["minWords"] = 6
        assert "invalid min/max words" in _messages(validator.validate_pack(payload))

    def test_thumbnail_must_be_image(self, validator, vocab_doc):
        payload = vocab_doc
        payload["settings"] = {"packThumbnailImageRef": "aud_elephant"}
        result = validator.validate_pack(payload)
        assert "/settings/packThumbnailImageRef" in _paths(result)


class TestValidateContent:
    def test_valid_learn_content(self, validator):
        payload = {
            "headline": "Cats",
            "teachText": "Cats have four legs.",
            "speakText": "Cats have four legs.",
            "keyPoints": ["Four legs"],
        }
        assert validator.validate_content("factcards", payload).success

    def test_too_many_key_points(self, validator):
        payload = {
            "headline": "Cats",
            "teachText": "Cats have four legs.",
            "speakText": "Cats have four legs.",
            "keyPoints": ["a", "b", "c", "d", "e"],
        }
        result = validator.validate_content("picturephrases", payload)
        assert not result.success
        assert "/keyPoints" in _paths(result)

    def test_vocab_content_requires_word(self, validator):
        result = validator.validate_content("vocabvoice", {"definition": "x"})
        assert not result.success
        assert "/word" in _paths(result)

    def test_unknown_module(self, validator):
        assert not validator.validate_content("quiz", {}).success

    def test_never_raises_on_garbage(self, validator):
        assert not validator.validate_content("factcards", "not a dict").success
