"""Tests for aves.vision.parsing."""

from __future__ import annotations

import json

import pytest

from aves.errors import PermanentServiceError
from aves.types import AnnotationType
from aves.vision.parsing import (
    DEFAULT_CONFIDENCE,
    parse_annotation_payload,
    parse_candidates,
    validate_candidate,
)
from tests.conftest import make_raw_candidate


class TestParseAnnotationPayload:
    def test_bare_array(self, raw_candidate):
        parsed = parse_annotation_payload(json.dumps([raw_candidate]))
        assert parsed == [raw_candidate]

    def test_markdown_fences_tolerated(self, raw_candidate):
        text = "```json\n" + json.dumps([raw_candidate]) + "\n```"
        assert parse_annotation_payload(text) == [raw_candidate]

    def test_plain_fences_tolerated(self):
        assert parse_annotation_payload("```\n[]\n```") == []

    def test_invalid_json_is_permanent(self):
        with pytest.raises(PermanentServiceError, match="not valid JSON") as exc_info:
            parse_annotation_payload("here are your birds!", provider="gemini")
        assert exc_info.value.retryable is False
        assert exc_info.value.provider == "gemini"

    def test_object_is_not_an_array(self):
        with pytest.raises(PermanentServiceError, match="not a JSON array"):
            parse_annotation_payload('{"spanishTerm": "el pico"}')

    def test_empty_body(self):
        with pytest.raises(PermanentServiceError, match="Empty"):
            parse_annotation_payload("```json\n```")


class TestValidateCandidate:
    def test_valid(self, raw_candidate):
        assert validate_candidate(raw_candidate) == []

    def test_not_an_object(self):
        assert validate_candidate("el pico")

    def test_empty_terms(self):
        errors = validate_candidate(make_raw_candidate(spanish="  "))
        assert any("spanishTerm" in e for e in errors)

    def test_box_out_of_range(self):
        errors = validate_candidate(make_raw_candidate(x=1.4))
        assert any("out of [0,1]" in e for e in errors)

    def test_missing_box_field(self):
        raw = make_raw_candidate()
        del raw["boundingBox"]["height"]
        errors = validate_candidate(raw)
        assert any("boundingBox.height" in e for e in errors)

    def test_zero_width(self):
        errors = validate_candidate(make_raw_candidate(width=0.0))
        assert any("Non-positive" in e for e in errors)

    def test_unknown_type(self):
        errors = validate_candidate(make_raw_candidate(kind="texture"))
        assert any("Invalid type" in e for e in errors)

    def test_confidence_out_of_range(self):
        errors = validate_candidate(make_raw_candidate(confidence=1.2))
        assert any("confidence" in e for e in errors)


class TestParseCandidates:
    def test_malformed_candidates_dropped(self, caplog):
        raw_items = [
            make_raw_candidate(),
            make_raw_candidate(x=-0.2),
            {"spanishTerm": "la cola"},
            make_raw_candidate("la cola", "tail", kind="anatomical", x=0.7, y=0.5),
        ]
        with caplog.at_level("WARNING"):
            candidates = parse_candidates(raw_items, species="Mallard", image_ref="duck.jpg")
        assert [c.spanish_term for c in candidates] == ["el pico", "la cola"]
        assert all(c.species == "Mallard" for c in candidates)
        assert "duck.jpg" in caplog.text

    def test_missing_confidence_defaults(self):
        candidates = parse_candidates([make_raw_candidate(confidence=None)])
        assert candidates[0].confidence == DEFAULT_CONFIDENCE

    def test_optional_fields(self):
        raw = make_raw_candidate(difficultyLevel=2, pronunciation="el PEE-koh")
        candidate = parse_candidates([raw])[0]
        assert candidate.difficulty_level == 2
        assert candidate.pronunciation == "el PEE-koh"
        assert candidate.type == AnnotationType.anatomical
        assert candidate.adjusted is False
        assert candidate.original_box is None
