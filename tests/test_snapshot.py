"""Tests for aves.store.snapshot."""

from __future__ import annotations

import json

import pytest

from aves.learning.patterns import PatternLearner
from aves.store.memory import InMemoryPatternStore
from aves.store.snapshot import SNAPSHOT_VERSION, dump_patterns, load_patterns
from aves.types import (
    AnnotationCandidate,
    AnnotationType,
    BoundingBox,
    FeedbackAction,
    FeedbackEvent,
    PositionDelta,
)

RAW = BoundingBox(0.45, 0.30, 0.10, 0.08)


@pytest.fixture
def trained_learner():
    learner = PatternLearner()
    for _ in range(3):
        learner.learn(FeedbackEvent(
            "item", "Mallard", "el pico", FeedbackAction.correct,
            original_box=RAW, corrected_box=RAW.shifted(PositionDelta(dx=0.03)),
        ))
    learner.learn(FeedbackEvent(
        "item", "Mallard", "la cola", FeedbackAction.reject, rejection_reason="blurry",
    ))
    return learner


class TestSnapshot:
    def test_dump_and_load(self, trained_learner, tmp_path):
        path = tmp_path / "state" / "patterns.json"
        assert dump_patterns(trained_learner.store, path) == 2
        assert not path.with_suffix(".json.tmp").exists()

        restored = PatternLearner(store=InMemoryPatternStore())
        assert load_patterns(path, restored.store) == 2

        pattern = restored.usable_pattern("Mallard", "el pico")
        assert pattern is not None
        assert pattern.mean_delta.dx == pytest.approx(0.03)
        assert restored.get_pattern("Mallard", "la cola").rejection_reasons == {"blurry": 1}

    def test_file_format(self, trained_learner, tmp_path):
        path = tmp_path / "patterns.json"
        dump_patterns(trained_learner.store, path)
        data = json.loads(path.read_text())
        assert data["version"] == SNAPSHOT_VERSION
        assert [p["term"] for p in data["patterns"]] == ["el pico", "la cola"]

    def test_unsupported_version(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text(json.dumps({"version": 99, "patterns": []}))
        with pytest.raises(ValueError, match="version"):
            load_patterns(path, InMemoryPatternStore())

    def test_malformed_entries_skipped(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text(json.dumps({
            "version": SNAPSHOT_VERSION,
            "patterns": [
                {"species": "Mallard"},
                {"species": "Mallard", "term": "el pico", "confidence": 0.9, "sample_count": 4},
            ],
        }))
        store = InMemoryPatternStore()
        assert load_patterns(path, store) == 1
        assert store.get(("Mallard", "el pico")).sample_count == 4

    def test_observations_survive(self, trained_learner, tmp_path):
        trained_learner.learn_from_candidates(
            [AnnotationCandidate("el pico", "beak", RAW, AnnotationType.anatomical, 0.9)],
            species="Mallard",
        )
        path = tmp_path / "patterns.json"
        dump_patterns(trained_learner.store, path)

        store = InMemoryPatternStore()
        load_patterns(path, store)
        pattern = store.get(("Mallard", "el pico"))
        assert pattern.observations == 1
        assert pattern.average_confidence == pytest.approx(0.9)
        assert store.get(("Mallard", "la cola")).average_confidence is None

    def test_non_object_rejected(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text("[]")
        with pytest.raises(ValueError, match="JSON object"):
            load_patterns(path, InMemoryPatternStore())
