"""Tests for aves.batch.__main__ CLI."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from aves.batch import __main__ as cli
from aves.batch.__main__ import collect_images, main
from aves.learning.patterns import PatternLearner
from aves.store.snapshot import dump_patterns
from aves.types import BoundingBox, FeedbackAction, FeedbackEvent
from tests.conftest import make_raw_candidate


@pytest.fixture
def image_dir(tmp_path):
    images = tmp_path / "images"
    images.mkdir()
    for name in ("a.jpg", "b.png", "c.JPEG"):
        (images / name).write_bytes(b"")
    (images / "notes.txt").write_text("not an image")
    return images


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "aves.yaml"
    path.write_text(
        "rate_limit:\n  capacity: 0\n  requests_per_minute: 0\n"
        "retry:\n  base_delay_seconds: 0.001\n"
    )
    return path


@pytest.fixture
def stub_provider(monkeypatch):
    provider = MagicMock()
    provider.name = "stub"
    provider.annotate.return_value = [make_raw_candidate()]
    monkeypatch.setattr(cli, "_create_provider", lambda config: provider)
    return provider


class TestCollectImages:
    def test_directory_expanded(self, image_dir):
        assert [p.name for p in collect_images([image_dir])] == ["a.jpg", "b.png", "c.JPEG"]

    def test_missing_paths_ignored(self, image_dir, tmp_path):
        explicit = image_dir / "a.jpg"
        assert collect_images([explicit, tmp_path / "missing.jpg"]) == [explicit]


class TestCLI:
    def test_json_output(self, image_dir, config_path, stub_provider, capsys):
        ret = main([str(image_dir), "--config", str(config_path), "--json", "--concurrency", "2"])
        assert ret == 0
        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "completed"
        assert data["total"] == 3
        assert data["successful"] == 3
        assert all(item["candidates"][0]["spanishTerm"] == "el pico" for item in data["items"])
        assert stub_provider.annotate.call_count == 3

    def test_rich_output(self, image_dir, config_path, stub_provider):
        assert main([str(image_dir), "--config", str(config_path)]) == 0

    def test_failures_exit_nonzero(self, image_dir, config_path, stub_provider, capsys):
        from aves.errors import PermanentServiceError

        stub_provider.annotate.side_effect = PermanentServiceError("stub", "bad image")
        ret = main([str(image_dir), "--config", str(config_path), "--json"])
        assert ret == 1
        data = json.loads(capsys.readouterr().out)
        assert data["failed"] == 3
        assert "bad image" in data["items"][0]["error"]

    def test_no_images(self, tmp_path):
        assert main([str(tmp_path / "nothing")]) == 1

    def test_missing_credentials(self, image_dir, config_path, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
        assert main([str(image_dir), "--config", str(config_path)]) == 1

    def test_patterns_adjust_candidates(self, image_dir, config_path, stub_provider, tmp_path, capsys):
        learner = PatternLearner()
        raw = BoundingBox(0.45, 0.30, 0.10, 0.08)
        for _ in range(3):
            learner.learn(FeedbackEvent(
                "seed", "Mallard", "el pico", FeedbackAction.correct,
                original_box=raw, corrected_box=BoundingBox(0.48, 0.30, 0.10, 0.08),
            ))
        snapshot = tmp_path / "patterns.json"
        dump_patterns(learner.store, snapshot)

        ret = main([
            str(image_dir), "--config", str(config_path), "--json",
            "--species", "Mallard", "--patterns", str(snapshot),
        ])
        assert ret == 0
        data = json.loads(capsys.readouterr().out)
        candidate = data["items"][0]["candidates"][0]
        assert candidate["adjusted"] is True
        assert candidate["boundingBox"]["x"] == pytest.approx(0.48)
        assert candidate["originalBoundingBox"]["x"] == pytest.approx(0.45)

    def test_missing_patterns_file(self, image_dir, config_path, stub_provider, tmp_path):
        ret = main([str(image_dir), "--config", str(config_path), "--patterns", str(tmp_path / "none.json")])
        assert ret == 1

    @pytest.mark.parametrize(
        "content",
        ['{"version": 99, "patterns": []}', "{not json", "[]"],
    )
    def test_unreadable_patterns_file(self, image_dir, config_path, stub_provider, tmp_path, content):
        snapshot = tmp_path / "patterns.json"
        snapshot.write_text(content)
        ret = main([str(image_dir), "--config", str(config_path), "--patterns", str(snapshot)])
        assert ret == 1
        stub_provider.annotate.assert_not_called()
