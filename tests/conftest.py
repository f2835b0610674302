"""Shared test fixtures for Aves."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from aves.config import AvesConfig
from aves.learning.patterns import PatternLearner
from aves.types import BoundingBox


def make_raw_candidate(
    spanish: str = "el pico",
    english: str = "beak",
    x: float = 0.45,
    y: float = 0.30,
    width: float = 0.10,
    height: float = 0.08,
    kind: str = "anatomical",
    confidence: float | None = 0.9,
    **extra: Any,
) -> dict[str, Any]:
    """Raw candidate dict as returned by the vision service."""
    raw: dict[str, Any] = {
        "spanishTerm": spanish,
        "englishTerm": english,
        "boundingBox": {"x": x, "y": y, "width": width, "height": height},
        "type": kind,
    }
    if confidence is not None:
        raw["confidence"] = confidence
    raw.update(extra)
    return raw


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TickingTimestamps:
    """Strictly increasing UTC timestamps, one per call."""

    def __init__(self) -> None:
        self._t = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._t += timedelta(seconds=1)
        return self._t


@pytest.fixture
def raw_candidate() -> dict[str, Any]:
    return make_raw_candidate()


@pytest.fixture
def fake_provider() -> MagicMock:
    """Vision provider that answers every image with two valid candidates."""
    provider = MagicMock()
    provider.name = "fake"
    provider.annotate.return_value = [
        make_raw_candidate(),
        make_raw_candidate("las alas", "wings", x=0.2, y=0.4, width=0.3, height=0.2),
    ]
    return provider


@pytest.fixture
def fast_config() -> AvesConfig:
    """Config with no rate limiting and near-zero backoff."""
    config = AvesConfig.default()
    config.rate_limit.capacity = 0
    config.rate_limit.requests_per_minute = 0
    config.retry.max_retries = 2
    config.retry.base_delay_seconds = 0.001
    config.retry.max_delay_seconds = 0.01
    return config


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def learner() -> PatternLearner:
    return PatternLearner(clock=TickingTimestamps())


@pytest.fixture
def beak_box() -> BoundingBox:
    return BoundingBox(x=0.45, y=0.30, width=0.10, height=0.08)
