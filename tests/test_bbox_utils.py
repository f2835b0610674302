"""Tests for aves.utils.bbox."""

from __future__ import annotations

import pytest

from aves.types import BoundingBox
from aves.utils.bbox import clip_box, is_valid_box, validate_box


class TestClipBox:
    def test_inside_unchanged(self):
        box = BoundingBox(0.1, 0.2, 0.3, 0.4)
        assert clip_box(box) == box

    def test_clips_overflow(self):
        clipped = clip_box(BoundingBox(0.9, -0.1, 0.3, 0.3))
        assert clipped.x == pytest.approx(0.9)
        assert clipped.y == 0.0
        assert clipped.width == pytest.approx(0.1)
        assert clipped.height == pytest.approx(0.2)

    def test_fully_outside_collapses(self):
        clipped = clip_box(BoundingBox(1.2, 0.5, 0.1, 0.1))
        assert clipped.width == 0.0


class TestValidateBox:
    def test_valid(self):
        assert validate_box(BoundingBox(0.45, 0.30, 0.10, 0.08)) == []
        assert is_valid_box(BoundingBox(0.0, 0.0, 1.0, 1.0))

    def test_out_of_range(self):
        errors = validate_box(BoundingBox(1.2, 0.3, 0.1, 0.1))
        assert any("x out of [0,1]" in e for e in errors)

    def test_zero_dimensions(self):
        errors = validate_box(BoundingBox(0.5, 0.5, 0.0, 0.1))
        assert any("Non-positive" in e for e in errors)

    def test_nan(self):
        errors = validate_box(BoundingBox(float("nan"), 0.5, 0.1, 0.1))
        assert any("NaN" in e for e in errors)
        assert not is_valid_box(BoundingBox(float("nan"), 0.5, 0.1, 0.1))
