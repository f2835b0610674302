"""Pre-adjust raw vision proposals with learned positional patterns."""

from __future__ import annotations

import logging
import math
from typing import Iterable

from aves.learning.patterns import PatternLearner
from aves.types import (
    AnnotationCandidate,
    BoundingBox,
    Pattern,
    PositionDelta,
    Prediction,
    QualityMetrics,
)
from aves.utils.bbox import clip_box

logger = logging.getLogger(__name__)

# Used when no usable pattern exists for a candidate
_DEFAULT_POSITION_QUALITY = 0.7
_DEFAULT_PATTERN_CONFIDENCE = 0.7


class PositionPredictor:
    """Shift raw boxes by the learned mean delta of their (species, term) pattern.

    ``predict`` never raises: a missing or immature pattern is a normal case
    and yields the raw box with ``applied=False``. A usable pattern always
    applies; when clipping the shifted box would leave it empty, the box keeps
    its size and is moved as far as the delta asks while staying in the image.
    """

    def __init__(self, learner: PatternLearner) -> None:
        self.learner = learner

    def predict(self, species: str | None, term: str, raw_box: BoundingBox) -> Prediction:
        pattern = self._usable(species, term)
        if pattern is None:
            return Prediction(box=raw_box, applied=False, sample_count=self._samples(species, term))

        adjusted = clip_box(raw_box.shifted(pattern.mean_delta))
        if adjusted.width <= 0 or adjusted.height <= 0:
            logger.warning(
                "Learned delta for %s/%s pushes box %s off the image; clamping the shift",
                species, term, raw_box,
            )
            adjusted = _clamped_shift(raw_box, pattern.mean_delta)

        return Prediction(
            box=adjusted,
            applied=True,
            confidence=pattern.confidence,
            sample_count=pattern.sample_count,
            delta=pattern.mean_delta,
        )

    def adjust_candidates(
        self,
        candidates: Iterable[AnnotationCandidate],
        species: str | None = None,
    ) -> list[AnnotationCandidate]:
        """Rewrite candidates whose pattern is usable; pass the rest through unchanged."""
        adjusted: list[AnnotationCandidate] = []
        applied = 0
        for candidate in candidates:
            key_species = candidate.species or species
            prediction = self.predict(key_species, candidate.spanish_term, candidate.box)
            if prediction.applied:
                adjusted.append(candidate.with_box(prediction.box))
                applied += 1
            else:
                adjusted.append(candidate)
        if applied:
            logger.info("Adjusted %d/%d candidates from learned patterns", applied, len(adjusted))
        return adjusted

    def evaluate_quality(
        self, candidate: AnnotationCandidate, species: str | None = None
    ) -> QualityMetrics:
        """Score a candidate against its learned pattern.

        Position quality decays with the distance between the candidate's raw
        box and where the pattern expects it, normalized by the learned spread.
        """
        key_species = candidate.species or species
        pattern = self._usable(key_species, candidate.spanish_term)
        position_quality = _DEFAULT_POSITION_QUALITY
        pattern_confidence = _DEFAULT_PATTERN_CONFIDENCE

        if pattern is not None:
            raw = candidate.original_box or candidate.box
            expected = raw.shifted(pattern.mean_delta)
            var = pattern.delta_variance
            dist_x = abs(expected.x - raw.x) / math.sqrt(var.dx + 0.01)
            dist_y = abs(expected.y - raw.y) / math.sqrt(var.dy + 0.01)
            position_quality = math.exp(-math.hypot(dist_x, dist_y) / 2)
            pattern_confidence = pattern.confidence

        overall = candidate.confidence * 0.4 + position_quality * 0.3 + pattern_confidence * 0.3
        return QualityMetrics(
            confidence=candidate.confidence,
            position_quality=position_quality,
            pattern_confidence=pattern_confidence,
            overall=overall,
        )

    # ------------------------------------------------------------------

    def _usable(self, species: str | None, term: str) -> Pattern | None:
        if not species or not term:
            return None
        return self.learner.usable_pattern(species, term)

    def _samples(self, species: str | None, term: str) -> int:
        if not species or not term:
            return 0
        pattern = self.learner.get_pattern(species, term)
        return pattern.sample_count if pattern is not None else 0


def _clamped_shift(raw: BoundingBox, delta: PositionDelta) -> BoundingBox:
    """Shift *raw* by *delta*, keeping a non-empty box fully inside the image."""
    width = raw.width + delta.dw
    height = raw.height + delta.dh
    width = min(1.0, width if width > 0 else raw.width)
    height = min(1.0, height if height > 0 else raw.height)
    x = min(max(raw.x + delta.dx, 0.0), 1.0 - width)
    y = min(max(raw.y + delta.dy, 0.0), 1.0 - height)
    return BoundingBox(x=x, y=y, width=width, height=height)
