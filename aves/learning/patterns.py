"""Feedback-driven pattern learning.

Folds reviewer FeedbackEvents into per-(species, term) Patterns:

    approve  -> confidence += approval_boost, zero delta folded into the mean
    reject   -> confidence -= rejection_penalty, rejection histograms updated
    correct  -> (corrected - original) folded into the mean with correction_weight

Every event increments the sample count. A pattern is usable for prediction
once ``sample_count >= min_samples``; below that the statistics still
accumulate but the predictor treats the pattern as absent. Rejections never
lower the sample count, so a usable pattern is not demoted by rejections;
only its confidence drops.

The mean delta is a weighted running mean with a matching weighted variance
(West's incremental algorithm), so a correction moves the mean more than an
approval does. Patterns for different species never share statistics.

Succeeded batch items feed a second, weaker signal: AI candidates at or
above ``annotation_confidence_threshold`` update each pattern's
``observations``/``average_confidence`` and the per-species feature stats
behind ``recommended_features``. That signal never moves the mean delta and
never makes a pattern usable.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Iterable

import numpy as np

from aves.config import LearningConfig
from aves.store.base import PatternStore
from aves.store.memory import InMemoryPatternStore
from aves.types import (
    AnnotationCandidate,
    FeatureStats,
    FeedbackAction,
    FeedbackEvent,
    Pattern,
    PositionDelta,
    SpeciesStats,
    utcnow,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rejection categories
# ---------------------------------------------------------------------------

_REJECTION_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("incorrect_species", ("species", "wrong bird")),
    ("incorrect_feature", ("feature", "part", "anatomy")),
    ("poor_localization", ("position", "localization", "bounding box", "bbox")),
    ("false_positive", ("false", "not found", "doesn't exist", "not visible")),
    ("duplicate", ("duplicate", "already exists")),
    ("low_quality", ("quality", "blurry", "unclear")),
]


def categorize_rejection(reason: str) -> str:
    """Map a free-text rejection reason onto a coarse category."""
    lowered = reason.lower()
    for category, keywords in _REJECTION_KEYWORDS:
        if any(kw in lowered for kw in keywords):
            return category
    return "other"


# ---------------------------------------------------------------------------
# Weighted running statistics
# ---------------------------------------------------------------------------


def fold_weighted(
    mean: PositionDelta,
    variance: PositionDelta,
    total_weight: float,
    value: PositionDelta,
    weight: float,
) -> tuple[PositionDelta, PositionDelta, float]:
    """Fold one weighted observation into a running mean/variance.

    Returns the new ``(mean, variance, total_weight)``.
    """
    if weight <= 0:
        return mean, variance, total_weight
    new_weight = total_weight + weight
    new_mean: list[float] = []
    new_var: list[float] = []
    for m, v, x in zip(mean.as_tuple(), variance.as_tuple(), value.as_tuple()):
        diff = x - m
        m2 = m + (weight / new_weight) * diff
        # S_n = S_{n-1} + w * (x - m_{n-1}) * (x - m_n), variance = S / W
        v2 = (v * total_weight + weight * diff * (x - m2)) / new_weight
        new_mean.append(m2)
        new_var.append(max(0.0, v2))
    return PositionDelta(*new_mean), PositionDelta(*new_var), new_weight


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def _running_mean(mean: float | None, value: float, count: int) -> float:
    """Mean of ``count`` earlier values plus *value*."""
    if mean is None or count <= 0:
        return value
    return mean + (value - mean) / (count + 1)


# ---------------------------------------------------------------------------
# PatternLearner
# ---------------------------------------------------------------------------


class PatternLearner:
    """Online learner turning reviewer feedback into positional patterns.

    Updates go through ``PatternStore.update`` so events for the same
    (species, term) are serialized while different keys proceed in parallel.
    Malformed or sparse feedback is logged and skipped, never raised.
    """

    def __init__(
        self,
        store: PatternStore | None = None,
        config: LearningConfig | None = None,
        clock: Callable[[], Any] = utcnow,
    ) -> None:
        self.store = store if store is not None else InMemoryPatternStore()
        self.config = config or LearningConfig()
        self._clock = clock
        self._species_stats: dict[str, SpeciesStats] = {}
        self._stats_lock = threading.Lock()

    @property
    def min_samples(self) -> int:
        return self.config.min_samples

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def learn(self, event: FeedbackEvent) -> Pattern | None:
        """Fold one event into its pattern. Returns the updated pattern, or None if skipped."""
        problem = self._check_event(event)
        if problem:
            logger.warning("Skipping feedback event %s: %s", getattr(event, "event_id", "?"), problem)
            return None

        pattern = self.store.update(event.key, lambda current: self._apply(current, event))
        if pattern is not None:
            logger.debug(
                "Learned %s for %s/%s: samples=%d confidence=%.3f",
                event.action.value, event.species, event.term,
                pattern.sample_count, pattern.confidence,
            )
        return pattern

    def learn_batch(self, events: Iterable[FeedbackEvent]) -> int:
        """Fold many events in order. Returns how many were applied."""
        applied = 0
        for event in events:
            if self.learn(event) is not None:
                applied += 1
        logger.info("Learned from %d feedback events", applied)
        return applied

    def _check_event(self, event: Any) -> str | None:
        if not isinstance(event, FeedbackEvent):
            return f"not a FeedbackEvent ({type(event).__name__})"
        if not event.species or not event.term:
            return "missing species or term"
        if event.action == FeedbackAction.correct and event.delta is None:
            return "correction without both original and corrected boxes"
        if event.action == FeedbackAction.reject and not (event.rejection_reason or "").strip():
            return "rejection without a reason"
        return None

    def _new_pattern(self, event: FeedbackEvent) -> Pattern:
        return Pattern(
            species=event.species,
            term=event.term,
            confidence=_clamp01(self.config.initial_confidence),
            last_updated=self._clock(),
        )

    def _apply(self, current: Pattern | None, event: FeedbackEvent) -> Pattern | None:
        pattern = current if current is not None else self._new_pattern(event)
        cfg = self.config

        if event.action == FeedbackAction.approve:
            pattern.confidence = _clamp01(pattern.confidence + cfg.approval_boost)
            # An approval says the proposed position was right: a zero delta
            pattern.mean_delta, pattern.delta_variance, pattern.delta_weight = fold_weighted(
                pattern.mean_delta, pattern.delta_variance, pattern.delta_weight,
                PositionDelta(), cfg.approval_weight,
            )
            pattern.approvals += 1

        elif event.action == FeedbackAction.reject:
            reason = (event.rejection_reason or "").strip()
            pattern.confidence = _clamp01(pattern.confidence - cfg.rejection_penalty)
            pattern.rejection_reasons[reason] = pattern.rejection_reasons.get(reason, 0) + 1
            category = categorize_rejection(reason)
            pattern.rejection_categories[category] = pattern.rejection_categories.get(category, 0) + 1
            if pattern.last_rejection_at is None or event.timestamp >= pattern.last_rejection_at:
                pattern.last_rejection_reason = reason
                pattern.last_rejection_at = event.timestamp
            pattern.rejections += 1

        elif event.action == FeedbackAction.correct:
            delta = event.delta
            if delta is None:
                return current
            pattern.mean_delta, pattern.delta_variance, pattern.delta_weight = fold_weighted(
                pattern.mean_delta, pattern.delta_variance, pattern.delta_weight,
                delta, cfg.correction_weight,
            )
            pattern.corrections += 1

        pattern.sample_count += 1
        pattern.last_updated = self._clock()
        return pattern

    # ------------------------------------------------------------------
    # Learning from AI proposals
    # ------------------------------------------------------------------

    def learn_from_candidates(
        self,
        candidates: Iterable[AnnotationCandidate],
        species: str | None = None,
    ) -> int:
        """Record high-confidence candidates of a succeeded item.

        A candidate's own species wins over *species*; candidates with no
        species at all are ignored. Returns how many candidates were learned.
        """
        threshold = self.config.annotation_confidence_threshold
        by_species: dict[str, list[AnnotationCandidate]] = {}
        for candidate in candidates:
            if not isinstance(candidate, AnnotationCandidate):
                logger.warning("Skipping non-candidate %r", type(candidate).__name__)
                continue
            key_species = candidate.species or species
            if not key_species or not candidate.spanish_term:
                continue
            if candidate.confidence < threshold:
                continue
            by_species.setdefault(key_species, []).append(candidate)

        learned = 0
        for key_species, group in by_species.items():
            for candidate in group:
                self.store.update(
                    (key_species, candidate.spanish_term),
                    lambda current, c=candidate, s=key_species: self._observe(current, s, c),
                )
            self._update_species_stats(key_species, group)
            learned += len(group)

        if learned:
            logger.debug("Learned from %d high-confidence candidates", learned)
        return learned

    def _observe(
        self, current: Pattern | None, species: str, candidate: AnnotationCandidate
    ) -> Pattern:
        if current is None:
            current = Pattern(
                species=species,
                term=candidate.spanish_term,
                confidence=_clamp01(self.config.initial_confidence),
                last_updated=self._clock(),
            )
        current.average_confidence = _running_mean(
            current.average_confidence, candidate.confidence, current.observations
        )
        current.observations += 1
        current.last_updated = self._clock()
        return current

    def _update_species_stats(self, species: str, candidates: list[AnnotationCandidate]) -> None:
        with self._stats_lock:
            stats = self._species_stats.get(species)
            if stats is None:
                stats = SpeciesStats(species=species)
                self._species_stats[species] = stats

            for candidate in candidates:
                feature = stats.features.get(candidate.spanish_term)
                if feature is None:
                    feature = FeatureStats(term=candidate.spanish_term)
                    stats.features[candidate.spanish_term] = feature
                feature.average_confidence = _running_mean(
                    feature.average_confidence, candidate.confidence, feature.observations
                )
                feature.observations += 1
                if candidate.difficulty_level is not None:
                    feature.average_difficulty = _running_mean(
                        feature.average_difficulty,
                        float(candidate.difficulty_level),
                        feature.difficulty_samples,
                    )
                    feature.difficulty_samples += 1

            stats.total_annotations += len(candidates)
            for feature in stats.features.values():
                feature.occurrence_rate = feature.observations / stats.total_annotations
            stats.last_updated = self._clock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_pattern(self, species: str, term: str) -> Pattern | None:
        return self.store.get((species, term))

    def is_usable(self, pattern: Pattern | None) -> bool:
        """A pattern informs predictions only once it has ``min_samples`` observations."""
        return pattern is not None and pattern.sample_count >= self.config.min_samples

    def usable_pattern(self, species: str, term: str) -> Pattern | None:
        """The pattern for the key if it is usable, else None."""
        pattern = self.get_pattern(species, term)
        return pattern if self.is_usable(pattern) else None

    def reset_pattern(self, species: str, term: str) -> bool:
        """Clear all learned statistics for a key. Returns False if nothing was learned yet."""
        existed = self.store.get((species, term)) is not None
        if not existed:
            return False
        self.store.update(
            (species, term),
            lambda current: Pattern(
                species=species,
                term=term,
                confidence=_clamp01(self.config.initial_confidence),
                last_updated=self._clock(),
            ),
        )
        logger.info("Reset pattern %s/%s", species, term)
        return True

    def common_rejections(
        self,
        species: str,
        term: str,
        min_count: int | None = None,
        limit: int = 3,
    ) -> list[tuple[str, int]]:
        """Most frequent rejection reasons seen at least *min_count* times."""
        pattern = self.get_pattern(species, term)
        if pattern is None:
            return []
        threshold = self.config.common_rejection_min_count if min_count is None else min_count
        reasons = [(r, c) for r, c in pattern.rejection_reasons.items() if c >= threshold]
        reasons.sort(key=lambda rc: (-rc[1], rc[0]))
        return reasons[:limit]

    def species_stats(self, species: str) -> SpeciesStats | None:
        with self._stats_lock:
            stats = self._species_stats.get(species)
            return copy.deepcopy(stats) if stats is not None else None

    def recommended_features(self, species: str, limit: int | None = None) -> list[str]:
        """Terms most worth annotating for *species*, by occurrence rate x confidence."""
        stats = self.species_stats(species)
        if stats is None:
            return []
        if limit is None:
            limit = self.config.recommended_features
        ranked = sorted(
            stats.features.values(),
            key=lambda f: (-(f.occurrence_rate * f.average_confidence), f.term),
        )
        return [f.term for f in ranked[:limit]]

    def patterns_for_species(self, species: str) -> list[Pattern]:
        return sorted(
            (p for p in self.store.all() if p.species == species),
            key=lambda p: p.term,
        )

    def analytics(self, top_n: int = 10) -> dict[str, Any]:
        """Summary of everything learned so far."""
        patterns = self.store.all()
        usable = [p for p in patterns if self.is_usable(p)]

        species_breakdown: dict[str, dict[str, int]] = {}
        for p in patterns:
            entry = species_breakdown.setdefault(p.species, {"patterns": 0, "samples": 0})
            entry["patterns"] += 1
            entry["samples"] += p.sample_count

        category_totals: dict[str, int] = {}
        for p in patterns:
            for category, count in p.rejection_categories.items():
                category_totals[category] = category_totals.get(category, 0) + count

        confidences = np.array([p.confidence for p in patterns], dtype=float)
        magnitudes = np.array([p.mean_delta.magnitude for p in usable], dtype=float)

        top = sorted(patterns, key=lambda p: (-p.sample_count, p.key))[:top_n]
        return {
            "total_patterns": len(patterns),
            "usable_patterns": len(usable),
            "species_tracked": len(species_breakdown),
            "total_samples": int(sum(p.sample_count for p in patterns)),
            "total_observations": int(sum(p.observations for p in patterns)),
            "mean_confidence": float(confidences.mean()) if confidences.size else 0.0,
            "mean_usable_delta_magnitude": float(magnitudes.mean()) if magnitudes.size else 0.0,
            "rejection_categories": dict(sorted(category_totals.items(), key=lambda kv: -kv[1])),
            "top_patterns": [
                {
                    "species": p.species,
                    "term": p.term,
                    "samples": p.sample_count,
                    "confidence": p.confidence,
                    "usable": self.is_usable(p),
                }
                for p in top
            ],
            "species_breakdown": [
                {"species": s, **counts}
                for s, counts in sorted(species_breakdown.items(), key=lambda kv: -kv[1]["samples"])
            ],
        }

