"""Core data types for the Aves annotation pipeline.

Every module in the library produces/consumes these types:
- Batch orchestration: BatchJob, BatchItem, JobProgress
- Vision proposals: BoundingBox, AnnotationCandidate
- Review feedback and learning: FeedbackEvent, Pattern, Prediction
"""

from __future__ import annotations

import enum
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AnnotationType(str, enum.Enum):
    """What kind of visual feature an annotation points at."""

    anatomical = "anatomical"
    behavioral = "behavioral"
    color = "color"
    pattern = "pattern"


class JobStatus(str, enum.Enum):
    """Batch job lifecycle: pending -> processing -> {completed, failed, cancelled}."""

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed, JobStatus.cancelled)


class ItemStatus(str, enum.Enum):
    """Per-image status inside a batch job.

    Items never dispatched before a job is cancelled stay ``pending``.
    """

    pending = "pending"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemStatus.succeeded, ItemStatus.failed)


class FeedbackAction(str, enum.Enum):
    """Reviewer decision on a single annotation candidate."""

    approve = "approve"
    reject = "reject"
    correct = "correct"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionDelta:
    """Difference between two boxes: corrected - original."""

    dx: float = 0.0
    dy: float = 0.0
    dw: float = 0.0
    dh: float = 0.0

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.dx ** 2 + self.dy ** 2 + self.dw ** 2 + self.dh ** 2)

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.dx, self.dy, self.dw, self.dh)

    def to_dict(self) -> dict[str, float]:
        return {"dx": self.dx, "dy": self.dy, "dw": self.dw, "dh": self.dh}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PositionDelta:
        return cls(
            dx=float(data.get("dx", 0.0)),
            dy=float(data.get("dy", 0.0)),
            dw=float(data.get("dw", 0.0)),
            dh=float(data.get("dh", 0.0)),
        )


@dataclass(frozen=True)
class BoundingBox:
    """A bounding box in normalized image coordinates.

    ``x`` and ``y`` are the top-left corner; all four fields are in [0, 1].
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def delta_to(self, other: BoundingBox) -> PositionDelta:
        """Delta that moves this box onto *other*."""
        return PositionDelta(
            dx=other.x - self.x,
            dy=other.y - self.y,
            dw=other.width - self.width,
            dh=other.height - self.height,
        )

    def shifted(self, delta: PositionDelta) -> BoundingBox:
        """Return this box moved by *delta* (not clipped)."""
        return BoundingBox(
            x=self.x + delta.dx,
            y=self.y + delta.dy,
            width=self.width + delta.dw,
            height=self.height + delta.dh,
        )

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BoundingBox:
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


# ---------------------------------------------------------------------------
# Vision proposals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AnnotationCandidate:
    """A single AI-proposed annotation pairing a bird feature with a term."""

    spanish_term: str
    english_term: str
    box: BoundingBox
    type: AnnotationType
    confidence: float
    species: str | None = None
    difficulty_level: int | None = None
    pronunciation: str | None = None
    adjusted: bool = False
    original_box: BoundingBox | None = None

    def with_box(self, box: BoundingBox, confidence: float | None = None) -> AnnotationCandidate:
        """Copy with a predicted box, remembering the raw one."""
        return replace(
            self,
            box=box,
            confidence=self.confidence if confidence is None else confidence,
            adjusted=True,
            original_box=self.original_box or self.box,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "spanishTerm": self.spanish_term,
            "englishTerm": self.english_term,
            "boundingBox": self.box.to_dict(),
            "type": self.type.value,
            "confidence": self.confidence,
            "adjusted": self.adjusted,
        }
        if self.species is not None:
            data["species"] = self.species
        if self.difficulty_level is not None:
            data["difficultyLevel"] = self.difficulty_level
        if self.pronunciation is not None:
            data["pronunciation"] = self.pronunciation
        if self.original_box is not None:
            data["originalBoundingBox"] = self.original_box.to_dict()
        return data


# ---------------------------------------------------------------------------
# Batch jobs
# ---------------------------------------------------------------------------


@dataclass
class BatchJob:
    """A batch annotation job. Mutated only by the JobManager."""

    id: str
    total_items: int
    concurrency: int
    status: JobStatus = JobStatus.pending
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    cancel_requested: bool = False
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def percentage(self) -> int:
        if self.total_items <= 0:
            return 0
        return round(self.processed_items / self.total_items * 100)


@dataclass
class BatchItem:
    """One image inside a batch job. Immutable once terminal."""

    id: str
    job_id: str
    image_ref: str
    species: str | None = None
    status: ItemStatus = ItemStatus.pending
    attempts: int = 0
    last_error: str | None = None
    candidates: list[AnnotationCandidate] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class ItemError:
    """Audit record for a failed item."""

    item_id: str
    image_ref: str
    message: str
    attempts: int


@dataclass(frozen=True)
class JobProgress:
    """Consistent snapshot of a job's counters."""

    job_id: str
    status: JobStatus
    total: int
    processed: int
    successful: int
    failed: int
    percentage: int
    cancel_requested: bool = False
    estimated_seconds_remaining: float | None = None
    errors: list[ItemError] = field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return not self.status.is_terminal

    @property
    def has_failures(self) -> bool:
        return self.failed > 0


# ---------------------------------------------------------------------------
# Feedback and learning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeedbackEvent:
    """A reviewer's decision on one annotation. Append-only, never mutated."""

    item_id: str
    species: str
    term: str
    action: FeedbackAction
    original_box: BoundingBox | None = None
    corrected_box: BoundingBox | None = None
    rejection_reason: str | None = None
    reviewer_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    event_id: str = field(default_factory=new_id)

    @property
    def key(self) -> tuple[str, str]:
        return (self.species, self.term)

    @property
    def delta(self) -> PositionDelta | None:
        """Positional delta for corrections; None otherwise."""
        if self.original_box is None or self.corrected_box is None:
            return None
        return self.original_box.delta_to(self.corrected_box)


@dataclass
class Pattern:
    """Learned statistical summary of feedback for one (species, term) pair.

    ``mean_delta`` is a weighted running mean: approvals contribute a zero
    delta with the approval weight, corrections their delta with the
    correction weight. ``delta_variance`` is the matching weighted variance.

    ``observations`` and ``average_confidence`` track high-confidence AI
    proposals for the key. They never count toward ``sample_count``.
    """

    species: str
    term: str
    confidence: float
    sample_count: int = 0
    mean_delta: PositionDelta = field(default_factory=PositionDelta)
    delta_variance: PositionDelta = field(default_factory=PositionDelta)
    delta_weight: float = 0.0
    approvals: int = 0
    rejections: int = 0
    corrections: int = 0
    rejection_reasons: dict[str, int] = field(default_factory=dict)
    rejection_categories: dict[str, int] = field(default_factory=dict)
    last_rejection_reason: str | None = None
    last_rejection_at: datetime | None = None
    observations: int = 0
    average_confidence: float | None = None
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.species, self.term)

    def to_dict(self) -> dict[str, Any]:
        return {
            "species": self.species,
            "term": self.term,
            "confidence": self.confidence,
            "sample_count": self.sample_count,
            "mean_delta": self.mean_delta.to_dict(),
            "delta_variance": self.delta_variance.to_dict(),
            "delta_weight": self.delta_weight,
            "approvals": self.approvals,
            "rejections": self.rejections,
            "corrections": self.corrections,
            "rejection_reasons": dict(self.rejection_reasons),
            "rejection_categories": dict(self.rejection_categories),
            "last_rejection_reason": self.last_rejection_reason,
            "last_rejection_at": self.last_rejection_at.isoformat() if self.last_rejection_at else None,
            "observations": self.observations,
            "average_confidence": self.average_confidence,
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pattern:
        return cls(
            species=data["species"],
            term=data["term"],
            confidence=min(1.0, max(0.0, float(data["confidence"]))),
            sample_count=int(data.get("sample_count", 0)),
            mean_delta=PositionDelta.from_dict(data.get("mean_delta", {})),
            delta_variance=PositionDelta.from_dict(data.get("delta_variance", {})),
            delta_weight=float(data.get("delta_weight", 0.0)),
            approvals=int(data.get("approvals", 0)),
            rejections=int(data.get("rejections", 0)),
            corrections=int(data.get("corrections", 0)),
            rejection_reasons={k: int(v) for k, v in data.get("rejection_reasons", {}).items()},
            rejection_categories={
                k: int(v) for k, v in data.get("rejection_categories", {}).items()
            },
            last_rejection_reason=data.get("last_rejection_reason"),
            last_rejection_at=datetime.fromisoformat(data["last_rejection_at"])
            if data.get("last_rejection_at")
            else None,
            observations=int(data.get("observations", 0)),
            average_confidence=float(data["average_confidence"])
            if data.get("average_confidence") is not None
            else None,
            last_updated=datetime.fromisoformat(data["last_updated"])
            if data.get("last_updated")
            else utcnow(),
        )


@dataclass
class FeatureStats:
    """How often, and how confidently, a term is proposed for one species."""

    term: str
    observations: int = 0
    average_confidence: float = 0.0
    average_difficulty: float | None = None
    difficulty_samples: int = 0
    occurrence_rate: float = 0.0


@dataclass
class SpeciesStats:
    """Per-species tally of high-confidence AI proposals, keyed by term."""

    species: str
    total_annotations: int = 0
    features: dict[str, FeatureStats] = field(default_factory=dict)
    last_updated: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Prediction:
    """Result of running a raw box through the PositionPredictor."""

    box: BoundingBox
    applied: bool
    confidence: float | None = None
    sample_count: int = 0
    delta: PositionDelta | None = None

    @property
    def degraded(self) -> bool:
        """True when there was not enough data to adjust the box."""
        return not self.applied


@dataclass(frozen=True)
class QualityMetrics:
    """Composite quality score for a candidate against its learned pattern."""

    confidence: float
    position_quality: float
    pattern_confidence: float
    overall: float
