"""Aves: concurrent AI annotation of bird images with feedback-driven learning."""

__version__ = "0.1.0"

from aves.types import (
    AnnotationCandidate,
    BatchItem,
    BatchJob,
    BoundingBox,
    FeedbackEvent,
    JobProgress,
    Pattern,
)

__all__ = [
    "AnnotationCandidate",
    "BatchItem",
    "BatchJob",
    "BoundingBox",
    "FeedbackEvent",
    "JobProgress",
    "Pattern",
    "__version__",
]
