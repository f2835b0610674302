"""Repository protocols for jobs, feedback events and learned patterns.

The pipeline only needs keyed read/write/append operations; any storage
engine that satisfies these protocols can back it. Implementations must be
safe to call from multiple worker threads.
"""

from __future__ import annotations

from typing import Callable, Iterable, Protocol, runtime_checkable

from aves.types import BatchItem, BatchJob, FeedbackEvent, Pattern

PatternKey = tuple[str, str]


@runtime_checkable
class JobStore(Protocol):
    """Durable storage for BatchJob and BatchItem records."""

    def create_job(self, job: BatchJob, items: Iterable[BatchItem]) -> None: ...

    def get_job(self, job_id: str) -> BatchJob | None: ...

    def update_job(self, job_id: str, fn: Callable[[BatchJob], None]) -> BatchJob:
        """Apply *fn* to the stored job atomically and return a snapshot."""
        ...

    def list_jobs(self) -> list[BatchJob]: ...

    def get_item(self, item_id: str) -> BatchItem | None: ...

    def update_item(self, item_id: str, fn: Callable[[BatchItem], None]) -> BatchItem:
        """Apply *fn* to the stored item atomically and return a snapshot."""
        ...

    def items_for_job(self, job_id: str) -> list[BatchItem]: ...

    def complete_item(
        self, item_id: str, fn: Callable[[BatchItem], None], job_fn: Callable[[BatchJob], None]
    ) -> tuple[BatchItem, BatchJob]:
        """Update an item and its parent job's counters in one atomic step."""
        ...


@runtime_checkable
class FeedbackStore(Protocol):
    """Append-only log of reviewer feedback."""

    def append(self, event: FeedbackEvent) -> None: ...

    def events_for_item(self, item_id: str) -> list[FeedbackEvent]: ...

    def all_events(self) -> list[FeedbackEvent]: ...


@runtime_checkable
class PatternStore(Protocol):
    """Keyed storage for learned patterns with per-key serialized updates."""

    def get(self, key: PatternKey) -> Pattern | None: ...

    def update(
        self, key: PatternKey, fn: Callable[[Pattern | None], Pattern | None]
    ) -> Pattern | None:
        """Replace the pattern at *key* with ``fn(current)``.

        Calls for the same key are serialized; different keys do not block
        each other.
        """
        ...

    def put(self, pattern: Pattern) -> None: ...

    def delete(self, key: PatternKey) -> bool: ...

    def all(self) -> list[Pattern]: ...
