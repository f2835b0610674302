"""Capture reviewer decisions as immutable feedback events."""

from __future__ import annotations

import logging

from aves.errors import InvalidFeedback
from aves.learning.patterns import PatternLearner
from aves.store.base import FeedbackStore
from aves.store.memory import InMemoryFeedbackStore
from aves.types import BoundingBox, FeedbackAction, FeedbackEvent
from aves.utils.bbox import validate_box

logger = logging.getLogger(__name__)


def validate_feedback(event: FeedbackEvent) -> list[str]:
    """Validate a feedback event, returning error messages (empty = valid)."""
    errors: list[str] = []
    if not isinstance(event.action, FeedbackAction):
        errors.append(f"Unknown action: {event.action!r}")
        return errors
    if not event.item_id:
        errors.append("Missing item_id")
    if not event.species or not event.species.strip():
        errors.append("Missing species")
    if not event.term or not event.term.strip():
        errors.append("Missing term")

    if event.action == FeedbackAction.correct:
        if event.corrected_box is None:
            errors.append("'correct' feedback requires a corrected box")
        if event.original_box is None:
            errors.append("'correct' feedback requires the original box")
    elif event.corrected_box is not None:
        errors.append(f"'{event.action.value}' feedback must not carry a corrected box")

    if event.action == FeedbackAction.reject:
        if not event.rejection_reason or not event.rejection_reason.strip():
            errors.append("'reject' feedback requires a reason")
    elif event.rejection_reason is not None:
        errors.append(f"'{event.action.value}' feedback must not carry a rejection reason")

    for label, box in (("original", event.original_box), ("corrected", event.corrected_box)):
        if box is not None:
            errors.extend(f"{label} box: {msg}" for msg in validate_box(box))
    return errors


class FeedbackCapture:
    """Append-only recorder for reviewer feedback.

    Every accepted event is kept (two events for the same item are both
    retained as an audit trail). When a learner is attached, accepted events
    are folded into patterns immediately.
    """

    def __init__(
        self,
        store: FeedbackStore | None = None,
        learner: PatternLearner | None = None,
    ) -> None:
        self.store = store if store is not None else InMemoryFeedbackStore()
        self.learner = learner

    def record_feedback(self, event: FeedbackEvent) -> FeedbackEvent:
        """Validate and append *event*.

        Raises:
            InvalidFeedback: if the event is malformed for its action.
        """
        errors = validate_feedback(event)
        if errors:
            raise InvalidFeedback("; ".join(errors))

        self.store.append(event)
        logger.info(
            "Recorded %s feedback for item %s (%s/%s)",
            event.action.value, event.item_id, event.species, event.term,
        )
        if self.learner is not None:
            self.learner.learn(event)
        return event

    def approve(
        self,
        item_id: str,
        species: str,
        term: str,
        original_box: BoundingBox,
        reviewer_id: str | None = None,
    ) -> FeedbackEvent:
        return self.record_feedback(FeedbackEvent(
            item_id=item_id, species=species, term=term,
            action=FeedbackAction.approve, original_box=original_box,
            reviewer_id=reviewer_id,
        ))

    def reject(
        self,
        item_id: str,
        species: str,
        term: str,
        reason: str,
        original_box: BoundingBox | None = None,
        reviewer_id: str | None = None,
    ) -> FeedbackEvent:
        return self.record_feedback(FeedbackEvent(
            item_id=item_id, species=species, term=term,
            action=FeedbackAction.reject, original_box=original_box,
            rejection_reason=reason, reviewer_id=reviewer_id,
        ))

    def correct(
        self,
        item_id: str,
        species: str,
        term: str,
        original_box: BoundingBox,
        corrected_box: BoundingBox,
        reviewer_id: str | None = None,
    ) -> FeedbackEvent:
        return self.record_feedback(FeedbackEvent(
            item_id=item_id, species=species, term=term,
            action=FeedbackAction.correct, original_box=original_box,
            corrected_box=corrected_box, reviewer_id=reviewer_id,
        ))

    def events_for_item(self, item_id: str) -> list[FeedbackEvent]:
        return self.store.events_for_item(item_id)

    def latest_for_item(self, item_id: str) -> FeedbackEvent | None:
        """Most recent event for an item by timestamp (ties: last recorded)."""
        events = self.store.events_for_item(item_id)
        if not events:
            return None
        return max(enumerate(events), key=lambda ie: (ie[1].timestamp, ie[0]))[1]

    def all_events(self) -> list[FeedbackEvent]:
        return self.store.all_events()
