"""Per-image annotation: rate limiting, vision call, retries, validation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from aves.config import DEFAULT_ANNOTATION_PROMPT, RetryConfig
from aves.errors import RateLimitTimeout, VisionServiceError
from aves.learning.guidance import build_prompt
from aves.learning.patterns import PatternLearner
from aves.learning.predictor import PositionPredictor
from aves.types import AnnotationCandidate, BatchItem
from aves.utils.rate_limiter import RateLimiter
from aves.vision.base import VisionProvider
from aves.vision.parsing import parse_candidates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``delay = base_delay * 2**attempt``, capped at ``max_delay``."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt is 0-based)."""
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
        )


@dataclass
class WorkResult:
    """Outcome of processing one BatchItem."""

    succeeded: bool
    attempts: int
    candidates: list[AnnotationCandidate] = field(default_factory=list)
    error: str | None = None
    cancelled: bool = False


class AnnotationWorker:
    """Annotate single images against a vision provider.

    Transient failures (``TransientServiceError`` and ``RateLimitTimeout``)
    are retried with exponential backoff; permanent failures end the item
    immediately. The worker never raises for service faults: the outcome is
    reported as a :class:`WorkResult` so one bad image cannot abort a job.
    """

    def __init__(
        self,
        provider: VisionProvider,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy | None = None,
        predictor: PositionPredictor | None = None,
        learner: PatternLearner | None = None,
        prompt: str = DEFAULT_ANNOTATION_PROMPT,
        acquire_timeout: float = 60.0,
    ) -> None:
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()
        self.predictor = predictor
        self.learner = learner
        self.prompt = prompt
        self.acquire_timeout = acquire_timeout

    def prompt_for(self, species: str | None) -> str:
        if self.learner is None or not species:
            return self.prompt
        return build_prompt(self.prompt, self.learner, species)

    def process(self, item: BatchItem, cancel_event: threading.Event | None = None) -> WorkResult:
        """Run the full annotate/validate/adjust cycle for one item."""
        cancel_event = cancel_event or threading.Event()
        policy = self.retry_policy
        prompt = self.prompt_for(item.species)
        last_error: str | None = None

        for attempt in range(policy.max_attempts):
            if attempt > 0:
                delay = policy.delay(attempt - 1)
                logger.warning(
                    "Retrying %s in %.1fs (attempt %d/%d): %s",
                    item.image_ref, delay, attempt + 1, policy.max_attempts, last_error,
                )
                # Backoff is interruptible by cancellation
                if cancel_event.wait(delay):
                    logger.info("Cancelled %s before attempt %d", item.image_ref, attempt + 1)
                    return WorkResult(
                        succeeded=False,
                        attempts=attempt,
                        error=f"Cancelled after {attempt} attempt(s): {last_error}",
                        cancelled=True,
                    )

            logger.debug("Annotating %s (attempt %d/%d)", item.image_ref, attempt + 1, policy.max_attempts)
            try:
                self.rate_limiter.wait_for_token(self.acquire_timeout)
                raw_items = self.provider.annotate(item.image_ref, prompt)
            except RateLimitTimeout as exc:
                last_error = str(exc)
                continue
            except VisionServiceError as exc:
                last_error = str(exc)
                if exc.retryable:
                    continue
                logger.error(
                    "Permanent failure for %s on attempt %d: %s",
                    item.image_ref, attempt + 1, exc,
                )
                return WorkResult(succeeded=False, attempts=attempt + 1, error=last_error)

            candidates = parse_candidates(raw_items, species=item.species, image_ref=item.image_ref)
            if self.predictor is not None:
                candidates = self.predictor.adjust_candidates(candidates, species=item.species)
            logger.info(
                "Annotated %s: %d candidates (attempt %d)",
                item.image_ref, len(candidates), attempt + 1,
            )
            return WorkResult(succeeded=True, attempts=attempt + 1, candidates=candidates)

        logger.error(
            "Giving up on %s after %d attempts: %s",
            item.image_ref, policy.max_attempts, last_error,
        )
        return WorkResult(succeeded=False, attempts=policy.max_attempts, error=last_error)
