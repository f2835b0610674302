"""Batch job orchestration.

Each job gets a coordinator thread that feeds items into a
``ThreadPoolExecutor`` sized to the job's concurrency. A semaphore with the
same size gates dispatch, so an item counts as started only once it holds a
pool slot, and the cancellation flag is checked right before every dispatch.
Items already running when a job is cancelled are allowed to finish; items
never dispatched stay pending.

An item result the job store fails to record is recorded as an item failure
instead. If even that fails, the job ends ``failed`` rather than
``completed`` with an item stuck in ``processing``.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable

from aves.batch.worker import AnnotationWorker, RetryPolicy, WorkResult
from aves.config import AvesConfig
from aves.errors import InvalidInput, NotFound
from aves.learning.patterns import PatternLearner
from aves.learning.predictor import PositionPredictor
from aves.store.base import JobStore
from aves.store.memory import InMemoryJobStore
from aves.types import (
    AnnotationCandidate,
    BatchItem,
    BatchJob,
    ItemError,
    ItemStatus,
    JobProgress,
    JobStatus,
    new_id,
    utcnow,
)
from aves.utils.rate_limiter import RateLimiter
from aves.vision.base import VisionProvider

logger = logging.getLogger(__name__)


class JobManager:
    """Start, observe and cancel batch annotation jobs.

    The rate limiter is shared by every job the manager runs. When a learner
    is supplied, prompts carry learned guidance (``batch.prompt_guidance``)
    and candidate boxes are pre-adjusted (``batch.adjust_candidates``).
    """

    def __init__(
        self,
        provider: VisionProvider,
        config: AvesConfig | None = None,
        job_store: JobStore | None = None,
        rate_limiter: RateLimiter | None = None,
        learner: PatternLearner | None = None,
        predictor: PositionPredictor | None = None,
    ) -> None:
        self.config = config or AvesConfig.default()
        self.provider = provider
        self.job_store = job_store if job_store is not None else InMemoryJobStore()
        self.rate_limiter = rate_limiter or RateLimiter(
            self.config.rate_limit.capacity,
            self.config.rate_limit.requests_per_minute,
        )
        self.learner = learner
        if predictor is None and learner is not None and self.config.batch.adjust_candidates:
            predictor = PositionPredictor(learner)
        self.predictor = predictor
        self.worker = AnnotationWorker(
            provider,
            self.rate_limiter,
            retry_policy=RetryPolicy.from_config(self.config.retry),
            predictor=self.predictor,
            learner=learner if self.config.batch.prompt_guidance else None,
            prompt=self.config.vision.prompt,
            acquire_timeout=self.config.rate_limit.acquire_timeout_seconds,
        )
        self._cancel_events: dict[str, threading.Event] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Job control
    # ------------------------------------------------------------------

    def start_batch(
        self,
        image_ids: Iterable[str],
        concurrency: int | None = None,
        species: str | None = None,
    ) -> str:
        """Create a job for *image_ids* and start processing it in the background.

        Returns the job id immediately.

        Raises:
            InvalidInput: if *image_ids* is empty or *concurrency* < 1.
        """
        image_ids = list(image_ids)
        if not image_ids:
            raise InvalidInput("image_ids must not be empty")
        if concurrency is None:
            concurrency = self.config.batch.default_concurrency
        if concurrency < 1:
            raise InvalidInput(f"concurrency must be >= 1, got {concurrency}")
        if concurrency > self.config.batch.max_concurrency:
            logger.warning(
                "Requested concurrency %d exceeds max %d; capping",
                concurrency, self.config.batch.max_concurrency,
            )
            concurrency = self.config.batch.max_concurrency

        job = BatchJob(id=new_id(), total_items=len(image_ids), concurrency=concurrency)
        items = [
            BatchItem(id=new_id(), job_id=job.id, image_ref=ref, species=species)
            for ref in image_ids
        ]
        self.job_store.create_job(job, items)

        cancel_event = threading.Event()
        thread = threading.Thread(
            target=self._run_job,
            args=(job.id, cancel_event),
            name=f"aves-job-{job.id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._cancel_events[job.id] = cancel_event
            self._threads[job.id] = thread
        thread.start()

        logger.info(
            "Started job %s: %d images, concurrency %d", job.id, len(image_ids), concurrency,
        )
        return job.id

    def cancel_job(self, job_id: str) -> bool:
        """Request cancellation. Returns False if the job already finished.

        Raises:
            NotFound: if the job id is unknown.
        """
        requested = False

        def _request(job: BatchJob) -> None:
            nonlocal requested
            if job.is_terminal:
                return
            job.cancel_requested = True
            job.cancelled_at = utcnow()
            requested = True

        self.job_store.update_job(job_id, _request)
        if not requested:
            return False

        with self._lock:
            event = self._cancel_events.get(job_id)
        if event is not None:
            event.set()
        logger.info("Cancellation requested for job %s", job_id)
        return True

    def wait_for_job(self, job_id: str, timeout: float | None = None) -> BatchJob:
        """Block until the job's coordinator exits (or *timeout*) and return the job."""
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
        return self.get_job(job_id)

    def shutdown(self, cancel: bool = True, timeout: float | None = None) -> None:
        """Stop all running jobs (cooperatively when *cancel*) and wait for them."""
        with self._lock:
            job_ids = list(self._threads)
            threads = list(self._threads.values())
        if cancel:
            for job_id in job_ids:
                job = self.job_store.get_job(job_id)
                if job is not None and not job.is_terminal:
                    self.cancel_job(job_id)
        for thread in threads:
            thread.join(timeout)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> BatchJob:
        job = self.job_store.get_job(job_id)
        if job is None:
            raise NotFound(f"Unknown job: {job_id}")
        return job

    def get_items(self, job_id: str) -> list[BatchItem]:
        return self.job_store.items_for_job(job_id)

    def get_candidates(self, item_id: str) -> list[AnnotationCandidate]:
        item = self.job_store.get_item(item_id)
        if item is None:
            raise NotFound(f"Unknown item: {item_id}")
        return list(item.candidates)

    def list_active_jobs(self) -> list[BatchJob]:
        return [job for job in self.job_store.list_jobs() if not job.is_terminal]

    def get_job_progress(self, job_id: str) -> JobProgress:
        """Snapshot of a job's counters, failures and estimated time remaining.

        Raises:
            NotFound: if the job id is unknown.
        """
        job = self.get_job(job_id)
        errors = [
            ItemError(
                item_id=item.id,
                image_ref=item.image_ref,
                message=item.last_error or "unknown error",
                attempts=item.attempts,
            )
            for item in self.job_store.items_for_job(job_id)
            if item.status == ItemStatus.failed
        ]
        return JobProgress(
            job_id=job.id,
            status=job.status,
            total=job.total_items,
            processed=job.processed_items,
            successful=job.successful_items,
            failed=job.failed_items,
            percentage=job.percentage,
            cancel_requested=job.cancel_requested,
            estimated_seconds_remaining=_estimate_remaining(job),
            errors=errors,
        )

    # ------------------------------------------------------------------
    # Coordinator
    # ------------------------------------------------------------------

    def _run_job(self, job_id: str, cancel_event: threading.Event) -> None:
        try:
            job = self.job_store.update_job(job_id, _mark_processing)
            items = self.job_store.items_for_job(job_id)
            slots = threading.Semaphore(job.concurrency)
            futures: list[Future] = []

            with ThreadPoolExecutor(
                max_workers=job.concurrency,
                thread_name_prefix=f"aves-{job_id[:8]}",
            ) as pool:
                for index, item in enumerate(items):
                    slots.acquire()
                    if cancel_event.is_set():
                        slots.release()
                        logger.info(
                            "Job %s cancelled: %d undispatched items left pending",
                            job_id, len(items) - index,
                        )
                        break
                    self.job_store.update_item(item.id, _mark_item_processing)
                    future = pool.submit(self._process_item, item, cancel_event)
                    future.add_done_callback(lambda _f: slots.release())
                    futures.append(future)

            unrecorded = [f.exception() for f in futures if f.exception() is not None]
            if unrecorded:
                message = f"{len(unrecorded)} item result(s) could not be recorded: {unrecorded[0]}"
                logger.error("Job %s failed: %s", job_id, message)
                self.job_store.update_job(job_id, lambda j: _fail(j, message))
                return

            final = self.job_store.update_job(job_id, _finalize)
            logger.info(
                "Job %s %s: %d/%d processed, %d succeeded, %d failed",
                job_id, final.status.value, final.processed_items, final.total_items,
                final.successful_items, final.failed_items,
            )
        except Exception as exc:
            logger.exception("Job %s failed", job_id)
            self.job_store.update_job(job_id, lambda j: _fail(j, str(exc)))

    def _process_item(self, item: BatchItem, cancel_event: threading.Event) -> None:
        try:
            result = self.worker.process(item, cancel_event)
        except Exception as exc:
            logger.exception("Unexpected error processing %s", item.image_ref)
            result = WorkResult(succeeded=False, attempts=1, error=f"{type(exc).__name__}: {exc}")

        try:
            self._record(item, result)
        except Exception as exc:
            logger.exception("Could not record result for %s", item.image_ref)
            # Raises again if the store is still failing; the coordinator fails the job
            self._record(item, WorkResult(
                succeeded=False,
                attempts=result.attempts,
                error=f"Could not record result: {type(exc).__name__}: {exc}",
            ))
            return

        if result.succeeded and self.learner is not None and self.config.batch.learn_from_annotations:
            try:
                self.learner.learn_from_candidates(result.candidates, species=item.species)
            except Exception:
                logger.exception("Could not learn from candidates of %s", item.image_ref)

    def _record(self, item: BatchItem, result: WorkResult) -> None:
        def _update_item(stored: BatchItem) -> None:
            stored.attempts = result.attempts
            stored.finished_at = utcnow()
            if result.succeeded:
                stored.status = ItemStatus.succeeded
                stored.candidates = list(result.candidates)
                stored.last_error = None
            else:
                stored.status = ItemStatus.failed
                stored.last_error = result.error

        def _update_job(job: BatchJob) -> None:
            job.processed_items += 1
            if result.succeeded:
                job.successful_items += 1
            else:
                job.failed_items += 1

        self.job_store.complete_item(item.id, _update_item, _update_job)


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------


def _mark_processing(job: BatchJob) -> None:
    job.status = JobStatus.processing
    job.started_at = utcnow()


def _finalize(job: BatchJob) -> None:
    job.status = JobStatus.cancelled if job.cancel_requested else JobStatus.completed
    job.completed_at = utcnow()


def _fail(job: BatchJob, error: str) -> None:
    job.status = JobStatus.failed
    job.error = error
    job.completed_at = utcnow()


def _mark_item_processing(item: BatchItem) -> None:
    item.status = ItemStatus.processing
    item.started_at = utcnow()


def _estimate_remaining(job: BatchJob) -> float | None:
    """Linear extrapolation from the average time per processed item."""
    if job.is_terminal:
        return 0.0
    if job.started_at is None or job.processed_items == 0:
        return None
    elapsed = (utcnow() - job.started_at).total_seconds()
    per_item = elapsed / job.processed_items
    return per_item * (job.total_items - job.processed_items)
