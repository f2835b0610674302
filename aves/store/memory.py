"""Thread-safe in-memory implementations of the store protocols."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from typing import Callable, Iterable

from aves.errors import NotFound
from aves.store.base import PatternKey
from aves.types import BatchItem, BatchJob, FeedbackEvent, Pattern


class InMemoryJobStore:
    """Jobs and items behind a single lock. Reads return copies."""

    def __init__(self) -> None:
        self._jobs: dict[str, BatchJob] = {}
        self._items: dict[str, BatchItem] = {}
        self._items_by_job: dict[str, list[str]] = defaultdict(list)
        self._lock = threading.RLock()

    def create_job(self, job: BatchJob, items: Iterable[BatchItem]) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[job.id] = copy.deepcopy(job)
            for item in items:
                self._items[item.id] = copy.deepcopy(item)
                self._items_by_job[job.id].append(item.id)

    def get_job(self, job_id: str) -> BatchJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def update_job(self, job_id: str, fn: Callable[[BatchJob], None]) -> BatchJob:
        with self._lock:
            job = self._require_job(job_id)
            fn(job)
            return copy.deepcopy(job)

    def list_jobs(self) -> list[BatchJob]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
            return [copy.deepcopy(j) for j in jobs]

    def get_item(self, item_id: str) -> BatchItem | None:
        with self._lock:
            item = self._items.get(item_id)
            return copy.deepcopy(item) if item is not None else None

    def update_item(self, item_id: str, fn: Callable[[BatchItem], None]) -> BatchItem:
        with self._lock:
            item = self._require_item(item_id)
            fn(item)
            return copy.deepcopy(item)

    def items_for_job(self, job_id: str) -> list[BatchItem]:
        with self._lock:
            self._require_job(job_id)
            return [copy.deepcopy(self._items[i]) for i in self._items_by_job[job_id]]

    def complete_item(
        self, item_id: str, fn: Callable[[BatchItem], None], job_fn: Callable[[BatchJob], None]
    ) -> tuple[BatchItem, BatchJob]:
        with self._lock:
            item = self._require_item(item_id)
            job = self._require_job(item.job_id)
            fn(item)
            job_fn(job)
            return copy.deepcopy(item), copy.deepcopy(job)

    def _require_job(self, job_id: str) -> BatchJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Unknown job: {job_id}")
        return job

    def _require_item(self, item_id: str) -> BatchItem:
        item = self._items.get(item_id)
        if item is None:
            raise NotFound(f"Unknown item: {item_id}")
        return item


class InMemoryFeedbackStore:
    """Append-only event log. Events are frozen, so no copies are needed."""

    def __init__(self) -> None:
        self._events: list[FeedbackEvent] = []
        self._by_item: dict[str, list[FeedbackEvent]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, event: FeedbackEvent) -> None:
        with self._lock:
            self._events.append(event)
            self._by_item[event.item_id].append(event)

    def events_for_item(self, item_id: str) -> list[FeedbackEvent]:
        with self._lock:
            return list(self._by_item.get(item_id, []))

    def all_events(self) -> list[FeedbackEvent]:
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class InMemoryPatternStore:
    """Pattern map with one lock per (species, term) key.

    The registry lock is held only long enough to look up or create a key's
    lock, so updates to different keys proceed in parallel. Locks are created
    only by writes; reads of never-written keys leave the registry untouched.
    """

    def __init__(self) -> None:
        self._patterns: dict[PatternKey, Pattern] = {}
        self._key_locks: dict[PatternKey, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: PatternKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _existing_lock(self, key: PatternKey) -> threading.Lock | None:
        with self._registry_lock:
            return self._key_locks.get(key)

    def get(self, key: PatternKey) -> Pattern | None:
        lock = self._existing_lock(key)
        if lock is None:
            return None
        with lock:
            pattern = self._patterns.get(key)
            return copy.deepcopy(pattern) if pattern is not None else None

    def update(
        self, key: PatternKey, fn: Callable[[Pattern | None], Pattern | None]
    ) -> Pattern | None:
        with self._lock_for(key):
            current = self._patterns.get(key)
            updated = fn(copy.deepcopy(current) if current is not None else None)
            if updated is None:
                return copy.deepcopy(current) if current is not None else None
            self._patterns[key] = updated
            return copy.deepcopy(updated)

    def put(self, pattern: Pattern) -> None:
        with self._lock_for(pattern.key):
            self._patterns[pattern.key] = copy.deepcopy(pattern)

    def delete(self, key: PatternKey) -> bool:
        lock = self._existing_lock(key)
        if lock is None:
            return False
        with lock:
            return self._patterns.pop(key, None) is not None

    def all(self) -> list[Pattern]:
        with self._registry_lock:
            keys = list(self._key_locks)
        return [p for p in (self.get(k) for k in keys) if p is not None]
