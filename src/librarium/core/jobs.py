# ABOUTME: In-memory registry of conversion and merge jobs with progress subscribers.
# ABOUTME: Jobs expire after an idle TTL or once a terminal state has been observed; never resurrected.

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


@dataclass
class Job:
    """Snapshot of a job's state. Registry methods always hand out copies."""

    id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    message: str | None = None
    current_time: float | None = None
    total_time: float | None = None
    result: dict[str, Any] | None = None
    updated_at: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


JobListener = Callable[[Job], None]

_UPDATABLE = {"status", "progress", "message", "current_time", "total_time", "result"}


@dataclass
class _Entry:
    job: Job
    listeners: list[JobListener] = field(default_factory=list)


class JobRegistry:
    """Shared job table. Updates are last-writer-wins and broadcast synchronously.

    Args:
        ttl: Seconds a job may sit without updates before it is evicted.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def create(self, job_id: str) -> Job:
        """Register a new pending job.

        Raises:
            ValueError: If a non-terminal job with this id is already active.
        """
        self.sweep()
        existing = self._entries.get(job_id)
        if existing is not None and not existing.job.is_terminal:
            raise ValueError(f"Job {job_id} is already active")
        job = Job(id=job_id, updated_at=self._clock())
        self._entries[job_id] = _Entry(job=job)
        return replace(job)

    def update(self, job_id: str, **changes: Any) -> Job | None:
        """Apply a partial update and notify subscribers.

        Returns None for unknown or evicted jobs (they are not recreated).
        A job in a terminal state ignores further updates.
        """
        entry = self._entries.get(job_id)
        if entry is None:
            logger.debug("Ignoring update for unknown job %s", job_id)
            return None
        if entry.job.is_terminal:
            return replace(entry.job)

        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        if "status" in changes:
            changes["status"] = JobStatus(changes["status"])
        if "progress" in changes:
            changes["progress"] = max(0, min(100, int(changes["progress"])))

        entry.job = replace(entry.job, **changes, updated_at=self._clock())
        snapshot = replace(entry.job)
        self._broadcast(job_id, entry, snapshot)
        return snapshot

    def get(self, job_id: str) -> Job | None:
        """Current snapshot of a job; a terminal job is evicted once read."""
        self.sweep()
        entry = self._entries.get(job_id)
        if entry is None:
            return None
        snapshot = replace(entry.job)
        if snapshot.is_terminal:
            self._evict(job_id)
        return snapshot

    def subscribe(self, job_id: str, listener: JobListener) -> Callable[[], None]:
        """Call ``listener`` with a snapshot on every update to ``job_id``.

        Returns a function that removes the listener. Subscribing to an
        unknown job is allowed and simply never fires.
        """
        entry = self._entries.get(job_id)
        if entry is not None:
            entry.listeners.append(listener)

        def unsubscribe() -> None:
            current = self._entries.get(job_id)
            if current is not None and listener in current.listeners:
                current.listeners.remove(listener)

        return unsubscribe

    def sweep(self) -> list[str]:
        """Evict jobs idle for longer than the TTL. Returns the evicted ids."""
        now = self._clock()
        expired = [job_id for job_id, entry in self._entries.items() if now - entry.job.updated_at > self._ttl]
        for job_id in expired:
            logger.debug("Job %s expired", job_id)
            self._evict(job_id)
        return expired

    async def watch(self, job_id: str) -> AsyncIterator[Job]:
        """Async stream of snapshots for a job, ending after its terminal state.

        Abandoning the iterator only unsubscribes; the job itself keeps running.
        """
        queue: asyncio.Queue[Job] = asyncio.Queue()
        unsubscribe = self.subscribe(job_id, queue.put_nowait)
        try:
            current = self._entries.get(job_id)
            if current is None:
                return
            if current.job.is_terminal:
                yield self.get(job_id) or replace(current.job)
                return
            yield replace(current.job)
            while True:
                job = await queue.get()
                yield job
                if job.is_terminal:
                    return
        finally:
            unsubscribe()

    def _broadcast(self, job_id: str, entry: _Entry, snapshot: Job) -> None:
        delivered = False
        for listener in list(entry.listeners):
            try:
                listener(replace(snapshot))
                delivered = True
            except Exception:
                logger.exception("Job listener for %s failed", job_id)
        if snapshot.is_terminal and delivered:
            self._evict(job_id)

    def _evict(self, job_id: str) -> None:
        self._entries.pop(job_id, None)
