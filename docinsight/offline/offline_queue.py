"""Bounded, persistent queue of deferred network-stage invocations.

Invariants:
    - Every access goes through this class; drains are serialised by one lock,
      so a job is never processed twice concurrently across connectivity flaps.
    - Claimed jobs are ``processing`` until completed, rescheduled or failed.
    - ``attempt_count`` only grows; at ``max_attempts`` the job becomes
      ``failed-permanent`` and is never claimed again.
    - At capacity the oldest job not being processed is evicted and reported
      to the eviction callback.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

from docinsight.capture.models import utcnow
from docinsight.logging.logger import Log
from docinsight.offline.backoff import next_eligible_at
from docinsight.offline.exceptions import QueueOverflow
from docinsight.offline.models import JobOutcome, JobStatus, OfflineJob
from docinsight.offline.store_base import BaseJobStore

EvictionCallback = Callable[[OfflineJob, QueueOverflow], Awaitable[None]]
JobRunnerFn = Callable[[OfflineJob], Awaitable[JobOutcome]]


class OfflineQueue:
    def __init__(
        self,
        store: BaseJobStore,
        *,
        capacity: int,
        max_attempts: int,
        backoff_base_seconds: float,
        backoff_max_seconds: float,
        on_evicted: EvictionCallback | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if capacity < 1:
            raise ValueError("Offline queue capacity must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._capacity = capacity
        self._max_attempts = max_attempts
        self._backoff_base_seconds = backoff_base_seconds
        self._backoff_max_seconds = backoff_max_seconds
        self._on_evicted = on_evicted
        self._clock = clock
        self._enqueue_lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def set_eviction_callback(self, callback: EvictionCallback | None) -> None:
        self._on_evicted = callback

    def eligible_after(self, attempt: int) -> datetime:
        """Earliest time a job that has failed *attempt* times may run again."""
        return next_eligible_at(
            self._clock(), attempt, self._backoff_base_seconds, self._backoff_max_seconds
        )

    async def enqueue(self, job: OfflineJob) -> bool:
        """Store *job*, evicting the oldest job if the queue is full.

        Returns:
            False if *job* itself had to be evicted because every stored job
            is being processed.
        """
        async with self._enqueue_lock:
            if await self._store.count() >= self._capacity:
                victim = await self._store.oldest_evictable()
                if victim is None:
                    await self._report_eviction(job)
                    return False
                await self._store.delete(victim.id)
                await self._report_eviction(victim)
            await self._store.add(job)
        Log.info(
            f"Deferred {job.stage_kind.value} job {job.id}",
            document_id=job.document_id,
            backend_id=job.backend_id,
        )
        return True

    async def claim_next(self) -> OfflineJob | None:
        return await self._store.claim_next(self._clock())

    async def complete(self, job: OfflineJob) -> None:
        """A succeeded job is removed from the queue."""
        await self._store.delete(job.id)

    async def retry(self, job: OfflineJob, error: str) -> JobStatus:
        """Count a failed attempt and reschedule, or fail permanently at the bound."""
        attempts = job.attempt_count + 1
        if attempts >= self._max_attempts:
            await self._store.mark_failed(job.id, attempts, error)
            job.attempt_count = attempts
            job.last_error = error
            job.status = JobStatus.FAILED_PERMANENT
            Log.error(
                f"Offline job {job.id} permanently failed after {attempts} attempts",
                document_id=job.document_id,
            )
            return JobStatus.FAILED_PERMANENT

        eligible_at = self.eligible_after(attempts)
        await self._store.reschedule(job.id, attempts, eligible_at, error)
        job.attempt_count = attempts
        job.next_eligible_at = eligible_at
        job.last_error = error
        job.status = JobStatus.PENDING
        Log.warning(
            f"Offline job {job.id} will be retried (attempt {attempts})",
            document_id=job.document_id,
            next_eligible_at=eligible_at.isoformat(),
        )
        return JobStatus.PENDING

    async def postpone(self, job: OfflineJob, error: str) -> None:
        """Return the job to pending without counting an attempt (lost connectivity)."""
        now = self._clock()
        await self._store.reschedule(job.id, job.attempt_count, now, error)
        job.next_eligible_at = now
        job.last_error = error
        job.status = JobStatus.PENDING
        Log.warning(
            f"Offline job {job.id} postponed until connectivity returns",
            document_id=job.document_id,
        )

    async def fail_permanent(self, job: OfflineJob, error: str) -> None:
        """Fail without further attempts (terminal errors)."""
        attempts = job.attempt_count + 1
        await self._store.mark_failed(job.id, attempts, error)
        job.attempt_count = attempts
        job.last_error = error
        job.status = JobStatus.FAILED_PERMANENT
        Log.error(f"Offline job {job.id} failed permanently", document_id=job.document_id)

    async def remove_for_document(self, document_id: str) -> list[OfflineJob]:
        async with self._enqueue_lock:
            removed = await self._store.delete_for_document(document_id)
        if removed:
            Log.info(f"Removed {len(removed)} offline jobs", document_id=document_id)
        return removed

    async def list_deferred(self) -> list[OfflineJob]:
        """Every queued job, failed-permanent ones included, oldest first."""
        return await self._store.list_jobs()

    async def recover(self) -> int:
        """Return jobs orphaned in ``processing`` by a previous run to ``pending``."""
        released = await self._store.release_processing()
        if released:
            Log.warning(f"Released {released} offline jobs left in processing")
        return released

    async def drain(
        self, is_online: Callable[[], bool], runner: JobRunnerFn
    ) -> list[OfflineJob]:
        """Run eligible jobs oldest-first while online.

        Stops when nothing is eligible, when connectivity drops, or after one
        pass over the jobs present when the drain started.

        Returns:
            The jobs that succeeded.
        """
        completed: list[OfflineJob] = []
        async with self._drain_lock:
            budget = await self._store.count()
            while budget > 0 and is_online():
                job = await self.claim_next()
                if job is None:
                    break
                budget -= 1
                outcome = await runner(job)
                if outcome is JobOutcome.SUCCEEDED:
                    completed.append(job)
                elif outcome is JobOutcome.CONNECTIVITY_LOST:
                    Log.warning("Connectivity lost during drain, stopping")
                    break
        if completed:
            Log.info(f"Drain completed {len(completed)} offline jobs")
        return completed

    async def _report_eviction(self, job: OfflineJob) -> None:
        overflow = QueueOverflow(
            f"Offline queue at capacity ({self._capacity}); evicted job {job.id}"
        )
        Log.warning(str(overflow), document_id=job.document_id)
        if self._on_evicted is not None:
            await self._on_evicted(job, overflow)
