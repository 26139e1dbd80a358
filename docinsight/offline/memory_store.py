import dataclasses
from datetime import datetime

from docinsight.offline.models import JobStatus, OfflineJob
from docinsight.offline.store_base import BaseJobStore


class InMemoryJobStore(BaseJobStore):
    """Process-local job store. Jobs are copied in and out so callers never alias state."""

    def __init__(self) -> None:
        self._jobs: dict[str, OfflineJob] = {}

    async def add(self, job: OfflineJob) -> None:
        self._jobs[job.id] = dataclasses.replace(job, payload=dict(job.payload))

    async def get(self, job_id: str) -> OfflineJob | None:
        job = self._jobs.get(job_id)
        return self._copy(job) if job else None

    async def count(self) -> int:
        return len(self._jobs)

    async def oldest_evictable(self) -> OfflineJob | None:
        candidates = [j for j in self._jobs.values() if j.status is not JobStatus.PROCESSING]
        if not candidates:
            return None
        return self._copy(min(candidates, key=lambda j: j.created_at))

    async def claim_next(self, now: datetime) -> OfflineJob | None:
        eligible = [
            j
            for j in self._jobs.values()
            if j.status is JobStatus.PENDING and j.next_eligible_at <= now
        ]
        if not eligible:
            return None
        job = min(eligible, key=lambda j: (j.created_at, j.next_eligible_at))
        job.status = JobStatus.PROCESSING
        return self._copy(job)

    async def reschedule(
        self, job_id: str, attempt_count: int, next_eligible_at: datetime, last_error: str
    ) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        job.attempt_count = attempt_count
        job.next_eligible_at = next_eligible_at
        job.last_error = last_error
        job.status = JobStatus.PENDING

    async def mark_failed(self, job_id: str, attempt_count: int, last_error: str) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        job.attempt_count = attempt_count
        job.last_error = last_error
        job.status = JobStatus.FAILED_PERMANENT

    async def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    async def delete_for_document(self, document_id: str) -> list[OfflineJob]:
        removed = [j for j in self._jobs.values() if j.document_id == document_id]
        for job in removed:
            del self._jobs[job.id]
        return removed

    async def list_jobs(self) -> list[OfflineJob]:
        return [self._copy(j) for j in sorted(self._jobs.values(), key=lambda j: j.created_at)]

    async def release_processing(self) -> int:
        released = 0
        for job in self._jobs.values():
            if job.status is JobStatus.PROCESSING:
                job.status = JobStatus.PENDING
                released += 1
        return released

    @staticmethod
    def _copy(job: OfflineJob) -> OfflineJob:
        return dataclasses.replace(job, payload=dict(job.payload))
