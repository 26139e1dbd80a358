from abc import ABC, abstractmethod
from datetime import datetime

from docinsight.offline.models import OfflineJob


class BaseJobStore(ABC):
    """Persistence contract for offline jobs.

    Only the OfflineQueue talks to a store; everything else goes through the queue.
    """

    @abstractmethod
    async def add(self, job: OfflineJob) -> None:
        """Insert a new job."""

    @abstractmethod
    async def get(self, job_id: str) -> OfflineJob | None:
        """Find a job by id."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored jobs in any status."""

    @abstractmethod
    async def oldest_evictable(self) -> OfflineJob | None:
        """Oldest job that is not currently being processed."""

    @abstractmethod
    async def claim_next(self, now: datetime) -> OfflineJob | None:
        """Move the oldest eligible pending job to ``processing`` and return it."""

    @abstractmethod
    async def reschedule(
        self, job_id: str, attempt_count: int, next_eligible_at: datetime, last_error: str
    ) -> None:
        """Return a job to ``pending`` with a new attempt count and eligibility time."""

    @abstractmethod
    async def mark_failed(self, job_id: str, attempt_count: int, last_error: str) -> None:
        """Mark a job ``failed-permanent``."""

    @abstractmethod
    async def delete(self, job_id: str) -> None:
        """Remove a job; missing ids are ignored."""

    @abstractmethod
    async def delete_for_document(self, document_id: str) -> list[OfflineJob]:
        """Remove and return every job of a document."""

    @abstractmethod
    async def list_jobs(self) -> list[OfflineJob]:
        """All jobs, oldest first."""

    @abstractmethod
    async def release_processing(self) -> int:
        """Return jobs left in ``processing`` by a previous run to ``pending``."""
