from abc import ABC, abstractmethod

from docinsight.errors import CaptureError
from docinsight.logging.logger import Log
from docinsight.offline.models import JobOutcome, JobStatus, OfflineJob
from docinsight.offline.offline_queue import OfflineQueue
from docinsight.remote.exceptions import RemoteConnectivityLost, RemoteTransientFailure


class BaseJobHandler(ABC):
    """Executes the deferred stage an offline job stands for."""

    @abstractmethod
    async def process(self, job: OfflineJob) -> None:
        """Run the stage; raise to signal failure."""

    @abstractmethod
    async def on_permanent_failure(self, job: OfflineJob, error: str) -> None:
        """Record that the stage will never complete."""


class JobRunner:
    """Run one job, catch exceptions, and apply retry logic."""

    def __init__(self, handler: BaseJobHandler, queue: OfflineQueue) -> None:
        self._handler = handler
        self._queue = queue

    async def run(self, job: OfflineJob) -> JobOutcome:
        """Execute a single claimed job with error handling."""
        Log.info(
            f"Running offline job {job.id} (attempt {job.attempt_count + 1})",
            document_id=job.document_id,
            stage=job.stage_kind.value,
        )
        try:
            await self._handler.process(job)
        except RemoteConnectivityLost as exc:
            Log.warning(
                f"Offline job {job.id} lost connectivity: {exc}", document_id=job.document_id
            )
            await self._queue.postpone(job, str(exc))
            return JobOutcome.CONNECTIVITY_LOST
        except RemoteTransientFailure as exc:
            return await self._handle_retryable(job, exc)
        except CaptureError as exc:
            return await self._handle_terminal(job, exc)
        except Exception as exc:
            return await self._handle_retryable(job, exc)

        await self._queue.complete(job)
        Log.info(f"Offline job {job.id} completed successfully", document_id=job.document_id)
        return JobOutcome.SUCCEEDED

    async def _handle_retryable(self, job: OfflineJob, exc: Exception) -> JobOutcome:
        """Increment attempts; fail permanently at max, otherwise back to pending."""
        Log.error(f"Offline job {job.id} failed: {exc}", document_id=job.document_id)
        status = await self._queue.retry(job, str(exc))
        if status is JobStatus.FAILED_PERMANENT:
            await self._handler.on_permanent_failure(job, str(exc))
            return JobOutcome.FAILED_PERMANENT
        return JobOutcome.RETRY_SCHEDULED

    async def _handle_terminal(self, job: OfflineJob, exc: CaptureError) -> JobOutcome:
        Log.error(
            f"Offline job {job.id} hit a terminal failure: {exc}", document_id=job.document_id
        )
        await self._queue.fail_permanent(job, str(exc))
        await self._handler.on_permanent_failure(job, str(exc))
        return JobOutcome.FAILED_PERMANENT
