from docinsight.errors import CaptureError


class OfflineQueueError(CaptureError):
    """Base exception for offline queue failures."""


class QueueOverflow(OfflineQueueError):
    """A deferred job was evicted because the offline queue reached capacity."""


class JobStoreError(OfflineQueueError):
    """Raised when the job store cannot be read or written."""


class UntrackedDocument(OfflineQueueError):
    """A queued job refers to a document that has no live pipeline in this process."""
