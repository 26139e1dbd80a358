from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from docinsight.capture.models import new_id, utcnow


class StageKind(str, Enum):
    """Network-bound stages that can be deferred."""

    REMOTE_RECOGNITION = "remote_recognition"
    ANALYSIS = "analysis"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    FAILED_PERMANENT = "failed-permanent"


@dataclass
class OfflineJob:
    """A deferred network-stage invocation. Deleted once the stage succeeds.

    ``payload`` carries only references and flags (backend id, consent,
    language hints), never document text.
    """

    document_id: str
    stage_kind: StageKind
    payload_ref: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    attempt_count: int = 0
    next_eligible_at: datetime = field(default_factory=utcnow)
    last_error: str | None = None
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)

    @property
    def backend_id(self) -> str | None:
        value = self.payload.get("backend_id")
        return str(value) if value is not None else None


class JobOutcome(str, Enum):
    """What one run of a claimed job led to."""

    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED_PERMANENT = "failed_permanent"
    CONNECTIVITY_LOST = "connectivity_lost"
