from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from docinsight.capture.models import utcnow
from docinsight.logging.logger import Log


@dataclass(frozen=True)
class AuditEntry:
    """One stage transition. Carries identifiers and outcomes only, never document text."""

    document_id: str
    stage: str
    outcome: str
    timestamp: datetime = field(default_factory=utcnow)


class AuditSink(ABC):
    """Receives one entry per stage transition."""

    @abstractmethod
    def record(self, entry: AuditEntry) -> None:
        """Persist or forward *entry*."""


class LogAuditSink(AuditSink):
    """Default sink: writes entries through the application logger."""

    def record(self, entry: AuditEntry) -> None:
        Log.info(
            "audit",
            document_id=entry.document_id,
            stage=entry.stage,
            outcome=entry.outcome,
            timestamp=entry.timestamp.isoformat(),
        )
