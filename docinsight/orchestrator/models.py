import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from docinsight.analysis.models import AnalysisResult
from docinsight.capture.models import DocumentType, utcnow
from docinsight.recognition.models import RecognitionResult, SourceEngine
from docinsight.templates.models import TemplateFinding


class Stage(str, Enum):
    ON_DEVICE_RECOGNITION = "on_device_recognition"
    REMOTE_RECOGNITION = "remote_recognition"
    ANALYSIS = "analysis"
    TEMPLATE = "template"


class StageStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEFERRED = "deferred"


class PipelineState(str, Enum):
    PENDING = "pending"
    ON_DEVICE_DONE = "on_device_done"
    REMOTE_QUEUED = "remote_queued"
    REMOTE_DONE = "remote_done"
    ANALYSIS_QUEUED = "analysis_queued"
    ANALYSIS_DONE = "analysis_done"
    TEMPLATE_DONE = "template_done"
    AGGREGATED = "aggregated"
    FAILED = "failed"


def derive_analysis_status(backend_status: dict[str, StageStatus]) -> StageStatus:
    """Fold per-backend statuses into the ``analysis`` stage status."""
    statuses = set(backend_status.values())
    for status in (StageStatus.PENDING, StageStatus.DEFERRED, StageStatus.SUCCEEDED):
        if status in statuses:
            return status
    return StageStatus.FAILED


@dataclass
class CapturedInsight:
    """Aggregate root for one document. Updated in place as stages complete."""

    document_id: str
    document_type: DocumentType = DocumentType.GENERIC
    unified_text: str = ""
    overall_confidence: float = 0.0
    recognition_results: list[RecognitionResult] = field(default_factory=list)
    analysis_results: list[AnalysisResult] = field(default_factory=list)
    template_finding: TemplateFinding | None = None
    phi_policy_applied: bool = False
    stage_status: dict[Stage, StageStatus] = field(
        default_factory=lambda: {stage: StageStatus.PENDING for stage in Stage}
    )
    backend_status: dict[str, StageStatus] = field(default_factory=dict)
    state: PipelineState = PipelineState.PENDING
    deferred_analysis_lost: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    finalized: bool = False

    def recognition(self, engine: SourceEngine) -> RecognitionResult | None:
        return next((r for r in self.recognition_results if r.source_engine is engine), None)

    def put_recognition(self, result: RecognitionResult) -> None:
        """Keep one result per engine."""
        self.recognition_results = [
            r for r in self.recognition_results if r.source_engine is not result.source_engine
        ]
        self.recognition_results.append(result)

    def put_analysis(self, result: AnalysisResult) -> None:
        """Keep one result per backend."""
        self.analysis_results = [
            r for r in self.analysis_results if r.source_backend_id != result.source_backend_id
        ]
        self.analysis_results.append(result)

    def snapshot(self) -> "CapturedInsight":
        """Copy safe to hand out; results themselves are immutable."""
        return dataclasses.replace(
            self,
            recognition_results=list(self.recognition_results),
            analysis_results=list(self.analysis_results),
            stage_status=dict(self.stage_status),
            backend_status=dict(self.backend_status),
        )
