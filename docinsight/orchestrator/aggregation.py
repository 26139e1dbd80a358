"""Unified text and overall confidence for a CapturedInsight.

Overall confidence is a noisy-OR over succeeded stages:

    1 - prod(1 - weight(stage) * confidence(stage))

Each factor lies in [0, 1], so adding a succeeded stage can only raise the
result and the result stays within [0, 1]. Failed, deferred and pending stages
contribute nothing.
"""

from collections.abc import Mapping
from types import MappingProxyType

from docinsight.orchestrator.models import CapturedInsight, Stage, StageStatus
from docinsight.recognition.models import RecognitionResult, SourceEngine, TextBlock

STAGE_WEIGHTS: Mapping[Stage, float] = MappingProxyType({
    Stage.ON_DEVICE_RECOGNITION: 0.6,
    Stage.REMOTE_RECOGNITION: 0.8,
    Stage.ANALYSIS: 0.5,
    Stage.TEMPLATE: 0.3,
})


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def best_recognition(insight: CapturedInsight) -> RecognitionResult | None:
    """Remote result when it succeeded with text, otherwise the on-device one."""
    remote = insight.recognition(SourceEngine.REMOTE)
    if (
        remote is not None
        and remote.raw_text.strip()
        and insight.stage_status.get(Stage.REMOTE_RECOGNITION) is StageStatus.SUCCEEDED
    ):
        return remote
    return insight.recognition(SourceEngine.LOCAL)


def unified_text(insight: CapturedInsight) -> str:
    result = best_recognition(insight)
    return result.raw_text if result is not None else ""


def unified_blocks(insight: CapturedInsight) -> list[TextBlock]:
    result = best_recognition(insight)
    return list(result.structured_blocks) if result is not None else []


def stage_contributions(insight: CapturedInsight) -> list[float]:
    status = insight.stage_status
    terms: list[float] = []

    for stage, engine in (
        (Stage.ON_DEVICE_RECOGNITION, SourceEngine.LOCAL),
        (Stage.REMOTE_RECOGNITION, SourceEngine.REMOTE),
    ):
        result = insight.recognition(engine)
        if status.get(stage) is StageStatus.SUCCEEDED and result is not None:
            terms.append(STAGE_WEIGHTS[stage] * _clamp(result.confidence))

    for analysis in insight.analysis_results:
        if insight.backend_status.get(analysis.source_backend_id) is StageStatus.SUCCEEDED:
            terms.append(STAGE_WEIGHTS[Stage.ANALYSIS] * _clamp(analysis.confidence))

    if status.get(Stage.TEMPLATE) is StageStatus.SUCCEEDED:
        terms.append(STAGE_WEIGHTS[Stage.TEMPLATE])
    return terms


def overall_confidence(insight: CapturedInsight) -> float:
    remaining = 1.0
    for term in stage_contributions(insight):
        remaining *= 1.0 - _clamp(term)
    return round(_clamp(1.0 - remaining), 4)


def is_final(insight: CapturedInsight) -> bool:
    """No stage is still pending; deferred stages do not hold finalization back."""
    return all(s is not StageStatus.PENDING for s in insight.stage_status.values())
