from collections.abc import Mapping
from types import MappingProxyType

from docinsight.errors import CaptureError
from docinsight.orchestrator.models import PipelineState


class IllegalTransition(CaptureError):
    """Raised when a pipeline state change is not in the transition table."""


TRANSITIONS: Mapping[PipelineState, frozenset[PipelineState]] = MappingProxyType({
    PipelineState.PENDING: frozenset({PipelineState.ON_DEVICE_DONE, PipelineState.FAILED}),
    PipelineState.ON_DEVICE_DONE: frozenset(
        {PipelineState.REMOTE_QUEUED, PipelineState.REMOTE_DONE}
    ),
    PipelineState.REMOTE_QUEUED: frozenset(
        {PipelineState.ANALYSIS_QUEUED, PipelineState.ANALYSIS_DONE}
    ),
    PipelineState.REMOTE_DONE: frozenset(
        {PipelineState.ANALYSIS_QUEUED, PipelineState.ANALYSIS_DONE}
    ),
    PipelineState.ANALYSIS_QUEUED: frozenset({PipelineState.TEMPLATE_DONE}),
    PipelineState.ANALYSIS_DONE: frozenset({PipelineState.TEMPLATE_DONE}),
    PipelineState.TEMPLATE_DONE: frozenset({PipelineState.AGGREGATED}),
    # Deferred jobs completing later re-aggregate the same insight.
    PipelineState.AGGREGATED: frozenset({PipelineState.AGGREGATED}),
    PipelineState.FAILED: frozenset(),
})


def can_transition(current: PipelineState, target: PipelineState) -> bool:
    return target in TRANSITIONS[current]


def advance(current: PipelineState, target: PipelineState) -> PipelineState:
    """Validate and return *target*.

    Raises:
        IllegalTransition: if the table does not allow the move.
    """
    if not can_transition(current, target):
        raise IllegalTransition(f"Cannot move from {current.value} to {target.value}")
    return target
