from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TemplateKind(str, Enum):
    LAB_REPORT = "lab_report"
    PRESCRIPTION = "prescription"
    PHARMACY_LABEL = "pharmacy_label"
    INSURANCE_CLAIM = "insurance_claim"
    NUTRITION_LABEL = "nutrition_label"
    GENERIC = "generic"


class FlagSeverity(str, Enum):
    LOW = "low"
    HIGH = "high"
    CRITICAL = "critical"
    SAFETY = "safety"
    ACTION = "action"
    INFO = "info"


@dataclass(frozen=True)
class FindingFlag:
    severity: FlagSeverity
    field: str
    message: str


@dataclass(frozen=True)
class VisualizationHint:
    """A chart the rendering layer may draw; ``series`` maps label to value."""

    chart: str  # "bar" or "pie"
    title: str
    series: dict[str, float] = field(default_factory=dict)
    unit: str = ""


@dataclass(frozen=True)
class TemplateFinding:
    """Deterministic, network-free interpretation of the unified text."""

    template_kind: TemplateKind
    structured_fields: dict[str, Any] = field(default_factory=dict)
    flags: list[FindingFlag] = field(default_factory=list)
    visualization_hints: list[VisualizationHint] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TemplateOptions:
    """Tunables shared by all interpreters."""

    critical_multiplier: float = 5.0
