from dataclasses import dataclass, field


@dataclass(frozen=True)
class ActionItem:
    title: str
    description: str
    priority: str = "medium"
    category: str = "general"


@dataclass(frozen=True)
class LanguageVariant:
    """The summary rendered in one language (ISO 639-1 code)."""

    language: str
    text: str


@dataclass(frozen=True)
class ComplianceFlag:
    rule: str
    status: str
    severity: str
    details: str = ""


@dataclass(frozen=True)
class AnalysisResult:
    """Output of one analysis backend for one document."""

    source_backend_id: str
    summary: str
    insights: list[str] = field(default_factory=list)
    action_items: list[ActionItem] = field(default_factory=list)
    language_variants: list[LanguageVariant] = field(default_factory=list)
    compliance_flags: list[ComplianceFlag] = field(default_factory=list)
    confidence: float = 0.0
