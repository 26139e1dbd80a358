"""Insurance claim interpreter: claim status, identifiers and amount fields."""

import re
from typing import Any

from docinsight.recognition.models import TextBlock
from docinsight.templates.models import (
    FindingFlag,
    FlagSeverity,
    TemplateFinding,
    TemplateKind,
    TemplateOptions,
    VisualizationHint,
)
from docinsight.templates.parsing import first_group, to_float

# Checked in order: a denial anywhere on the document wins over other wording.
_STATUS_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("denied", re.compile(r"\b(?:denied|rejected|declined|not\s+covered)\b", re.IGNORECASE)),
    (
        "pending",
        re.compile(
            r"\b(?:pending|under\s+review|in\s+process(?:ing)?|awaiting)\b", re.IGNORECASE
        ),
    ),
    ("approved", re.compile(r"\b(?:approved|accepted|paid|settled)\b", re.IGNORECASE)),
]

_POLICY_RE = re.compile(
    r"\bpolicy\s*(?:number|no\.?|#|id)?\s*[:#]?\s*"
    r"((?=[A-Z\-/]*\d)[A-Z0-9][A-Z0-9\-/]{3,})",
    re.IGNORECASE,
)
_CLAIM_NUMBER_RE = re.compile(
    r"\bclaim\s*(?:number|no\.?|#|id)\s*[:#]?\s*"
    r"((?=[A-Z\-/]*\d)[A-Z0-9][A-Z0-9\-/]{3,})",
    re.IGNORECASE,
)
_REASON_RE = re.compile(
    r"\b(?:denial\s+)?reason(?:\s+code)?\s*[:#]?\s*([A-Z0-9][\w\-]*(?:\s*[-:]\s*[^\n]+)?)",
    re.IGNORECASE,
)
_AMOUNT = r"\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:[.,]\d{1,2})?"
_CURRENCY_RE = re.compile(r"\b(SAR|USD|EUR|GBP|AED)\b|(\$)|(ر\.?س)", re.IGNORECASE)

_AMOUNT_LABELS: dict[str, str] = {
    "claim_amount": (
        r"(?:claim(?:ed)?|billed|total\s+charges?)\s+amount|amount\s+claimed|total\s+billed"
    ),
    "coverage_amount": (
        r"(?:coverage|covered|approved|allowed|paid)\s+amount"
        r"|amount\s+(?:covered|approved|paid)"
    ),
    "patient_responsibility": r"patient\s+(?:responsibility|share|owes)|amount\s+due|you\s+owe",
    "deductible": r"deductible",
    "copay": r"co-?pay(?:ment)?",
}
_AMOUNT_RES: dict[str, re.Pattern[str]] = {
    key: re.compile(
        rf"\b(?:{label})\s*[:=]?\s*(?:SAR|USD|EUR|AED|\$|ر\.?س)?\s*({_AMOUNT})",
        re.IGNORECASE,
    )
    for key, label in _AMOUNT_LABELS.items()
}


def interpret(
    text: str, blocks: list[TextBlock], options: TemplateOptions
) -> TemplateFinding:
    _ = blocks, options
    status = detect_status(text)
    amounts = _parse_amounts(text)
    fields: dict[str, Any] = {
        "status": status,
        "policy_number": first_group(_POLICY_RE, text),
        "claim_number": first_group(_CLAIM_NUMBER_RE, text),
        "currency": _currency(text),
        **amounts,
    }
    if status == "denied":
        fields["denial_reason"] = first_group(_REASON_RE, text)

    flags = _flags(status, amounts)
    hints: list[VisualizationHint] = []
    series = {key: value for key, value in amounts.items() if value is not None}
    if len(series) >= 2:
        hints.append(
            VisualizationHint(
                chart="bar", title="Claim amounts", series=series, unit=fields["currency"] or ""
            )
        )
    return TemplateFinding(
        template_kind=TemplateKind.INSURANCE_CLAIM,
        structured_fields=fields,
        flags=flags,
        visualization_hints=hints,
        recommendations=_recommendations(status),
    )


def detect_status(text: str) -> str | None:
    """``denied`` / ``pending`` / ``approved`` or None when no keyword is present."""
    for status, pattern in _STATUS_PATTERNS:
        if pattern.search(text):
            return status
    return None


def _parse_amounts(text: str) -> dict[str, float | None]:
    amounts: dict[str, float | None] = {}
    for key, pattern in _AMOUNT_RES.items():
        raw = first_group(pattern, text)
        amounts[key] = to_float(raw) if raw else None
    return amounts


def _currency(text: str) -> str | None:
    match = _CURRENCY_RE.search(text)
    if not match:
        return None
    if match.group(1):
        return match.group(1).upper()
    if match.group(2):
        return "USD"
    return "SAR"


def _flags(status: str | None, amounts: dict[str, float | None]) -> list[FindingFlag]:
    flags: list[FindingFlag] = []
    if status == "denied":
        flags.append(
            FindingFlag(
                severity=FlagSeverity.ACTION,
                field="status",
                message=(
                    "Claim denied: review the reason codes and consider an appeal "
                    "if you believe the denial is incorrect"
                ),
            )
        )
    elif status == "pending":
        flags.append(
            FindingFlag(
                severity=FlagSeverity.INFO,
                field="status",
                message="Claim is still pending; follow up with the insurer if it stalls",
            )
        )
    claimed = amounts.get("claim_amount")
    covered = amounts.get("coverage_amount")
    if claimed is not None and covered is not None and covered < claimed:
        flags.append(
            FindingFlag(
                severity=FlagSeverity.INFO,
                field="coverage_amount",
                message=f"Coverage is {claimed - covered:,.2f} below the claimed amount",
            )
        )
    return flags


def _recommendations(status: str | None) -> list[str]:
    if status == "denied":
        return [
            "Review the denial reason carefully",
            "Contact the insurance provider for clarification",
            "Consider filing an appeal if you believe the denial is incorrect",
        ]
    return ["Review the claim details for accuracy", "Keep this document for your records"]
