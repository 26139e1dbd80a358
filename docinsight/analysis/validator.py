"""Validates parsed backend JSON and builds AnalysisResult objects."""

from typing import Any

from docinsight.analysis.exceptions import AnalysisValidationError
from docinsight.analysis.models import (
    ActionItem,
    AnalysisResult,
    ComplianceFlag,
    LanguageVariant,
)

_MAX_ITEMS = 50
_PRIORITIES = frozenset({"low", "medium", "high", "urgent"})
_CHECK_STATUSES = frozenset({"passed", "failed", "warning"})
_SEVERITIES = frozenset({"low", "medium", "high", "critical"})


def build_semantic_result(data: dict[str, Any], backend_id: str) -> AnalysisResult:
    """Build an AnalysisResult from a semantic backend response.

    Raises:
        AnalysisValidationError: on any validation failure.
    """
    _require_fields(data, ("summary", "insights", "actions"))
    summary = _require_str(data["summary"], "summary")
    insights = [
        _require_str(item, f"insights[{i}]")
        for i, item in enumerate(_require_list(data["insights"], "insights"))
    ]
    actions = [
        _build_action(item, i) for i, item in enumerate(_require_list(data["actions"], "actions"))
    ]
    return AnalysisResult(
        source_backend_id=backend_id,
        summary=summary,
        insights=insights,
        action_items=actions,
        language_variants=[LanguageVariant(language="en", text=summary)] if summary else [],
        confidence=_build_confidence(data.get("confidence")),
    )


def build_compliance_result(data: dict[str, Any], backend_id: str) -> AnalysisResult:
    """Build an AnalysisResult from a bilingual compliance backend response.

    Risk flags are folded into compliance flags with status ``warning``.

    Raises:
        AnalysisValidationError: on any validation failure.
    """
    _require_fields(data, ("summary_en", "summary_ar", "compliance_checks"))
    summary_en = _require_str(data["summary_en"], "summary_en")
    summary_ar = _require_str(data["summary_ar"], "summary_ar")
    flags = [
        _build_check(item, i)
        for i, item in enumerate(_require_list(data["compliance_checks"], "compliance_checks"))
    ]
    flags.extend(
        _build_risk_flag(item, i)
        for i, item in enumerate(_require_list(data.get("risk_flags", []), "risk_flags"))
    )
    variants = [
        LanguageVariant(language=lang, text=text)
        for lang, text in (("en", summary_en), ("ar", summary_ar))
        if text
    ]
    return AnalysisResult(
        source_backend_id=backend_id,
        summary=summary_en or summary_ar,
        language_variants=variants,
        compliance_flags=flags,
        confidence=_build_confidence(data.get("confidence")),
    )


def _require_fields(data: dict[str, Any], fields: tuple[str, ...]) -> None:
    for field in fields:
        if field not in data:
            raise AnalysisValidationError(f"Missing required top-level field: {field}")


def _require_str(raw: Any, path: str) -> str:
    if not isinstance(raw, str):
        raise AnalysisValidationError(f"'{path}' must be a string")
    return raw.strip()


def _require_list(raw: Any, path: str) -> list[Any]:
    if not isinstance(raw, list):
        raise AnalysisValidationError(f"'{path}' must be a list")
    if len(raw) > _MAX_ITEMS:
        raise AnalysisValidationError(
            f"Too many items in '{path}': {len(raw)} (max {_MAX_ITEMS})"
        )
    return raw


def _require_object(raw: Any, path: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise AnalysisValidationError(f"'{path}' must be an object")
    return raw


def _require_choice(raw: Any, choices: frozenset[str], path: str) -> str:
    value = _require_str(raw, path).lower()
    if value not in choices:
        raise AnalysisValidationError(
            f"'{path}' must be one of {sorted(choices)}, got {raw!r}"
        )
    return value


def _build_action(raw: Any, index: int) -> ActionItem:
    item = _require_object(raw, f"actions[{index}]")
    title = _require_str(item.get("title"), f"actions[{index}].title")
    if not title:
        raise AnalysisValidationError(f"'actions[{index}].title' must be non-empty")
    return ActionItem(
        title=title,
        description=_require_str(item.get("description", ""), f"actions[{index}].description"),
        priority=_require_choice(
            item.get("priority", "medium"), _PRIORITIES, f"actions[{index}].priority"
        ),
        category=_require_str(item.get("category", "general"), f"actions[{index}].category")
        or "general",
    )


def _build_check(raw: Any, index: int) -> ComplianceFlag:
    item = _require_object(raw, f"compliance_checks[{index}]")
    rule = _require_str(item.get("rule"), f"compliance_checks[{index}].rule")
    if not rule:
        raise AnalysisValidationError(f"'compliance_checks[{index}].rule' must be non-empty")
    return ComplianceFlag(
        rule=rule,
        status=_require_choice(
            item.get("status"), _CHECK_STATUSES, f"compliance_checks[{index}].status"
        ),
        severity=_require_choice(
            item.get("severity"), _SEVERITIES, f"compliance_checks[{index}].severity"
        ),
        details=_require_str(item.get("details", ""), f"compliance_checks[{index}].details"),
    )


def _build_risk_flag(raw: Any, index: int) -> ComplianceFlag:
    item = _require_object(raw, f"risk_flags[{index}]")
    return ComplianceFlag(
        rule=_require_str(item.get("category"), f"risk_flags[{index}].category") or "risk",
        status="warning",
        severity=_require_choice(
            item.get("severity"), _SEVERITIES, f"risk_flags[{index}].severity"
        ),
        details=_require_str(item.get("description", ""), f"risk_flags[{index}].description"),
    )


def _build_confidence(raw: Any) -> float:
    if raw is None:
        return 0.0
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise AnalysisValidationError("'confidence' must be a number")
    return max(0.0, min(1.0, float(raw)))
