"""Lab report interpreter.

Each line of the form ``<test name> <value> [unit] [reference range]`` (in any
spacing, tabs included) becomes one result. Lines that carry digits but do not
parse are kept verbatim in ``unparsed_rows`` without a flag.
"""

import re
from types import MappingProxyType
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
from docinsight.templates.parsing import Range, find_range, lines, to_float

_ROW_RE = re.compile(
    r"^(?P<name>[A-Za-z][A-Za-z0-9 .,'()/%+\-]*?)\s*(?:[:=]\s*|\s+)"
    r"(?P<cmp>[<>]=?)?\s*(?P<value>\d+(?:[.,]\d+)?)"
    r"(?![\d.,]*\s*(?:-|–|to)\s*\d)(?=[\sA-Za-z%µμ*(]|$)"
    r"(?P<rest>.*)$"
)
_UNIT_RE = re.compile(r"^(?:[A-Za-zµμ%×][A-Za-z0-9µμ%×/^³.\-]*|10\^?\d+/[A-Za-zµμ]+)$")
_FLAG_TOKENS = frozenset({"h", "l", "hh", "ll", "high", "low", "*", "n", "normal", "abnormal"})
_RANGE_LABELS = frozenset(
    {"ref", "ref.", "ref:", "reference", "range", "range:", "normal", "normal:", "to"}
)
_NON_TEST_WORDS = frozenset({
    "date", "dob", "age", "phone", "tel", "fax", "mrn", "id", "patient", "name", "page",
    "collected", "received", "reported", "printed", "sample", "specimen", "order", "account",
    "physician", "doctor", "dr", "time", "report", "lab", "laboratory",
})

# Used when a row carries no printed range.
_DEFAULT_RANGES: MappingProxyType[str, tuple[float, float, str]] = MappingProxyType({
    "hemoglobin": (12.0, 16.0, "g/dL"),
    "haemoglobin": (12.0, 16.0, "g/dL"),
    "hgb": (12.0, 16.0, "g/dL"),
    "wbc": (4.0, 11.0, "x10^3/uL"),
    "white blood cells": (4.0, 11.0, "x10^3/uL"),
    "platelets": (150.0, 400.0, "x10^3/uL"),
    "plt": (150.0, 400.0, "x10^3/uL"),
    "glucose": (70.0, 100.0, "mg/dL"),
    "fasting glucose": (70.0, 100.0, "mg/dL"),
    "creatinine": (0.6, 1.2, "mg/dL"),
    "alt": (7.0, 56.0, "U/L"),
    "sgpt": (7.0, 56.0, "U/L"),
    "ast": (10.0, 40.0, "U/L"),
    "sgot": (10.0, 40.0, "U/L"),
})


def interpret(
    text: str, blocks: list[TextBlock], options: TemplateOptions
) -> TemplateFinding:
    _ = blocks
    results: list[dict[str, Any]] = []
    unparsed: list[str] = []
    flags: list[FindingFlag] = []

    for line in lines(text):
        if not any(ch.isdigit() for ch in line):
            continue
        row = _parse_row(line)
        if row is None:
            if not _is_metadata(line):
                unparsed.append(line)
            continue
        severity = assess(
            row["value"], row.pop("_range"), options.critical_multiplier, row["comparator"]
        )
        row["flag"] = severity.value if severity else None
        results.append(row)
        if severity is not None:
            flags.append(_flag_for(row, severity))

    series = {
        row["name"]: row["value"] for row in results if row["comparator"] is None
    }
    hints = [VisualizationHint(chart="bar", title="Lab results", series=series)] if series else []
    return TemplateFinding(
        template_kind=TemplateKind.LAB_REPORT,
        structured_fields={"results": results, "unparsed_rows": unparsed},
        flags=flags,
        visualization_hints=hints,
        recommendations=_recommendations(results, flags),
    )


def assess(
    value: float,
    reference: Range | None,
    critical_multiplier: float,
    comparator: str | None = None,
) -> FlagSeverity | None:
    """Classify *value* against *reference*.

    ``critical`` means beyond the range by more than ``critical_multiplier``
    times the range width. Censored values (``<5``, ``>200``) are only flagged
    when the bound alone proves they are out of range, and never as critical.
    """
    if reference is None:
        return None
    low, high = reference.low, reference.high
    margin = critical_multiplier * reference.width

    if comparator is not None:
        if comparator.startswith("<") and low is not None and value <= low:
            return FlagSeverity.LOW
        if comparator.startswith(">") and high is not None and value >= high:
            return FlagSeverity.HIGH
        return None

    if high is not None and value > high:
        return FlagSeverity.CRITICAL if value > high + margin else FlagSeverity.HIGH
    if low is not None and value < low:
        return FlagSeverity.CRITICAL if value < low - margin else FlagSeverity.LOW
    return None


def _parse_row(line: str) -> dict[str, Any] | None:
    match = _ROW_RE.match(line)
    if not match:
        return None
    name = match.group("name").strip(" .:-")
    if not name or name.split()[0].lower() in _NON_TEST_WORDS:
        return None
    value = to_float(match.group("value"))
    if value is None:
        return None

    rest = match.group("rest")
    unit = _parse_unit(rest)
    reference = find_range(rest)
    reference_source = "printed" if reference else None
    if reference is None:
        default = _DEFAULT_RANGES.get(name.lower())
        if default is not None:
            low, high, default_unit = default
            reference = Range(low=low, high=high, text=f"{low:g}-{high:g}")
            reference_source = "default"
            unit = unit or default_unit

    return {
        "name": name,
        "value": value,
        "comparator": match.group("cmp"),
        "unit": unit,
        "reference_range": reference.text if reference else None,
        "reference_source": reference_source,
        "_range": reference,
    }


def _parse_unit(rest: str) -> str:
    for token in rest.split():
        stripped = token.strip("()[],;")
        lowered = stripped.lower()
        if not stripped or lowered in _FLAG_TOKENS:
            continue
        if lowered not in _RANGE_LABELS and _UNIT_RE.match(stripped):
            return stripped
        return ""
    return ""


def _is_metadata(line: str) -> bool:
    first = re.split(r"[\s:]+", line.strip(), maxsplit=1)[0].lower().strip(".")
    return first in _NON_TEST_WORDS


def _flag_for(row: dict[str, Any], severity: FlagSeverity) -> FindingFlag:
    unit = f" {row['unit']}" if row["unit"] else ""
    reading = f"{row['name']} {row['value']:g}{unit}"
    if severity is FlagSeverity.CRITICAL:
        message = f"{reading} is far outside the reference range {row['reference_range']}"
    elif severity is FlagSeverity.HIGH:
        message = f"{reading} is above the reference range {row['reference_range']}"
    else:
        message = f"{reading} is below the reference range {row['reference_range']}"
    return FindingFlag(severity=severity, field=row["name"], message=message)


def _recommendations(results: list[dict[str, Any]], flags: list[FindingFlag]) -> list[str]:
    if not results:
        return []
    recommendations: list[str] = []
    if any(flag.severity is FlagSeverity.CRITICAL for flag in flags):
        recommendations.append("Critical values detected: seek medical attention promptly")
    if flags:
        recommendations.append("Discuss the abnormal values with your healthcare provider")
    else:
        recommendations.append("All values are within the reference range")
    return recommendations
