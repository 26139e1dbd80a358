"""Nutrition label interpreter.

Per-serving amounts are compared with fixed daily values: nutrients to limit
are flagged ``high`` at 20% of the daily value or more, nutrients to encourage
are flagged ``low`` at 5% or less.
"""

import re
from dataclasses import dataclass
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
from docinsight.templates.parsing import first_group, to_float

HIGH_SHARE = 0.20
LOW_SHARE = 0.05


@dataclass(frozen=True)
class _Nutrient:
    name: str
    aliases: tuple[str, ...]
    unit: str
    daily_value: float | None
    limit: bool
    # Absolute per-serving ceiling used when there is no daily value.
    high_above: float | None = None


_NUTRIENTS: tuple[_Nutrient, ...] = (
    _Nutrient("Calories", ("calories", "energy"), "kcal", 2000.0, True, high_above=400.0),
    _Nutrient("Saturated Fat", ("saturated fat", "sat fat", "saturates"), "g", 20.0, True),
    _Nutrient("Trans Fat", ("trans fat",), "g", None, True, high_above=0.5),
    _Nutrient("Total Fat", ("total fat", "fat"), "g", 78.0, True),
    _Nutrient("Cholesterol", ("cholesterol",), "mg", 300.0, True),
    _Nutrient("Sodium", ("sodium",), "mg", 2300.0, True),
    _Nutrient("Dietary Fiber", ("dietary fiber", "fiber", "fibre"), "g", 28.0, False),
    _Nutrient("Added Sugars", ("added sugars", "incl. added sugars"), "g", 50.0, True),
    _Nutrient(
        "Total Sugars", ("total sugars", "sugars", "sugar"), "g", None, True, high_above=25.0
    ),
    _Nutrient(
        "Total Carbohydrate",
        ("total carbohydrates", "total carbohydrate", "carbohydrates", "carbohydrate", "carbs"),
        "g",
        275.0,
        False,
    ),
    _Nutrient("Protein", ("protein",), "g", 50.0, False),
)

_UNIT_SCALE: MappingProxyType[tuple[str, str], float] = MappingProxyType({
    ("g", "mg"): 1000.0,
    ("mg", "g"): 0.001,
    ("mcg", "mg"): 0.001,
    ("µg", "mg"): 0.001,
    ("kj", "kcal"): 1 / 4.184,
    ("cal", "kcal"): 1.0,
})

_SERVING_RE = re.compile(r"\bserving\s+size\s*[:]?\s*([^\n]+)", re.IGNORECASE)
_SERVINGS_RE = re.compile(
    r"\b(?:servings\s+per\s+container|servings)\s*[:]?\s*(?:about\s+)?(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)


def _nutrient_pattern(alias: str) -> re.Pattern[str]:
    words = r"\s+".join(re.escape(part) for part in alias.split())
    return re.compile(
        rf"(?<![A-Za-z]){words}(?![A-Za-z])\s*[:]?\s*"
        r"(\d+(?:[.,]\d+)?)\s*(kcal|cal|kj|mcg|µg|mg|g)?\b",
        re.IGNORECASE,
    )


_PATTERNS: tuple[tuple[_Nutrient, tuple[re.Pattern[str], ...]], ...] = tuple(
    (nutrient, tuple(_nutrient_pattern(alias) for alias in nutrient.aliases))
    for nutrient in _NUTRIENTS
)


def interpret(
    text: str, blocks: list[TextBlock], options: TemplateOptions
) -> TemplateFinding:
    _ = blocks, options
    facts = parse_facts(text)
    flags = [flag for flag in (_assess(fact) for fact in facts) if flag is not None]

    fields: dict[str, Any] = {
        "serving_size": first_group(_SERVING_RE, text),
        "servings_per_container": first_group(_SERVINGS_RE, text),
        "nutrients": facts,
    }
    macros = {
        fact["name"]: fact["value"]
        for fact in facts
        if fact["name"] in ("Total Fat", "Total Carbohydrate", "Protein") and fact["value"] > 0
    }
    hints = (
        [
            VisualizationHint(
                chart="pie", title="Macronutrient distribution", series=macros, unit="g"
            )
        ]
        if macros
        else []
    )
    recommendations: list[str] = []
    if facts:
        recommendations = [
            "Consider the serving size when planning meals",
            "Balance with low-calorie, nutrient-dense foods",
        ]
    return TemplateFinding(
        template_kind=TemplateKind.NUTRITION_LABEL,
        structured_fields=fields,
        flags=flags,
        visualization_hints=hints,
        recommendations=recommendations,
    )


def parse_facts(text: str) -> list[dict[str, Any]]:
    """One entry per recognised nutrient, in label order of the nutrient table.

    Character ranges claimed by a longer name (``Saturated Fat``) are not
    reused for a shorter one (``Fat``).
    """
    claimed: list[tuple[int, int]] = []
    facts: list[dict[str, Any]] = []
    for nutrient, patterns in _PATTERNS:
        for pattern in patterns:
            match = next(
                (m for m in pattern.finditer(text) if not _overlaps(m.span(), claimed)), None
            )
            if match is None:
                continue
            value = to_float(match.group(1))
            if value is None:
                continue
            unit = (match.group(2) or nutrient.unit).lower()
            claimed.append(match.span())
            facts.append(
                {
                    "name": nutrient.name,
                    "value": value,
                    "unit": unit,
                    "daily_value_share": _daily_share(nutrient, value, unit),
                }
            )
            break
    return facts


def _assess(fact: dict[str, Any]) -> FindingFlag | None:
    nutrient = next(n for n in _NUTRIENTS if n.name == fact["name"])
    share = fact["daily_value_share"]
    amount = f"{fact['value']:g} {fact['unit']}"
    if nutrient.limit:
        too_high = share is not None and share >= HIGH_SHARE
        amount_in_unit = _convert(fact["value"], fact["unit"], nutrient.unit)
        if nutrient.high_above is not None and amount_in_unit is not None:
            too_high = too_high or amount_in_unit > nutrient.high_above
        if too_high:
            return FindingFlag(
                severity=FlagSeverity.HIGH,
                field=nutrient.name,
                message=f"High {nutrient.name.lower()}: {amount} per serving",
            )
        return None
    if share is not None and share <= LOW_SHARE:
        return FindingFlag(
            severity=FlagSeverity.LOW,
            field=nutrient.name,
            message=f"Low {nutrient.name.lower()}: {amount} per serving",
        )
    return None


def _daily_share(nutrient: _Nutrient, value: float, unit: str) -> float | None:
    if nutrient.daily_value is None:
        return None
    converted = _convert(value, unit, nutrient.unit)
    if converted is None:
        return None
    return round(converted / nutrient.daily_value, 4)


def _convert(value: float, unit: str, target: str) -> float | None:
    if unit == target:
        return value
    scale = _UNIT_SCALE.get((unit, target))
    return value * scale if scale is not None else None


def _overlaps(span: tuple[int, int], claimed: list[tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in claimed)

