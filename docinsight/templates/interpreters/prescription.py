"""Prescription interpreter.

An entry starts on a line naming a drug together with a strength, a dosage
form or a frequency. Instruction lines that follow (``Take ...``, ``Apply ...``)
belong to the same entry, so fields may appear in any order across them.
Instruction lines that come before any drug line attach to the next entry.
"""

import re
from typing import Any

from docinsight.recognition.models import TextBlock
from docinsight.templates.models import (
    FindingFlag,
    FlagSeverity,
    TemplateFinding,
    TemplateKind,
    TemplateOptions,
)
from docinsight.templates.parsing import lines

STRENGTH_RE = re.compile(
    r"(?<![\w.])(\d+(?:\.\d+)?\s*(?:mg|mcg|µg|g|ml|iu|units?|%)"
    r"(?:\s*/\s*\d*\s*(?:ml|g|tab))?)"
    r"(?![A-Za-z])",
    re.IGNORECASE,
)
DURATION_RE = re.compile(
    r"(?:\bfor\s+|\bx\s*)(\d+\s*(?:days?|weeks?|months?|d\b|wks?))", re.IGNORECASE
)
FREQUENCY_RE = re.compile(
    r"\b(once\s+(?:a\s+)?daily|once\s+a\s+day|twice\s+(?:a\s+)?daily|twice\s+a\s+day"
    r"|three\s+times\s+(?:a\s+)?(?:daily|day)|four\s+times\s+(?:a\s+)?(?:daily|day)"
    r"|every\s+\d+\s*(?:-\s*\d+\s*)?hours?|every\s+(?:morning|evening|night)"
    r"|at\s+bedtime|as\s+needed|when\s+required|daily|nightly|weekly"
    r"|q\.?d\.?|b\.?i\.?d\.?|t\.?i\.?d\.?|q\.?i\.?d\.?|q\.?h\.?s\.?|p\.?r\.?n\.?|od|bd|tds)\b",
    re.IGNORECASE,
)
_DOSAGE_FORMS = frozenset({
    "tablet", "tablets", "tab", "tabs", "capsule", "capsules", "cap", "caps", "syrup",
    "suspension", "injection", "cream", "ointment", "drops", "inhaler", "solution", "gel",
    "patch", "spray", "suppository", "sachet",
})
_INSTRUCTION_VERBS = frozenset({
    "take", "apply", "use", "inhale", "instill", "instil", "give", "inject", "sig", "sig:",
    "dissolve", "chew", "place", "insert", "spray", "directions", "directions:",
})
_NOT_DRUG = frozenset({
    "rx", "rx:", "take", "tablet", "tablets", "tab", "tabs", "capsule", "capsules", "by",
    "mouth", "oral", "orally", "daily", "twice", "once", "three", "four", "times", "every",
    "for", "days", "day", "weeks", "with", "food", "water", "and", "the", "of", "one", "two",
    "refill", "refills", "qty", "quantity", "dr", "doctor", "patient", "name", "date",
    "prescription", "sig", "sig:", "as", "needed", "medication", "drug", "strength",
    "dispense", "pharmacy", "directions", "signature", "physician", "clinic", "hospital",
    "mcg", "unit", "units", "puff", "puffs", "drop",
})
_DRUG_TOKEN_RE = re.compile(r"[A-Za-z][A-Za-z\-]{2,}")

FREQUENCY_ALIASES = {
    "qd": "once daily", "od": "once daily", "bid": "twice daily", "bd": "twice daily",
    "tid": "three times daily", "tds": "three times daily", "qid": "four times daily",
    "qhs": "at bedtime", "prn": "as needed",
}


def interpret(
    text: str, blocks: list[TextBlock], options: TemplateOptions
) -> TemplateFinding:
    _ = blocks, options
    medications = parse_medications(text)
    return TemplateFinding(
        template_kind=TemplateKind.PRESCRIPTION,
        structured_fields={"medications": medications},
        flags=safety_flags(medications),
        recommendations=_recommendations(medications),
    )


def parse_medications(text: str) -> list[dict[str, Any]]:
    """Group lines into medication entries with drug/strength/frequency/duration."""
    entries: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    # Instruction lines seen before the first drug line.
    orphans: list[str] = []
    for line in lines(text):
        first_word = line.split()[0].lower()
        if first_word in _INSTRUCTION_VERBS and current is not None:
            _fill(current, line)
            continue
        drug = _drug_name(line)
        if drug and _looks_like_entry(line):
            current = {"drug": drug, "strength": None, "frequency": None, "duration": None}
            _fill(current, line)
            for orphan in orphans:
                _fill(current, orphan)
            orphans.clear()
            entries.append(current)
        elif current is not None and (FREQUENCY_RE.search(line) or DURATION_RE.search(line)):
            _fill(current, line)
        elif first_word in _INSTRUCTION_VERBS:
            orphans.append(line)
    return entries


def safety_flags(medications: list[dict[str, Any]]) -> list[FindingFlag]:
    flags: list[FindingFlag] = []
    for med in medications:
        missing = [name for name in ("strength", "frequency") if not med[name]]
        if missing:
            flags.append(
                FindingFlag(
                    severity=FlagSeverity.SAFETY,
                    field=med["drug"],
                    message=(
                        f"{med['drug']}: no {' or '.join(missing)} stated; "
                        "confirm with your pharmacist before taking"
                    ),
                )
            )
    return flags


def normalize_frequency(raw: str) -> str:
    compact = re.sub(r"[.\s]", "", raw.lower())
    if compact in FREQUENCY_ALIASES:
        return FREQUENCY_ALIASES[compact]
    return re.sub(r"\s+", " ", raw.strip().lower())


def _fill(entry: dict[str, Any], line: str) -> None:
    if entry["strength"] is None:
        match = STRENGTH_RE.search(line)
        if match:
            entry["strength"] = re.sub(r"\s+", " ", match.group(1)).strip()
    if entry["frequency"] is None:
        match = FREQUENCY_RE.search(line)
        if match:
            entry["frequency"] = normalize_frequency(match.group(1))
    if entry["duration"] is None:
        match = DURATION_RE.search(line)
        if match:
            entry["duration"] = re.sub(r"\s+", " ", match.group(1)).strip()


def _drug_name(line: str) -> str | None:
    for token in _DRUG_TOKEN_RE.findall(line):
        lowered = token.lower()
        if lowered in _NOT_DRUG or lowered in _DOSAGE_FORMS:
            continue
        if FREQUENCY_RE.fullmatch(token):
            continue
        return token
    return None


def _looks_like_entry(line: str) -> bool:
    words = {word.strip(".,:;()").lower() for word in line.split()}
    return bool(
        STRENGTH_RE.search(line) or words & _DOSAGE_FORMS or FREQUENCY_RE.search(line)
    ) and not _is_label_line(line)


def _is_label_line(line: str) -> bool:
    first = line.split(":", 1)[0].strip().lower()
    return ":" in line and first in {"patient", "name", "date", "dr", "doctor", "physician"}


def _recommendations(medications: list[dict[str, Any]]) -> list[str]:
    if not medications:
        return []
    recommendations = [
        "Take medications exactly as prescribed",
        "Set reminders for medication times",
        "Contact your pharmacist with any questions",
    ]
    if len(medications) > 2:
        recommendations.append("Consider a pill organizer for multiple medications")
    return recommendations
