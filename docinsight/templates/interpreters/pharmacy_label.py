"""Pharmacy label interpreter: one dispensed drug with directions and label metadata."""

import re

from docinsight.recognition.models import TextBlock
from docinsight.templates.interpreters.prescription import (
    FREQUENCY_RE,
    STRENGTH_RE,
    normalize_frequency,
    parse_medications,
    safety_flags,
)
from docinsight.templates.models import TemplateFinding, TemplateKind, TemplateOptions
from docinsight.templates.parsing import first_group

_DRUG_RE = re.compile(
    r"\b(?:drug|medication|medicine)\s*[:\-]\s*([A-Za-z][A-Za-z\- ]+?)(?=\s+\d|\s*$|,)",
    re.IGNORECASE | re.MULTILINE,
)
_DIRECTIONS_RE = re.compile(
    r"\b(?:directions|sig|instructions)\s*[:\-]?\s*([^.\n]+)", re.IGNORECASE
)
_QUANTITY_RE = re.compile(r"\b(?:qty|quantity)\s*[:#]?\s*(\d+)", re.IGNORECASE)
_REFILLS_RE = re.compile(
    r"\brefills?\s*(?:left|remaining)?\s*[:#]?\s*(\d+|none|no)\b", re.IGNORECASE
)
_EXPIRY_RE = re.compile(
    r"\b(?:exp(?:iry|ires|iration)?(?:\s+date)?|use\s+by|discard\s+after)\s*[:.]?\s*"
    r"(\d{1,4}[/.\-]\d{1,2}(?:[/.\-]\d{1,4})?)",
    re.IGNORECASE,
)


def interpret(
    text: str, blocks: list[TextBlock], options: TemplateOptions
) -> TemplateFinding:
    _ = blocks, options
    medications = parse_medications(text)
    drug = first_group(_DRUG_RE, text)
    directions = first_group(_DIRECTIONS_RE, text)

    if drug is None and medications:
        drug = medications[0]["drug"]
    if drug is not None and not any(m["drug"].lower() == drug.lower() for m in medications):
        medications.insert(0, _entry_from_label(drug, text))

    fields = {
        "drug_name": drug,
        "strength": first_group(STRENGTH_RE, text),
        "directions": directions,
        "quantity": first_group(_QUANTITY_RE, text),
        "refills": first_group(_REFILLS_RE, text),
        "expiry": first_group(_EXPIRY_RE, text),
        "medications": medications,
    }
    recommendations: list[str] = []
    if medications:
        recommendations = [
            "Follow the dosage instructions carefully",
            "Store as directed on the label",
            "Check the expiration date before use",
        ]
    return TemplateFinding(
        template_kind=TemplateKind.PHARMACY_LABEL,
        structured_fields=fields,
        flags=safety_flags(medications),
        recommendations=recommendations,
    )


def _entry_from_label(drug: str, text: str) -> dict[str, str | None]:
    frequency = first_group(FREQUENCY_RE, text)
    return {
        "drug": drug,
        "strength": first_group(STRENGTH_RE, text),
        "frequency": normalize_frequency(frequency) if frequency else None,
        "duration": None,
    }
