"""Keyword heuristics that guess a document type from recognised text."""

import re

from docinsight.capture.models import DocumentType

_WORD_RE = re.compile(r"[a-z]+")

# Order matters on ties: earlier entries win.
_KEYWORDS: list[tuple[DocumentType, frozenset[str]]] = [
    (
        DocumentType.LAB_REPORT,
        frozenset({
            "lab", "laboratory", "specimen", "reference", "range", "result", "results",
            "hemoglobin", "glucose", "cholesterol", "creatinine", "wbc", "platelets",
        }),
    ),
    (
        DocumentType.PRESCRIPTION,
        frozenset({
            "rx", "prescription", "prescribed", "prescriber", "tablet", "tablets",
            "capsule", "capsules", "sig", "refill", "refills", "dose", "dosage",
        }),
    ),
    (
        DocumentType.PHARMACY_LABEL,
        frozenset({"pharmacy", "pharmacist", "dispensed", "qty", "directions", "expiry", "lot"}),
    ),
    (
        DocumentType.INSURANCE_CLAIM,
        frozenset({
            "insurance", "claim", "policy", "coverage", "premium", "insurer",
            "deductible", "copay", "eob", "adjudication", "payer",
        }),
    ),
    (
        DocumentType.NUTRITION_LABEL,
        frozenset({
            "nutrition", "calories", "serving", "servings", "ingredients", "fat",
            "carbohydrate", "carbohydrates", "sodium", "protein", "sugars", "fiber",
        }),
    ),
    (
        DocumentType.MEDICAL_REPORT,
        frozenset({
            "diagnosis", "patient", "clinic", "hospital", "history", "examination",
            "impression", "physician", "discharge", "assessment",
        }),
    ),
    (
        DocumentType.CONTRACT,
        frozenset({"agreement", "contract", "terms", "conditions", "party", "parties", "hereby"}),
    ),
]

_MIN_HITS = 2


def guess_document_type(text: str) -> DocumentType:
    """Return the type with the most distinct keyword hits (at least two)."""
    words = set(_WORD_RE.findall(text.lower()))
    best_type = DocumentType.GENERIC
    best_hits = 0
    for doc_type, keywords in _KEYWORDS:
        hits = len(words & keywords)
        if hits > best_hits:
            best_type, best_hits = doc_type, hits
    if best_hits >= _MIN_HITS:
        return best_type
    if _looks_tabular(text):
        return DocumentType.SPREADSHEET
    return DocumentType.GENERIC


def _looks_tabular(text: str) -> bool:
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 3:
        return False
    tab_counts = [line.count("\t") for line in lines]
    avg = sum(tab_counts) / len(tab_counts)
    similar = sum(1 for count in tab_counts if abs(count - avg) <= 1)
    return avg >= 1 and similar / len(lines) > 0.7
