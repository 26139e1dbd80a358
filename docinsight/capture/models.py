import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class DocumentType(str, Enum):
    """Closed set of document kinds the pipeline knows how to interpret."""

    LAB_REPORT = "lab_report"
    PRESCRIPTION = "prescription"
    PHARMACY_LABEL = "pharmacy_label"
    INSURANCE_CLAIM = "insurance_claim"
    NUTRITION_LABEL = "nutrition_label"
    MEDICAL_REPORT = "medical_report"
    SPREADSHEET = "spreadsheet"
    CONTRACT = "contract"
    GENERIC = "generic"

    @classmethod
    def parse(cls, raw: "str | DocumentType | None") -> "DocumentType":
        """Lenient conversion; unknown values fall back to GENERIC."""
        if isinstance(raw, DocumentType):
            return raw
        if not raw:
            return cls.GENERIC
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.GENERIC


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class CapturedDocument:
    """One captured page handed over by the capture collaborator."""

    image_ref: str
    document_type_hint: DocumentType = DocumentType.GENERIC
    id: str = field(default_factory=new_id)
    captured_at: datetime = field(default_factory=utcnow)
    page_index: int = 0
    page_count: int = 1
