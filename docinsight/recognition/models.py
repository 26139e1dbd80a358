from dataclasses import dataclass, field
from enum import Enum

from docinsight.capture.models import DocumentType
from docinsight.redaction.models import PhiSpan


class SourceEngine(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class Region:
    """Pixel bounding box in the source image."""

    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class TextBlock:
    """One recognised line/block; ``offset`` is its start index in ``raw_text``."""

    text: str
    confidence: float
    region: Region | None = None
    offset: int = 0


@dataclass(frozen=True)
class Table:
    """A table extracted by the remote engine; each row is a list of cell texts."""

    rows: list[list[str]]
    headers: list[str] = field(default_factory=list)
    region: Region | None = None
    confidence: float = 0.0


@dataclass(frozen=True)
class RecognitionResult:
    """Output of one recognition engine for one document."""

    source_engine: SourceEngine
    raw_text: str
    structured_blocks: list[TextBlock] = field(default_factory=list)
    document_type_guess: DocumentType = DocumentType.GENERIC
    phi_spans: list[PhiSpan] = field(default_factory=list)
    confidence: float = 0.0
    language: str = ""
    tables: list[Table] = field(default_factory=list)
