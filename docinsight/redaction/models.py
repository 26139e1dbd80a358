from dataclasses import dataclass, field


@dataclass(frozen=True)
class PhiSpan:
    """A detected sensitive span, as character offsets into the scanned text."""

    kind: str  # e.g. "PERSON", "EMAIL", "PHONE", "DATE", "MRN", "NATIONAL_ID", "ID"
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, start: int, end: int) -> bool:
        return self.start < end and start < self.end


@dataclass
class RedactionResult:
    """Output of a scan-and-redact pass."""

    redacted_text: str
    spans: list[PhiSpan] = field(default_factory=list)

    @property
    def phi_found(self) -> bool:
        return bool(self.spans)
