from abc import ABC, abstractmethod

from docinsight.redaction.models import PhiSpan, RedactionResult


class BaseRedactor(ABC):
    """Contract for all PHI detection/redaction adapters."""

    @abstractmethod
    def scan(self, text: str) -> list[PhiSpan]:
        """Detect sensitive spans in *text*.

        Returns:
            Sorted, non-overlapping spans as character offsets into *text*.
        """

    @abstractmethod
    def redact(self, text: str, spans: list[PhiSpan]) -> str:
        """Mask *spans* in *text* with same-length placeholders.

        Never raises: out-of-range or empty spans are ignored.
        """

    def redact_all(self, text: str) -> RedactionResult:
        """Scan and redact in one call."""
        spans = self.scan(text)
        return RedactionResult(redacted_text=self.redact(text, spans), spans=spans)
