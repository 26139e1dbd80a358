from abc import ABC, abstractmethod

from docinsight.analysis.models import AnalysisResult
from docinsight.capture.models import DocumentType


class BaseAnalysisBackend(ABC):
    """One remote reasoning capability. Adding a backend means adding an implementer."""

    backend_id: str

    @abstractmethod
    async def analyze(
        self,
        image_bytes: bytes | None,
        text: str,
        language_hints: list[str],
        document_type: DocumentType,
    ) -> AnalysisResult:
        """Analyze an already-redacted document.

        Args:
            image_bytes: Masked page image, or None to analyze text only.
            text: Outbound-safe unified text.
            language_hints: ISO 639-1 codes expected in the document.
            document_type: Best current guess of the document type.

        Raises:
            RemoteFailure: classified into transient, connectivity or terminal.
        """
