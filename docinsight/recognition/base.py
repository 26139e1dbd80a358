from abc import ABC, abstractmethod

from docinsight.capture.models import DocumentType
from docinsight.recognition.models import RecognitionResult


class BaseOnDeviceRecognizer(ABC):
    """Contract for local text extraction. Never touches the network."""

    @abstractmethod
    async def recognize(self, image_bytes: bytes) -> RecognitionResult:
        """Extract text and line blocks from an image.

        Raises:
            LocalEngineFailure: on unsupported input, engine errors or when the
                local compute budget is exceeded.
        """


class BaseRemoteRecognizer(ABC):
    """Contract for high-fidelity remote text/table extraction."""

    @abstractmethod
    async def recognize(
        self,
        image_bytes: bytes,
        language_hints: list[str],
        document_type: DocumentType,
    ) -> RecognitionResult:
        """Send an (already masked) image to the remote engine.

        Raises:
            RemoteConnectivityLost: service unreachable.
            RemoteTransientFailure: timeout / 5xx after in-process retries.
            RemoteTerminalFailure: 4xx, malformed response, quota.
        """
