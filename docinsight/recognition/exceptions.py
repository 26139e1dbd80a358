from docinsight.errors import CaptureError


class LocalEngineFailure(CaptureError):
    """On-device recognition failed; the document cannot be processed at all."""


class ImageLoadError(LocalEngineFailure):
    """Raised when the captured image cannot be resolved or read."""
