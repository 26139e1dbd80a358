class CaptureError(Exception):
    """Base exception for every failure the capture pipeline classifies."""
