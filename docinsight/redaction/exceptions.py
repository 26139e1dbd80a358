from docinsight.errors import CaptureError


class RedactionPolicyViolation(CaptureError):
    """Raised when an outbound payload still carries PHI and no consent is recorded.

    Always raised before any network call is attempted.
    """
