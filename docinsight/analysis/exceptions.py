from docinsight.remote.exceptions import RemoteTerminalFailure


class AnalysisResponseError(RemoteTerminalFailure):
    """Raised when a backend answers with unusable content (not JSON, wrong shape)."""


class AnalysisValidationError(AnalysisResponseError):
    """Raised when the parsed response fails domain validation."""
