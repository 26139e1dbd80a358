from docinsight.errors import CaptureError


class RemoteFailure(CaptureError):
    """Base class for failures of network-bound stages."""


class RemoteTransientFailure(RemoteFailure):
    """Timeout, 5xx or rate limiting: worth retrying later."""


class RemoteConnectivityLost(RemoteTransientFailure):
    """The service could not be reached at all; the call becomes an offline job."""


class RemoteTerminalFailure(RemoteFailure):
    """4xx, malformed input/response or exhausted quota: never retried."""
