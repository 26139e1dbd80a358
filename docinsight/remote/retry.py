"""Failure classification and bounded in-process retry for remote calls.

Invariants:
    - Connectivity loss is never retried inline; it surfaces immediately so the
      caller can defer the call into the offline queue.
    - Timeouts, 5xx and 429 are retried up to ``max_retries`` times with
      exponential delay, then re-raised as RemoteTransientFailure.
    - Terminal failures (4xx, malformed data, quota) are raised on first sight.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from docinsight.logging.logger import Log
from docinsight.remote.exceptions import (
    RemoteConnectivityLost,
    RemoteFailure,
    RemoteTerminalFailure,
    RemoteTransientFailure,
)

T = TypeVar("T")

_QUOTA_MARKERS = ("quota", "insufficient_quota", "billing")


def classify_http_error(exc: Exception, service: str) -> RemoteFailure:
    """Map an httpx exception onto the remote failure taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return RemoteTransientFailure(f"{service} timed out: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code, exc.response.text, service)
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError, httpx.ProxyError)):
        return RemoteConnectivityLost(f"{service} unreachable: {exc}")
    if isinstance(exc, httpx.TransportError):
        return RemoteTransientFailure(f"{service} transport error: {exc}")
    return RemoteTerminalFailure(f"{service} failed: {exc}")


def classify_status(status_code: int, body: str, service: str) -> RemoteFailure:
    """Classify an HTTP status; quota exhaustion is terminal even on 429."""
    lowered = (body or "").lower()
    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return RemoteTerminalFailure(f"{service} quota exhausted (HTTP {status_code})")
    if status_code == 429 or status_code >= 500:
        return RemoteTransientFailure(f"{service} returned HTTP {status_code}")
    return RemoteTerminalFailure(f"{service} rejected request (HTTP {status_code})")


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    service: str,
    max_retries: int,
    base_delay_seconds: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await *func*, retrying transient failures up to *max_retries* times."""
    attempt = 0
    while True:
        try:
            return await func()
        except RemoteConnectivityLost:
            raise
        except RemoteTransientFailure as exc:
            if attempt >= max_retries:
                raise
            delay = base_delay_seconds * (2**attempt)
            attempt += 1
            Log.warning(
                f"{service} transient failure, retrying in {delay:.1f}s: {exc}",
                attempt=attempt,
            )
            await sleep(delay)
