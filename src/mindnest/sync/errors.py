"""
Sync error taxonomy.

Every failure a push can hit maps to one SyncErrorType, which is written to
the sync log and surfaced in the run result:

    network  no HTTP response at all (refused, DNS, timeout)
    auth     HTTP 401 / 403
    server   HTTP 5xx
    client   any other HTTP 4xx, plus local failures (missing record,
             unserializable payload, status update)
    unknown  everything else (undecodable 2xx body, rejected push, ...)
"""
from typing import Optional

import httpx

from mindnest.models.sync import SyncErrorType


def classify_status(status_code: int) -> SyncErrorType:
    """Map an HTTP status code to the error type it represents."""
    if status_code in (401, 403):
        return SyncErrorType.AUTH
    if 500 <= status_code <= 599:
        return SyncErrorType.SERVER
    if 400 <= status_code <= 499:
        return SyncErrorType.CLIENT
    return SyncErrorType.UNKNOWN


class SyncError(Exception):
    """Base class for classified sync failures."""

    error_type: SyncErrorType = SyncErrorType.UNKNOWN

    def __init__(self, message: str, error_type: Optional[SyncErrorType] = None):
        super().__init__(message)
        self.message = message
        if error_type is not None:
            self.error_type = error_type


class APIError(SyncError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str, error_code: str = ""):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(
            f"API error {status_code}: {error_code} - {message}"
            if error_code
            else f"API error ({status_code}): {message}",
            classify_status(status_code),
        )
        self.message = message


class NetworkError(SyncError):
    """No usable response: connection refused, DNS failure, timeout."""

    error_type = SyncErrorType.NETWORK


class ResponseDecodeError(SyncError):
    """A 2xx response whose body is not the expected JSON shape."""


class PushRejectedError(SyncError):
    """A 2xx response whose body reports ``success: false``."""


class LocalSyncError(SyncError):
    """Failure on this side of the wire, before or after the push."""

    error_type = SyncErrorType.CLIENT


class EntityNotFoundError(LocalSyncError):
    """The candidate id no longer resolves to a local record."""


class PayloadError(LocalSyncError):
    """The record could not be serialized into its wire payload."""


class StatusUpdateError(LocalSyncError):
    """The push succeeded but recording synced_at locally failed.

    The sync log says success (the server has the data); the run must still
    be reported as failed so an operator looks at the local store.
    """


class SyncLogWriteError(LocalSyncError):
    """The push succeeded but its success row could not be appended to the log."""


class SyncNotConfiguredError(RuntimeError):
    """Raised when sync is disabled or has no server URL / token."""


def classify_error(exc: BaseException) -> SyncErrorType:
    """Return the error type for any exception raised during a push."""
    if isinstance(exc, SyncError):
        return exc.error_type
    if isinstance(exc, httpx.TransportError):
        return SyncErrorType.NETWORK
    return SyncErrorType.UNKNOWN
