"""Exception types raised by the heartbeat client core."""

from typing import Optional


class HeartbeatError(Exception):
    """Base class for all heartbeat errors."""


class StorageCorruptError(HeartbeatError):
    """A persisted value could not be decoded."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Stored value for {key!r} is corrupt: {reason}")
        self.key = key


class SessionExpiredError(HeartbeatError):
    """The remote API rejected the session; the local session has been cleared."""


class RequestFailedError(HeartbeatError):
    """A user-facing request failed. The message is meant to be shown as-is."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
