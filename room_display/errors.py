"""Exception types raised by the room display service.

``ConfigError`` is fatal at startup. ``AuthFailure`` and ``FetchFailure`` are
recoverable: the poller records them and tries again on its next scheduled
tick. ``MalformedRecord`` never leaves the fetch layer; offending provider
records are logged and dropped.
"""

from __future__ import annotations


class RoomDisplayError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(RoomDisplayError):
    """Missing or invalid configuration detected at startup."""


class AuthFailure(RoomDisplayError):
    """The identity provider rejected the credential exchange or was unreachable."""


class FetchFailure(RoomDisplayError):
    """The calendar query could not be completed.

    ``kind`` is one of ``auth``, ``timeout``, ``transport`` or ``provider``
    and is surfaced to clients so the UI can label the outage.
    """

    def __init__(self, message: str, *, kind: str = "provider") -> None:
        super().__init__(message)
        self.kind = kind


class MalformedRecord(RoomDisplayError):
    """A provider event is missing required fields or has an invalid range."""
