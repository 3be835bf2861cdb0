"""Custom exception hierarchy for the Matrix account migration tool."""

from __future__ import annotations


class MigratorError(Exception):
    """Base exception for all migration-related errors."""


class ConfigError(MigratorError):
    """Raised when configuration is invalid or missing."""


class LoginError(MigratorError):
    """Raised when an account cannot be logged in or its homeserver resolved."""


class SyncTimeout(MigratorError):
    """Raised when the initial sync token could not be obtained in time.

    Fatal for the whole run: without a baseline there is nothing to plan.
    """


class DestinationUnreachable(MigratorError):
    """Raised when the destination session cannot be reached at all."""


class RoomUnavailable(MigratorError):
    """Raised when a room's state could not be resolved during sync."""

    def __init__(self, room_id: str, message: str = "") -> None:
        super().__init__(message or f"Room {room_id} is unavailable")
        self.room_id = room_id


class ProtocolError(MigratorError):
    """Base class for failures reported by a session call."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        errcode: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.errcode = errcode


class TransientProtocolError(ProtocolError):
    """A failure worth retrying: rate limits, timeouts, server errors."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        errcode: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status, errcode=errcode)
        self.retry_after = retry_after


class PermanentProtocolError(ProtocolError):
    """A failure that will not go away by retrying (forbidden, unknown room)."""


class RoomFailed(MigratorError):
    """Raised when a room's operations could not be completed."""

    def __init__(self, room_id: str, message: str) -> None:
        super().__init__(message)
        self.room_id = room_id


class CleanupError(MigratorError):
    """Raised when post-migration cleanup fails for a room. Never fatal."""

    def __init__(self, room_id: str, message: str) -> None:
        super().__init__(message)
        self.room_id = room_id
