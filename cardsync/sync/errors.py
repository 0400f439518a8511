"""
Sync Errors - Failures raised by the synchronization layer.

Rules violations are not exceptions inside the engine (the reducer
returns ActionResult failures); these classes exist for the boundaries
where raising is the natural contract: record stores, channels and the
blocking submit helpers.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for synchronization failures."""


class IllegalMove(SyncError):
    """The rules engine refused the intent. Never retried automatically."""


class StaleVersion(SyncError):
    """The intent was formed against an outdated version."""

    def __init__(self, expected_version: int, message: str | None = None):
        self.expected_version = expected_version
        super().__init__(message or f"Stale intent; authoritative version is {expected_version}")


class NotSeated(SyncError):
    """The actor identity has no seat in this session."""


class StoreUnavailable(SyncError):
    """A record store read or write failed. Treated as transient."""


class ChannelFailure(SyncError):
    """A message could not be delivered."""


class VersionConflict(SyncError):
    """A compare-and-set found a different stored version."""

    def __init__(self, record_id: str, expected_version: int, current_version: int):
        self.record_id = record_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Record {record_id} is at version {current_version}, expected {expected_version}"
        )


class RecordNotFound(SyncError):
    """No record with the given id or code."""


class RecordExists(SyncError):
    """A record with the same id or code already exists."""


class SeatUnavailable(SyncError):
    """The room cannot take another seat (full or already started)."""
