"""
Sync - Host-authoritative, version-guarded state synchronization.

The host applies intents through the rules engine and writes the result
to the record store with a compare-and-swap; everyone else submits
intents over the message channel and follows the record.

The Redis bindings live in sync.redis_backend and are imported on demand
so the in-memory stack works without the redis extra installed.
"""

from .errors import (
    SyncError, IllegalMove, StaleVersion, NotSeated, StoreUnavailable, ChannelFailure,
    VersionConflict, RecordNotFound, RecordExists, SeatUnavailable,
)
from .envelope import Intent, Acceptance, Rejection, RejectReason, parse_reply
from .record_store import Record, Seat, RecordStore, InMemoryRecordStore
from .channel import MessageChannel, InMemoryChannel
from .coordinator import (
    Coordinator, HostCoordinator, PeerCoordinator, Poller,
    SubmitOutcome, SubmitStatus, SyncState,
)

__all__ = [
    "SyncError",
    "IllegalMove",
    "StaleVersion",
    "NotSeated",
    "StoreUnavailable",
    "ChannelFailure",
    "VersionConflict",
    "RecordNotFound",
    "RecordExists",
    "SeatUnavailable",
    "Intent",
    "Acceptance",
    "Rejection",
    "RejectReason",
    "parse_reply",
    "Record",
    "Seat",
    "RecordStore",
    "InMemoryRecordStore",
    "MessageChannel",
    "InMemoryChannel",
    "Coordinator",
    "HostCoordinator",
    "PeerCoordinator",
    "Poller",
    "SubmitOutcome",
    "SubmitStatus",
    "SyncState",
]
