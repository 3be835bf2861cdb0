"""Shared type definitions for the Matrix account migration tool.

Snapshots, plans and operations are frozen dataclasses: they are produced
once and replaced, never mutated, so a plan is always derived from one
consistent pair of account states.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Union

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Membership(str, Enum):
    """Membership of the owning account in a room."""

    JOINED = "joined"
    INVITED = "invited"
    LEFT = "left"


class RoomStatus(str, Enum):
    """Per-room terminal status of a migration plan."""

    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


class FilterDecision(str, Enum):
    """Outcome of evaluating a room against the configured filter."""

    INCLUDED = "included"
    EXCLUDED = "excluded"


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


def _is_level(value: Any) -> bool:
    # JSON true/false decode to bool, which is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Accounts and room state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Account:
    """Identity bound to one session."""

    user_id: str
    homeserver: str

    @property
    def server_name(self) -> str:
        """The server part of the user identifier (``@alice:example.org``)."""
        return self.user_id.partition(":")[2]


@dataclass(frozen=True)
class PowerLevels:
    """Contents of a room's ``m.room.power_levels`` state event.

    ``users`` holds the explicit per-member entries. Members without an
    entry inherit ``users_default``.
    """

    users: Mapping[str, int] = field(default_factory=dict)
    users_default: int = 0
    events: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "users", _freeze(self.users))
        object.__setattr__(self, "events", _freeze(self.events))

    @classmethod
    def from_content(cls, content: Mapping[str, Any] | None) -> PowerLevels:
        """Build from the raw event content, ignoring malformed entries."""
        content = content or {}
        users = {
            str(member): int(level)
            for member, level in (content.get("users") or {}).items()
            if _is_level(level)
        }
        events = {
            str(event_type): int(level)
            for event_type, level in (content.get("events") or {}).items()
            if _is_level(level)
        }
        users_default = content.get("users_default", 0)
        return cls(
            users=users,
            users_default=users_default if _is_level(users_default) else 0,
            events=events,
        )

    def explicit(self, member: str) -> int | None:
        """Return the member's explicit level, or None if it is inherited."""
        return self.users.get(member)

    def level_for(self, member: str) -> int:
        """Return the member's effective level."""
        return self.users.get(member, self.users_default)


@dataclass(frozen=True)
class RoomSnapshot:
    """State of one room as seen by one account at sync time."""

    room_id: str
    membership: Membership
    name: str | None = None
    is_direct: bool = False
    direct_with: tuple[str, ...] = ()
    power_levels: PowerLevels | None = None

    @property
    def label(self) -> str:
        """Human-readable label: ``name (id)`` or just the id."""
        if self.name:
            return f"{self.name} ({self.room_id})"
        return self.room_id


@dataclass(frozen=True)
class AccountState:
    """All rooms visible to one account, as of one sync token."""

    account: Account
    sync_token: str
    rooms: Mapping[str, RoomSnapshot] = field(default_factory=dict)
    unavailable: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "rooms", _freeze(self.rooms))
        object.__setattr__(self, "unavailable", frozenset(self.unavailable))

    def get(self, room_id: str) -> RoomSnapshot | None:
        return self.rooms.get(room_id)

    def joined_room_ids(self) -> list[str]:
        return sorted(
            room_id
            for room_id, snapshot in self.rooms.items()
            if snapshot.membership is Membership.JOINED
        )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JoinRoom:
    """Make the destination account a member of the room.

    When ``invite_first`` is set the source account invites the destination
    before it joins.
    """

    room_id: str
    invite_first: bool = False

    def describe(self) -> str:
        if self.invite_first:
            return "invite destination account and join"
        return "join"


@dataclass(frozen=True)
class SetPowerLevel:
    """Set one member's power level in the room."""

    room_id: str
    member: str
    level: int

    def describe(self) -> str:
        return f"set power level of {self.member} to {self.level}"


@dataclass(frozen=True)
class LeaveRoom:
    """Leave the room with the source account."""

    room_id: str

    def describe(self) -> str:
        return "leave with source account"


@dataclass(frozen=True)
class RestoreDirectFlag:
    """Mark the room as a direct chat for the destination account."""

    room_id: str
    direct_with: tuple[str, ...] = ()

    def describe(self) -> str:
        if self.direct_with:
            return f"restore direct chat flag (with {', '.join(self.direct_with)})"
        return "restore direct chat flag"


MigrationOperation = Union[JoinRoom, SetPowerLevel, LeaveRoom, RestoreDirectFlag]


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoomPlan:
    """Operations planned for a single room, in the order they must run."""

    room_id: str
    operations: tuple[MigrationOperation, ...] = ()
    status: RoomStatus = RoomStatus.PENDING
    detail: str | None = None
    name: str | None = None
    is_direct: bool = False
    direct_with: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        if self.name:
            return f"{self.name} ({self.room_id})"
        return self.room_id


@dataclass(frozen=True)
class MigrationPlan:
    """Ordered per-room plan derived from exactly one pair of account states."""

    source: Account
    destination: Account
    rooms: tuple[RoomPlan, ...] = ()
    source_token: str = ""
    destination_token: str = ""

    @property
    def operations(self) -> list[MigrationOperation]:
        return [op for room in self.rooms for op in room.operations]

    @property
    def operation_count(self) -> int:
        return sum(len(room.operations) for room in self.rooms)

    def room(self, room_id: str) -> RoomPlan | None:
        for room in self.rooms:
            if room.room_id == room_id:
                return room
        return None

    def pending_rooms(self) -> list[RoomPlan]:
        return [room for room in self.rooms if room.status is RoomStatus.PENDING]


@dataclass(frozen=True)
class RenderedPlan:
    """Text rendering of a plan, or of the failure to compute one.

    ``computed`` distinguishes an empty plan from a plan that never existed.
    """

    text: str
    computed: bool
    operation_count: int = 0
    room_count: int = 0
    error: str | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class RoomOutcome:
    """Final status of one room after execution."""

    room_id: str
    status: RoomStatus
    error: str | None = None
    operations_applied: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "operations_applied": self.operations_applied,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class CleanupResult:
    """Outcome of post-migration cleanup for one room."""

    room_id: str
    direct_flag_restored: bool = False
    left: bool = False
    error: str | None = None
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.left and self.error is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "direct_flag_restored": self.direct_flag_restored,
            "left": self.left,
        }
        if self.error:
            data["error"] = self.error
        if self.cancelled:
            data["cancelled"] = True
        return data


@dataclass
class MigrationReport:
    """Per-room outcome of a migration run, plus cleanup results."""

    outcomes: dict[str, RoomOutcome] = field(default_factory=dict)
    cleanup: dict[str, CleanupResult] = field(default_factory=dict)
    cancelled: bool = False

    def __getitem__(self, room_id: str) -> RoomOutcome:
        return self.outcomes[room_id]

    def __contains__(self, room_id: object) -> bool:
        return room_id in self.outcomes

    def __len__(self) -> int:
        return len(self.outcomes)

    def status(self, room_id: str) -> RoomStatus:
        return self.outcomes[room_id].status

    def rooms_with_status(self, status: RoomStatus) -> list[str]:
        return sorted(
            room_id
            for room_id, outcome in self.outcomes.items()
            if outcome.status is status
        )

    @property
    def applied_rooms(self) -> list[str]:
        return self.rooms_with_status(RoomStatus.APPLIED)

    @property
    def failed_rooms(self) -> list[str]:
        return self.rooms_with_status(RoomStatus.FAILED)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_rooms) or any(
            result.error for result in self.cleanup.values()
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "cancelled": self.cancelled,
            "rooms": {
                room_id: self.outcomes[room_id].to_dict()
                for room_id in sorted(self.outcomes)
            },
            "cleanup": {
                room_id: self.cleanup[room_id].to_dict()
                for room_id in sorted(self.cleanup)
            },
        }
