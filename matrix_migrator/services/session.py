"""Capabilities the migration engine consumes.

A ``SyncFeed`` yields room-state snapshots; a ``Session`` adds the mutating
calls. Both are satisfied by :class:`~matrix_migrator.services.matrix_client.MatrixSession`
and by the in-memory doubles used in tests. Every call may raise
:class:`~matrix_migrator.exceptions.TransientProtocolError` or
:class:`~matrix_migrator.exceptions.PermanentProtocolError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

from matrix_migrator.types import Account, Membership, PowerLevels, RoomSnapshot


@dataclass(frozen=True)
class RoomDelta:
    """One room as reported by a sync response.

    ``complete`` is False when the server did not deliver enough state to
    describe the room (the snapshotter retries those).
    """

    room_id: str
    membership: Membership
    name: str | None = None
    is_direct: bool = False
    direct_with: tuple[str, ...] = ()
    power_levels: PowerLevels | None = None
    complete: bool = True

    def to_snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            room_id=self.room_id,
            membership=self.membership,
            name=self.name,
            is_direct=self.is_direct,
            direct_with=self.direct_with,
            power_levels=self.power_levels,
        )


@dataclass(frozen=True)
class SyncResult:
    """Response of one full-state sync call."""

    next_token: str
    rooms: tuple[RoomDelta, ...] = ()


@runtime_checkable
class SyncFeed(Protocol):
    """Source of full-state room snapshots."""

    async def sync(self, since_token: str | None) -> SyncResult: ...


@runtime_checkable
class Session(SyncFeed, Protocol):
    """An authenticated account on a homeserver."""

    @property
    def account(self) -> Account: ...

    async def join_room(self, room_id: str) -> None: ...

    async def invite_user(self, room_id: str, user_id: str) -> None: ...

    async def set_power_level(self, room_id: str, member: str, level: int) -> None: ...

    async def leave_room(self, room_id: str) -> None: ...

    async def set_direct_flag(
        self, room_id: str, is_direct: bool, direct_with: Sequence[str] = ()
    ) -> None: ...
