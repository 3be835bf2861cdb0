"""Unit test configuration and shared fixtures."""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

import pytest

from matrix_migrator.exceptions import TransientProtocolError
from matrix_migrator.services.session import RoomDelta, SyncResult
from matrix_migrator.types import (
    Account,
    AccountState,
    Membership,
    PowerLevels,
    RoomSnapshot,
)

from ..conftest import DESTINATION_USER, SOURCE_USER

HOMESERVER = "https://matrix.example.org"
ALICE = "@alice:example.org"

# Calls that change server state; everything else is read-only.
MUTATING_METHODS = frozenset(
    {"join_room", "invite_user", "set_power_level", "leave_room", "set_direct_flag"}
)


# ---------------------------------------------------------------------------
# In-memory session double
# ---------------------------------------------------------------------------


class FakeSession:
    """Records every call and keeps enough state to check idempotence.

    ``sync_results`` is consumed in order; the last entry repeats. Entries
    may be exceptions, which are raised instead of returned.

    Failures are injected per ``(method, room_id)`` with :meth:`fail`.
    """

    def __init__(
        self,
        user_id: str,
        sync_results: Optional[Sequence[Any]] = None,
        homeserver: str = HOMESERVER,
    ) -> None:
        self._account = Account(user_id=user_id, homeserver=homeserver)
        self.sync_results = list(sync_results or [SyncResult("s0")])
        self.calls: list[tuple] = []
        self.joined: set[str] = set()
        self.invited: set[tuple[str, str]] = set()
        self.left: set[str] = set()
        self.levels: dict[str, dict[str, int]] = {}
        self.direct: dict[str, list[str]] = {}
        self._failures: dict[tuple[str, str], list[BaseException]] = {}
        self._always: dict[tuple[str, str], BaseException] = {}

    @property
    def account(self) -> Account:
        return self._account

    # -- test helpers -------------------------------------------------------

    def fail(
        self, method: str, room_id: str, *errors: BaseException, always: bool = False
    ) -> None:
        """Raise ``errors`` (in order) from ``method`` for ``room_id``."""
        if always:
            self._always[(method, room_id)] = errors[0]
        else:
            self._failures.setdefault((method, room_id), []).extend(errors)

    @property
    def mutating_calls(self) -> list[tuple]:
        return [call for call in self.calls if call[0] in MUTATING_METHODS]

    def calls_for(self, method: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == method]

    async def _enter(self, method: str, room_id: str, *args: Any) -> None:
        self.calls.append((method, room_id, *args))
        key = (method, room_id)
        if key in self._always:
            raise self._always[key]
        queued = self._failures.get(key)
        if queued:
            raise queued.pop(0)

    # -- Session capability --------------------------------------------------

    async def sync(self, since_token: Optional[str]) -> SyncResult:
        self.calls.append(("sync", since_token))
        item = self.sync_results.pop(0) if len(self.sync_results) > 1 else self.sync_results[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def join_room(self, room_id: str) -> None:
        await self._enter("join_room", room_id)
        self.joined.add(room_id)

    async def invite_user(self, room_id: str, user_id: str) -> None:
        await self._enter("invite_user", room_id, user_id)
        self.invited.add((room_id, user_id))

    async def set_power_level(self, room_id: str, member: str, level: int) -> None:
        await self._enter("set_power_level", room_id, member, level)
        self.levels.setdefault(room_id, {})[member] = level

    async def leave_room(self, room_id: str) -> None:
        await self._enter("leave_room", room_id)
        self.left.add(room_id)

    async def set_direct_flag(
        self, room_id: str, is_direct: bool, direct_with: Sequence[str] = ()
    ) -> None:
        await self._enter("set_direct_flag", room_id, is_direct, tuple(direct_with))
        for user in direct_with:
            self.direct.setdefault(user, []).append(room_id)

    async def logout(self) -> None:
        self.calls.append(("logout",))


def unreachable() -> TransientProtocolError:
    """Transient error without an HTTP status: nothing answered."""
    return TransientProtocolError("connection refused")


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def levels(users: Optional[dict[str, int]] = None, users_default: int = 0) -> PowerLevels:
    return PowerLevels(users=users or {}, users_default=users_default)


def joined(
    room_id: str,
    users: Optional[dict[str, int]] = None,
    users_default: int = 0,
    name: Optional[str] = None,
    is_direct: bool = False,
    direct_with: tuple[str, ...] = (),
) -> RoomSnapshot:
    """A joined room whose power levels are known."""
    return RoomSnapshot(
        room_id=room_id,
        membership=Membership.JOINED,
        name=name,
        is_direct=is_direct,
        direct_with=direct_with,
        power_levels=levels(users, users_default),
    )


def invited(room_id: str, name: Optional[str] = None) -> RoomSnapshot:
    return RoomSnapshot(room_id=room_id, membership=Membership.INVITED, name=name)


def make_state(
    user_id: str,
    rooms: Iterable[RoomSnapshot] = (),
    unavailable: Iterable[str] = (),
    token: str = "s1",
) -> AccountState:
    return AccountState(
        account=Account(user_id=user_id, homeserver=HOMESERVER),
        sync_token=token,
        rooms={room.room_id: room for room in rooms},
        unavailable=frozenset(unavailable),
    )


def delta(
    room_id: str,
    users: Optional[dict[str, int]] = None,
    complete: bool = True,
    membership: Membership = Membership.JOINED,
    name: Optional[str] = None,
) -> RoomDelta:
    """A sync delta; incomplete deltas carry no power levels."""
    return RoomDelta(
        room_id=room_id,
        membership=membership,
        name=name,
        power_levels=levels(users) if complete and membership is Membership.JOINED else None,
        complete=complete,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def source_session():
    return FakeSession(SOURCE_USER)


@pytest.fixture()
def destination_session():
    return FakeSession(DESTINATION_USER)


def ab_sessions() -> tuple[FakeSession, FakeSession]:
    """Source in a direct chat A and a group room B; destination only in B.

    Both accounts already hold level 100 in B, so only A needs work.
    """
    source = FakeSession(
        SOURCE_USER,
        [
            SyncResult(
                "s1",
                (
                    RoomDelta(
                        "!a:example.org",
                        Membership.JOINED,
                        name="Direct with Alice",
                        is_direct=True,
                        direct_with=(ALICE,),
                        power_levels=levels({SOURCE_USER: 100}),
                    ),
                    delta("!b:example.org", {SOURCE_USER: 100}),
                ),
            )
        ],
    )
    destination = FakeSession(
        DESTINATION_USER,
        [
            SyncResult(
                "d1",
                (delta("!b:example.org", {SOURCE_USER: 100, DESTINATION_USER: 100}),),
            )
        ],
    )
    return source, destination
