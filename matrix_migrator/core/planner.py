"""
Migration planning: diff a source and destination account state.

The plan is a pure function of one pair of :class:`AccountState` values and
the room filter. For each room the operations are emitted in a fixed order
(join first, then power levels sorted by member) and rooms are sorted by
identifier, so rendering the same inputs always yields the same text.

Power levels are only ever raised: a source entry becomes a
``SetPowerLevel`` when it is higher than the member's effective level on the
destination. Levels the source only inherits from ``users_default`` are not
copied. The source account's own entry is granted to the destination
account.
"""

from __future__ import annotations

import logging
from typing import Optional

from matrix_migrator.core.room_filter import RoomFilter
from matrix_migrator.types import (
    AccountState,
    JoinRoom,
    Membership,
    MigrationOperation,
    MigrationPlan,
    PowerLevels,
    RoomPlan,
    RoomSnapshot,
    RoomStatus,
    SetPowerLevel,
)
from matrix_migrator.utils.logging import log_with_context

UNAVAILABLE_DETAIL = "unavailable"
NOT_JOINED_DETAIL = "source account is not joined"


class MigrationPlanner:
    """Builds a :class:`MigrationPlan` from a source/destination state pair."""

    def __init__(self, room_filter: Optional[RoomFilter] = None) -> None:
        self.room_filter = room_filter or RoomFilter.allow_all()

    def plan(self, source: AccountState, destination: AccountState) -> MigrationPlan:
        room_ids = sorted(set(source.rooms) | set(source.unavailable))
        rooms: list[RoomPlan] = []

        for room_id in room_ids:
            snapshot = source.get(room_id)
            name = snapshot.name if snapshot else None
            if not self.room_filter.includes(room_id, name):
                continue
            rooms.append(self._plan_room(room_id, snapshot, source, destination))

        plan = MigrationPlan(
            source=source.account,
            destination=destination.account,
            rooms=tuple(rooms),
            source_token=source.sync_token,
            destination_token=destination.sync_token,
        )
        log_with_context(
            logging.INFO,
            f"Planned {plan.operation_count} operations across {len(plan.rooms)} rooms",
        )
        return plan

    def _plan_room(
        self,
        room_id: str,
        snapshot: Optional[RoomSnapshot],
        source: AccountState,
        destination: AccountState,
    ) -> RoomPlan:
        if snapshot is None or room_id in destination.unavailable:
            side = "source" if snapshot is None else "destination"
            log_with_context(
                logging.WARNING,
                f"Skipping {room_id}: state unavailable on {side}",
                room=room_id,
            )
            return RoomPlan(
                room_id=room_id,
                status=RoomStatus.SKIPPED,
                detail=f"{UNAVAILABLE_DETAIL} ({side})",
                name=snapshot.name if snapshot else None,
            )

        if snapshot.membership is not Membership.JOINED:
            return RoomPlan(
                room_id=room_id,
                status=RoomStatus.SKIPPED,
                detail=NOT_JOINED_DETAIL,
                name=snapshot.name,
                is_direct=snapshot.is_direct,
                direct_with=snapshot.direct_with,
            )

        dest_snapshot = destination.get(room_id)
        operations: list[MigrationOperation] = []

        if dest_snapshot is None or dest_snapshot.membership is not Membership.JOINED:
            already_invited = (
                dest_snapshot is not None
                and dest_snapshot.membership is Membership.INVITED
            )
            operations.append(JoinRoom(room_id, invite_first=not already_invited))

        dest_levels = None
        if dest_snapshot is not None and dest_snapshot.membership is Membership.JOINED:
            dest_levels = dest_snapshot.power_levels
        if dest_levels is None:
            # Not visible from the destination yet: assume the source's view
            # of the room's defaults with no explicit entries.
            src_default = snapshot.power_levels.users_default if snapshot.power_levels else 0
            dest_levels = PowerLevels(users_default=src_default)

        operations.extend(
            self._power_level_operations(
                room_id,
                snapshot.power_levels,
                dest_levels,
                source_user=source.account.user_id,
                destination_user=destination.account.user_id,
            )
        )

        return RoomPlan(
            room_id=room_id,
            operations=tuple(operations),
            name=snapshot.name,
            is_direct=snapshot.is_direct,
            direct_with=snapshot.direct_with,
        )

    def _power_level_operations(
        self,
        room_id: str,
        source_levels: Optional[PowerLevels],
        dest_levels: PowerLevels,
        source_user: str,
        destination_user: str,
    ) -> list[SetPowerLevel]:
        if source_levels is None:
            return []

        desired: dict[str, int] = dict(source_levels.users)

        own_level = source_levels.explicit(source_user)
        if own_level is not None:
            desired[destination_user] = max(
                own_level, desired.get(destination_user, own_level)
            )

        operations = []
        for member in sorted(desired):
            level = desired[member]
            if level <= dest_levels.level_for(member):
                continue
            operations.append(SetPowerLevel(room_id, member, level))
        return operations
