"""
Post-migration cleanup: restore direct chat flags and leave migrated rooms.

Runs only for rooms the executor reported as applied. For each room the
direct chat flag is restored on the destination first and the source
account leaves afterwards; when the flag cannot be restored the room is not
left. Failures are recorded per room and never undo the migration.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from matrix_migrator.core.config import TimeoutConfig
from matrix_migrator.exceptions import CleanupError
from matrix_migrator.services.session import Session
from matrix_migrator.types import (
    CleanupResult,
    LeaveRoom,
    MigrationOperation,
    MigrationPlan,
    MigrationReport,
    RestoreDirectFlag,
    RoomPlan,
    RoomStatus,
)
from matrix_migrator.utils.api import call_with_retry
from matrix_migrator.utils.logging import log_with_context


def cleanup_operations(room: RoomPlan) -> list[MigrationOperation]:
    """Operations cleanup would perform for a migrated room, in order."""
    operations: list[MigrationOperation] = []
    if room.is_direct:
        operations.append(RestoreDirectFlag(room.room_id, room.direct_with))
    operations.append(LeaveRoom(room.room_id))
    return operations


class CleanupCoordinator:
    """Leaves migrated rooms with the source account."""

    def __init__(
        self,
        source: Session,
        destination: Session,
        timeout_config: Optional[TimeoutConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.source = source
        self.destination = destination
        self.timeout_config = timeout_config or TimeoutConfig()
        self._sleep = sleep
        self._cancelled = asyncio.Event()

    def cancel(self) -> None:
        """Stop restoring flags and leaving rooms. Calls in flight finish."""
        if not self._cancelled.is_set():
            log_with_context(
                logging.WARNING, "Cancellation requested: no further rooms will be left"
            )
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def run(
        self, plan: MigrationPlan, report: MigrationReport
    ) -> dict[str, CleanupResult]:
        """Clean up every room ``report`` marks as applied.

        Results are also stored on ``report.cleanup``.
        """
        rooms = [
            room
            for room in plan.rooms
            if room.room_id in report
            and report.status(room.room_id) is RoomStatus.APPLIED
        ]
        if not rooms:
            log_with_context(logging.INFO, "No migrated rooms to clean up")
            return {}

        log_with_context(
            logging.INFO, f"Cleaning up {len(rooms)} migrated rooms on the source account"
        )
        semaphore = asyncio.Semaphore(self.timeout_config.max_workers)

        async def bounded(room: RoomPlan) -> CleanupResult:
            async with semaphore:
                return await self.cleanup_room(room)

        results = await asyncio.gather(*(bounded(room) for room in rooms))
        for result in results:
            report.cleanup[result.room_id] = result
        if self.cancelled:
            report.cancelled = True

        failed = [r.room_id for r in results if r.error]
        if failed:
            log_with_context(
                logging.WARNING,
                f"Cleanup failed for {len(failed)} rooms: {', '.join(failed)}",
            )
        return {result.room_id: result for result in results}

    async def cleanup_room(self, room: RoomPlan) -> CleanupResult:
        result = CleanupResult(room.room_id)

        for operation in cleanup_operations(room):
            if self.cancelled:
                result.cancelled = True
                return result
            try:
                await self._apply(operation)
            except Exception as e:
                if isinstance(operation, RestoreDirectFlag):
                    message = f"Could not restore direct chat flag, not leaving: {e}"
                else:
                    message = f"Could not leave room: {e}"
                error = CleanupError(room.room_id, message)
                log_with_context(logging.ERROR, str(error), room=room.room_id)
                result.error = str(error)
                return result

            if isinstance(operation, RestoreDirectFlag):
                result.direct_flag_restored = True
            else:
                result.left = True

        log_with_context(
            logging.INFO, f"Left room {room.label}", room=room.room_id
        )
        return result

    async def _apply(self, operation: MigrationOperation) -> None:
        room_id = operation.room_id
        if isinstance(operation, RestoreDirectFlag):
            await self._call(
                lambda: self.destination.set_direct_flag(
                    room_id, True, operation.direct_with
                ),
                f"restore direct chat flag for {room_id}",
                room_id,
            )
        elif isinstance(operation, LeaveRoom):
            await self._call(
                lambda: self.source.leave_room(room_id), f"leave {room_id}", room_id
            )
        else:
            raise CleanupError(room_id, f"unknown cleanup operation {operation!r}")

    async def _call(
        self, call: Callable[[], Awaitable[Any]], description: str, room_id: str
    ) -> None:
        await call_with_retry(
            call,
            description=description,
            max_retries=self.timeout_config.max_retries,
            retry_delay=self.timeout_config.retry_delay,
            call_timeout=self.timeout_config.call_timeout_seconds,
            room=room_id,
            sleep=self._sleep,
        )
