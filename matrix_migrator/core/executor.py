"""
Plan execution against the destination account.

Rooms are processed concurrently, bounded by a semaphore; the operations of
one room run strictly in plan order. A permanent failure stops only its own
room, transient failures are retried with backoff. Each room task returns
its outcome exactly once and only :meth:`MigrationExecutor.execute` writes
to the aggregated report.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from tqdm import tqdm

from matrix_migrator.core.config import TimeoutConfig
from matrix_migrator.exceptions import (
    DestinationUnreachable,
    PermanentProtocolError,
    RoomFailed,
    TransientProtocolError,
)
from matrix_migrator.services.session import Session
from matrix_migrator.types import (
    JoinRoom,
    MigrationOperation,
    MigrationPlan,
    MigrationReport,
    RoomOutcome,
    RoomPlan,
    RoomStatus,
    SetPowerLevel,
)
from matrix_migrator.utils.api import call_with_retry
from matrix_migrator.utils.logging import log_with_context

CANCELLED_DETAIL = "cancelled before completion"


class _Unreachable(RoomFailed):
    """Room failure caused by the destination not answering at all."""


class MigrationExecutor:
    """Applies a :class:`MigrationPlan` and reports a status per room."""

    def __init__(
        self,
        destination: Session,
        source: Optional[Session] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        show_progress: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.destination = destination
        self.source = source
        self.timeout_config = timeout_config or TimeoutConfig()
        self.show_progress = show_progress
        self._sleep = sleep
        self._cancelled = asyncio.Event()
        self.report: Optional[MigrationReport] = None

    def cancel(self) -> None:
        """Stop starting new operations. Calls already in flight finish."""
        if not self._cancelled.is_set():
            log_with_context(
                logging.WARNING,
                "Cancellation requested: finishing in-flight calls, starting no new operations",
            )
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def execute(self, plan: MigrationPlan) -> MigrationReport:
        """Apply every pending room of ``plan``.

        Raises:
            DestinationUnreachable: if no call to the destination got any
                answer at all
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_config.timeout_seconds
        semaphore = asyncio.Semaphore(self.timeout_config.max_workers)

        report = MigrationReport()
        self.report = report

        for room in plan.rooms:
            if room.status is not RoomStatus.PENDING:
                report.outcomes[room.room_id] = RoomOutcome(
                    room.room_id, room.status, error=room.detail
                )

        pending = plan.pending_rooms()
        tasks = [
            asyncio.ensure_future(self._run_room(room, semaphore, deadline))
            for room in pending
        ]
        unreachable: set[str] = set()

        pbar = tqdm(
            total=len(tasks),
            desc="Migrating rooms",
            unit="room",
            disable=not self.show_progress,
        )
        try:
            for next_done in asyncio.as_completed(tasks):
                outcome, was_unreachable = await next_done
                report.outcomes[outcome.room_id] = outcome
                if was_unreachable:
                    unreachable.add(outcome.room_id)
                pbar.update(1)
        except asyncio.CancelledError:
            self.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, tuple):
                    report.outcomes[result[0].room_id] = result[0]
            report.cancelled = True
            raise
        finally:
            pbar.close()

        report.cancelled = self.cancelled

        attempted = [room for room in pending if room.operations]
        if attempted and len(unreachable) == len(attempted):
            raise DestinationUnreachable(
                f"Destination {plan.destination.homeserver} did not answer any request"
            )

        log_with_context(
            logging.INFO,
            f"Execution finished: {len(report.applied_rooms)} applied,"
            f" {len(report.failed_rooms)} failed,"
            f" {len(report.rooms_with_status(RoomStatus.SKIPPED))} skipped,"
            f" {len(report.rooms_with_status(RoomStatus.PENDING))} pending",
        )
        return report

    async def _run_room(
        self, room: RoomPlan, semaphore: asyncio.Semaphore, deadline: float
    ) -> tuple[RoomOutcome, bool]:
        applied = 0
        async with semaphore:
            for operation in room.operations:
                if self.cancelled:
                    return (
                        RoomOutcome(
                            room.room_id,
                            RoomStatus.PENDING,
                            error=CANCELLED_DETAIL,
                            operations_applied=applied,
                        ),
                        False,
                    )
                try:
                    await self._apply(operation, deadline)
                except RoomFailed as e:
                    log_with_context(
                        logging.ERROR,
                        f"Room {room.label} failed: {e}",
                        room=room.room_id,
                    )
                    return (
                        RoomOutcome(
                            room.room_id,
                            RoomStatus.FAILED,
                            error=str(e),
                            operations_applied=applied,
                        ),
                        isinstance(e, _Unreachable),
                    )
                except Exception as e:
                    log_with_context(
                        logging.ERROR,
                        f"Room {room.label} failed unexpectedly: {e}",
                        room=room.room_id,
                        exc_info=True,
                    )
                    return (
                        RoomOutcome(
                            room.room_id,
                            RoomStatus.FAILED,
                            error=f"{operation.describe()}: {e}",
                            operations_applied=applied,
                        ),
                        False,
                    )
                applied += 1

        log_with_context(
            logging.INFO,
            f"Room {room.label} migrated ({applied} operations)",
            room=room.room_id,
        )
        return RoomOutcome(room.room_id, RoomStatus.APPLIED, operations_applied=applied), False

    async def _call(
        self,
        call: Callable[[], Awaitable[Any]],
        description: str,
        room_id: str,
        deadline: float,
    ) -> None:
        await call_with_retry(
            call,
            description=description,
            max_retries=self.timeout_config.max_retries,
            retry_delay=self.timeout_config.retry_delay,
            call_timeout=self.timeout_config.call_timeout_seconds,
            deadline=deadline,
            room=room_id,
            sleep=self._sleep,
        )

    async def _apply(self, operation: MigrationOperation, deadline: float) -> None:
        """Apply one operation, converting protocol failures to RoomFailed."""
        room_id = operation.room_id
        description = f"{operation.describe()} in {room_id}"
        log_with_context(logging.DEBUG, f"Applying: {description}", room=room_id)

        try:
            if isinstance(operation, JoinRoom):
                if operation.invite_first and self.source is not None:
                    await self._invite(room_id, deadline)
                await self._call(
                    lambda: self.destination.join_room(room_id),
                    f"join {room_id}",
                    room_id,
                    deadline,
                )
            elif isinstance(operation, SetPowerLevel):
                grantor = self.source or self.destination
                await self._call(
                    lambda: grantor.set_power_level(
                        room_id, operation.member, operation.level
                    ),
                    description,
                    room_id,
                    deadline,
                )
            else:
                raise RoomFailed(room_id, f"unknown operation {operation!r}")
        except PermanentProtocolError as e:
            raise RoomFailed(room_id, f"{description}: {e}") from e
        except TransientProtocolError as e:
            error_cls = _Unreachable if e.status is None else RoomFailed
            raise error_cls(
                room_id, f"{description}: retries exhausted: {e}"
            ) from e

    async def _invite(self, room_id: str, deadline: float) -> None:
        destination_user = self.destination.account.user_id
        try:
            await self._call(
                lambda: self.source.invite_user(room_id, destination_user),
                f"invite {destination_user} to {room_id}",
                room_id,
                deadline,
            )
        except PermanentProtocolError as e:
            # An existing invite or membership makes the invite fail; the
            # join decides whether the room is reachable.
            log_with_context(
                logging.WARNING,
                f"Inviting {destination_user} to {room_id} failed: {e}; trying to join anyway",
                room=room_id,
            )
