"""
Full-state snapshots of an account's rooms.

The snapshotter performs one full-state sync to obtain a baseline token,
then retries only the rooms the server reported incomplete. Rooms that are
still unresolved when the retries or the time ceiling run out are reported
as unavailable rather than dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from matrix_migrator.core.config import TimeoutConfig
from matrix_migrator.exceptions import (
    PermanentProtocolError,
    SyncTimeout,
    TransientProtocolError,
)
from matrix_migrator.services.session import SyncFeed, SyncResult
from matrix_migrator.types import Account, AccountState, RoomSnapshot
from matrix_migrator.utils.api import backoff_delay
from matrix_migrator.utils.logging import log_with_context


class StateSnapshotter:
    """Materializes an :class:`AccountState` from a sync feed."""

    def __init__(
        self,
        feed: SyncFeed,
        account: Account,
        timeout_config: Optional[TimeoutConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.feed = feed
        self.account = account
        self.timeout_config = timeout_config or TimeoutConfig()
        self._sleep = sleep

    async def snapshot(self) -> AccountState:
        """Run a full-state sync and return the resulting account state.

        Raises:
            SyncTimeout: if no initial sync token could be obtained within
                ``timeout_seconds``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_config.timeout_seconds

        result = await self._initial_sync(deadline)
        token = result.next_token

        resolved: dict[str, RoomSnapshot] = {}
        incomplete: set[str] = set()
        for delta in result.rooms:
            if delta.complete:
                resolved[delta.room_id] = delta.to_snapshot()
                incomplete.discard(delta.room_id)
            elif delta.room_id not in resolved:
                incomplete.add(delta.room_id)

        log_with_context(
            logging.INFO,
            f"Synced {self.account.user_id}: {len(resolved)} rooms resolved,"
            f" {len(incomplete)} incomplete",
        )

        for attempt in range(self.timeout_config.sync_retries):
            if not incomplete:
                break

            wait = backoff_delay(attempt, self.timeout_config.retry_delay)
            if loop.time() + wait >= deadline:
                log_with_context(
                    logging.WARNING,
                    f"Sync time ceiling reached for {self.account.user_id}"
                    f" with {len(incomplete)} rooms unresolved",
                )
                break
            await self._sleep(wait)

            try:
                retry = await asyncio.wait_for(
                    self.feed.sync(token), timeout=max(deadline - loop.time(), 0)
                )
            except (TransientProtocolError, asyncio.TimeoutError) as e:
                log_with_context(
                    logging.WARNING,
                    f"Retry sync {attempt + 1} for {self.account.user_id} failed: {str(e) or 'timed out'}",
                )
                continue
            except PermanentProtocolError as e:
                log_with_context(
                    logging.WARNING,
                    f"Retry sync for {self.account.user_id} failed permanently: {e}",
                )
                break

            token = retry.next_token
            for delta in retry.rooms:
                if delta.room_id in incomplete and delta.complete:
                    resolved[delta.room_id] = delta.to_snapshot()
                    incomplete.discard(delta.room_id)

        for room_id in sorted(incomplete):
            log_with_context(
                logging.WARNING,
                f"Room {room_id} could not be fully resolved for"
                f" {self.account.user_id}; it will be excluded from the plan",
                room=room_id,
            )

        return AccountState(
            account=self.account,
            sync_token=token,
            rooms=resolved,
            unavailable=frozenset(incomplete),
        )

    async def _initial_sync(self, deadline: float) -> SyncResult:
        loop = asyncio.get_running_loop()
        attempt = 0
        last_error: Optional[BaseException] = None

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                return await asyncio.wait_for(self.feed.sync(None), timeout=remaining)
            except asyncio.TimeoutError as e:
                last_error = e
                break
            except TransientProtocolError as e:
                last_error = e
                log_with_context(
                    logging.WARNING,
                    f"Initial sync for {self.account.user_id} failed: {e}",
                )
            except PermanentProtocolError as e:
                raise SyncTimeout(
                    f"Initial sync for {self.account.user_id} failed: {e}"
                ) from e

            wait = backoff_delay(
                attempt,
                self.timeout_config.retry_delay,
                getattr(last_error, "retry_after", None),
            )
            if loop.time() + wait >= deadline:
                break
            await self._sleep(wait)
            attempt += 1

        raise SyncTimeout(
            f"Could not obtain an initial sync token for {self.account.user_id}"
            f" within {self.timeout_config.timeout_seconds}s"
            + (f": {last_error}" if last_error and str(last_error) else "")
        )
