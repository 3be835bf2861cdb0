"""
Main migrator class for the Matrix account migration tool.

``run_dry_run`` and ``run_migration`` are the entry points used by the CLI;
both snapshot the two accounts concurrently and plan from that single pair
of states.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from matrix_migrator.constants import DRY_RUN_PREFIX
from matrix_migrator.core.cleanup import CleanupCoordinator
from matrix_migrator.core.config import RoomFilterConfig, TimeoutConfig
from matrix_migrator.core.dry_run import DryRunReporter
from matrix_migrator.core.executor import MigrationExecutor
from matrix_migrator.core.planner import MigrationPlanner
from matrix_migrator.core.room_filter import RoomFilter
from matrix_migrator.core.snapshot import StateSnapshotter
from matrix_migrator.exceptions import SyncTimeout
from matrix_migrator.services.session import Session
from matrix_migrator.types import AccountState, MigrationPlan, MigrationReport, RenderedPlan
from matrix_migrator.utils.logging import log_with_context


class MatrixMigrator:
    """Migrates room memberships and power levels between two accounts."""

    def __init__(
        self,
        source: Session,
        destination: Session,
        filter_config: Optional[RoomFilterConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        cleanup_enabled: bool = False,
        show_progress: bool = False,
    ) -> None:
        self.source = source
        self.destination = destination
        self.filter_config = filter_config or RoomFilterConfig()
        self.timeout_config = timeout_config or TimeoutConfig()
        self.cleanup_enabled = cleanup_enabled
        self.show_progress = show_progress
        self.plan: Optional[MigrationPlan] = None
        self.executor: Optional[MigrationExecutor] = None
        self.coordinator: Optional[CleanupCoordinator] = None
        self._cancel_requested = False

    def cancel(self) -> None:
        """Request cancellation of a running migration."""
        self._cancel_requested = True
        if self.executor is not None:
            self.executor.cancel()
        if self.coordinator is not None:
            self.coordinator.cancel()

    async def snapshot_accounts(self) -> tuple[AccountState, AccountState]:
        """Take full-state snapshots of both accounts concurrently."""
        log_with_context(logging.INFO, "Syncing source and destination accounts...")
        source_state, destination_state = await asyncio.gather(
            StateSnapshotter(
                self.source, self.source.account, self.timeout_config
            ).snapshot(),
            StateSnapshotter(
                self.destination, self.destination.account, self.timeout_config
            ).snapshot(),
        )
        log_with_context(logging.INFO, "--- Synced")
        return source_state, destination_state

    async def prepare_plan(self) -> MigrationPlan:
        """Snapshot both accounts and plan from that one pair of states."""
        source_state, destination_state = await self.snapshot_accounts()
        planner = MigrationPlanner(RoomFilter(self.filter_config))
        self.plan = planner.plan(source_state, destination_state)
        return self.plan

    async def dry_run(self) -> RenderedPlan:
        """Compute and render the plan without any mutating call."""
        reporter = DryRunReporter(include_cleanup=self.cleanup_enabled)
        try:
            plan = await self.prepare_plan()
        except SyncTimeout as e:
            log_with_context(logging.ERROR, f"{DRY_RUN_PREFIX}{e}")
            return reporter.render_failure(e)
        return reporter.render(plan)

    async def migrate(self) -> MigrationReport:
        """Run the full migration and return the per-room report.

        Raises:
            SyncTimeout: if either account could not be synced; no plan is
                computed and no report exists
            DestinationUnreachable: if the destination never answered
        """
        plan = await self.prepare_plan()

        self.executor = MigrationExecutor(
            self.destination,
            source=self.source,
            timeout_config=self.timeout_config,
            show_progress=self.show_progress,
        )
        if self._cancel_requested:
            self.executor.cancel()

        report = await self.executor.execute(plan)

        if report.cancelled:
            log_with_context(
                logging.WARNING, "Migration cancelled; skipping cleanup of migrated rooms"
            )
        elif self.cleanup_enabled:
            self.coordinator = CleanupCoordinator(
                self.source, self.destination, self.timeout_config
            )
            if self._cancel_requested:
                self.coordinator.cancel()
            await self.coordinator.run(plan, report)
        else:
            log_with_context(
                logging.INFO,
                "Hint: Run again with the --leave-rooms flag to remove the old"
                " account from successfully migrated rooms",
            )

        return report


async def run_dry_run(
    source: Session,
    destination: Session,
    filter_config: Optional[RoomFilterConfig] = None,
    timeout_config: Optional[TimeoutConfig] = None,
    include_cleanup: bool = False,
) -> RenderedPlan:
    """Render the migration plan for two sessions without changing anything."""
    migrator = MatrixMigrator(
        source,
        destination,
        filter_config=filter_config,
        timeout_config=timeout_config,
        cleanup_enabled=include_cleanup,
    )
    return await migrator.dry_run()


async def run_migration(
    source: Session,
    destination: Session,
    filter_config: Optional[RoomFilterConfig] = None,
    cleanup_enabled: bool = False,
    timeout_config: Optional[TimeoutConfig] = None,
) -> MigrationReport:
    """Migrate ``source``'s rooms to ``destination`` and report per room."""
    migrator = MatrixMigrator(
        source,
        destination,
        filter_config=filter_config,
        timeout_config=timeout_config,
        cleanup_enabled=cleanup_enabled,
    )
    return await migrator.migrate()
