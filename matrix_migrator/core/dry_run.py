"""
Dry-run rendering of migration plans.

Rendering is pure: it reads the plan and nothing else, so the same plan
always produces the same text and no session is ever touched.
"""

from __future__ import annotations

from matrix_migrator.constants import DRY_RUN_PREFIX
from matrix_migrator.core.cleanup import cleanup_operations
from matrix_migrator.types import MigrationPlan, RenderedPlan, RoomStatus


class DryRunReporter:
    """Renders what a plan would do without executing it."""

    def __init__(self, include_cleanup: bool = False) -> None:
        self.include_cleanup = include_cleanup

    def render(self, plan: MigrationPlan) -> RenderedPlan:
        pending = plan.pending_rooms()
        changing = [room for room in pending if room.operations]
        skipped = [room for room in plan.rooms if room.status is RoomStatus.SKIPPED]

        lines = [
            f"{DRY_RUN_PREFIX}Migration plan: {plan.source.user_id} -> {plan.destination.user_id}",
            f"Rooms: {len(plan.rooms)} ({len(changing)} with changes,"
            f" {len(pending) - len(changing)} already in sync, {len(skipped)} skipped)",
            f"Operations: {plan.operation_count}",
        ]
        if not plan.rooms:
            lines.append("No rooms in scope.")
        elif plan.operation_count == 0:
            lines.append("No operations required.")

        for room in plan.rooms:
            lines.append("")
            lines.append(room.label)
            if room.status is RoomStatus.SKIPPED:
                lines.append(f"  skipped: {room.detail or 'no reason given'}")
                continue
            if not room.operations:
                lines.append("  (no changes)")
            for index, operation in enumerate(room.operations, start=1):
                lines.append(f"  {index}. {operation.describe()}")
            if self.include_cleanup:
                for operation in cleanup_operations(room):
                    lines.append(f"  after migration: {operation.describe()}")

        return RenderedPlan(
            text="\n".join(lines) + "\n",
            computed=True,
            operation_count=plan.operation_count,
            room_count=len(plan.rooms),
        )

    def render_failure(self, error: BaseException | str) -> RenderedPlan:
        """Render the state where no plan could be computed."""
        message = str(error) or type(error).__name__
        return RenderedPlan(
            text=f"{DRY_RUN_PREFIX}Plan could not be computed: {message}\n",
            computed=False,
            error=message,
        )
