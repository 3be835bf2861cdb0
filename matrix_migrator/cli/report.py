"""
Report generation for Matrix account migrations
"""

from __future__ import annotations

import datetime
import logging
import os
from typing import Optional

import click
import yaml

from matrix_migrator.types import (
    MigrationPlan,
    MigrationReport,
    RenderedPlan,
    RoomStatus,
)
from matrix_migrator.utils.logging import log_with_context


def create_output_directory(base_dir: str = "matrix_migrator_output") -> str:
    """Create a timestamped output directory for this run."""
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    run_output_dir = os.path.join(base_dir, f"run_{timestamp}")
    os.makedirs(run_output_dir, exist_ok=True)
    return run_output_dir


def generate_report(
    report: MigrationReport,
    plan: Optional[MigrationPlan],
    output_dir: str,
    output_file: str = "migration_report.yaml",
) -> str:
    """Write the per-room outcome of a run as YAML and return its path."""
    report_path = os.path.join(output_dir, output_file)
    data = report.to_dict()

    summary = {
        "timestamp": datetime.datetime.now().isoformat(),
        "rooms_total": len(report),
        "rooms_applied": len(report.applied_rooms),
        "rooms_failed": len(report.failed_rooms),
        "rooms_skipped": len(report.rooms_with_status(RoomStatus.SKIPPED)),
        "rooms_pending": len(report.rooms_with_status(RoomStatus.PENDING)),
        "rooms_left": sum(1 for r in report.cleanup.values() if r.left),
        "cleanup_failures": sum(1 for r in report.cleanup.values() if r.error),
    }
    if plan is not None:
        summary["source"] = plan.source.user_id
        summary["destination"] = plan.destination.user_id
        summary["operations_planned"] = plan.operation_count

    data = {"migration_summary": summary, **data}

    with open(report_path, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    log_with_context(logging.INFO, f"Migration report generated: {report_path}")
    return report_path


def save_rendered_plan(
    rendered: RenderedPlan, output_dir: str, output_file: str = "dry_run_plan.txt"
) -> str:
    """Write a rendered dry-run plan next to the run's logs."""
    plan_path = os.path.join(output_dir, output_file)
    with open(plan_path, "w") as f:
        f.write(rendered.text)
    log_with_context(logging.INFO, f"Dry run plan saved to {plan_path}")
    return plan_path


def print_migration_summary(report: MigrationReport, report_file: Optional[str] = None) -> None:
    """Print a summary of the migration to the console."""
    click.echo("\n" + "=" * 80)
    click.echo("MIGRATION SUMMARY")
    click.echo("=" * 80)
    click.echo(f"Rooms applied: {len(report.applied_rooms)}")
    click.echo(f"Rooms failed: {len(report.failed_rooms)}")
    click.echo(f"Rooms skipped: {len(report.rooms_with_status(RoomStatus.SKIPPED))}")

    pending = report.rooms_with_status(RoomStatus.PENDING)
    if pending:
        click.echo(f"Rooms not started (cancelled): {len(pending)}")

    for room_id in report.failed_rooms:
        click.echo(f"  FAILED {room_id}: {report[room_id].error}")

    if report.cleanup:
        left = sum(1 for r in report.cleanup.values() if r.left)
        click.echo(f"\nRooms left with the old account: {left}/{len(report.cleanup)}")
        for room_id in sorted(report.cleanup):
            result = report.cleanup[room_id]
            if result.error:
                click.echo(f"  CLEANUP FAILED {room_id}: {result.error}")
            elif result.cancelled:
                click.echo(f"  CLEANUP CANCELLED {room_id}")

    if report_file:
        click.echo(f"\nDetailed report saved to {report_file}")
    click.echo("=" * 80)
