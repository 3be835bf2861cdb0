"""CLI command handler for the migrate workflow (including dry runs)."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from matrix_migrator.cli.common import (
    account_options,
    cli,
    handle_exception,
    logging_options,
)
from matrix_migrator.cli.report import (
    create_output_directory,
    generate_report,
    print_migration_summary,
    save_rendered_plan,
)
from matrix_migrator.core.config import MigrationConfig, load_config
from matrix_migrator.core.migrator import MatrixMigrator
from matrix_migrator.services.matrix_client import MatrixSession
from matrix_migrator.utils.logging import log_with_context, setup_logger


# ---------------------------------------------------------------------------
# migrate subcommand
# ---------------------------------------------------------------------------


@cli.command()
@account_options
@logging_options
@click.option(
    "--config",
    default="config.yaml",
    show_default=True,
    help="Path to config YAML",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Simulate a migration. Logs in and syncs, but does not perform any actual actions",
)
@click.option(
    "--rooms",
    multiple=True,
    help="Rooms to migrate (repeatable; ids, names or glob patterns). Default: all",
)
@click.option(
    "--rooms-excluded",
    multiple=True,
    help="Rooms to skip (repeatable; ids, names or glob patterns)",
)
@click.option(
    "--leave-rooms",
    is_flag=True,
    default=False,
    help="Remove old account from rooms when migration was successful",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=int,
    default=None,
    help="Time ceiling in seconds for syncing and retrying",
)
@click.option(
    "--output-dir",
    default="matrix_migrator_output",
    show_default=True,
    help="Directory where run logs and reports are written",
)
def migrate(
    from_user: str,
    from_password: str,
    from_homeserver: Optional[str],
    to_user: str,
    to_password: str,
    to_homeserver: Optional[str],
    verbose: bool,
    debug_http: bool,
    config: str,
    dry_run: bool,
    rooms: tuple[str, ...],
    rooms_excluded: tuple[str, ...],
    leave_rooms: bool,
    timeout_seconds: Optional[int],
    output_dir: str,
) -> None:
    """Migrate room memberships and power levels to a new account."""
    run_output_dir = create_output_directory(output_dir)
    setup_logger(verbose, debug_http, run_output_dir)

    try:
        settings = build_settings(
            load_config(Path(config)),
            dry_run=dry_run,
            rooms=rooms,
            rooms_excluded=rooms_excluded,
            leave_rooms=leave_rooms,
            timeout_seconds=timeout_seconds,
        )
        log_startup_info(settings, from_user, to_user, run_output_dir)

        source = MatrixSession.login(
            from_user,
            from_password,
            from_homeserver,
            request_timeout=settings.call_timeout_seconds,
        )
        try:
            destination = MatrixSession.login(
                to_user,
                to_password,
                to_homeserver,
                request_timeout=settings.call_timeout_seconds,
            )
        except Exception:
            # Do not leave a logged-in device behind on the source account
            asyncio.run(source.logout())
            raise
        log_with_context(logging.INFO, "All logged in.")

        exit_code = asyncio.run(run(source, destination, settings, run_output_dir))
    except Exception as e:
        handle_exception(e)
        sys.exit(1)

    sys.exit(exit_code)


def build_settings(
    base: MigrationConfig,
    *,
    dry_run: bool = False,
    rooms: tuple[str, ...] = (),
    rooms_excluded: tuple[str, ...] = (),
    leave_rooms: bool = False,
    timeout_seconds: Optional[int] = None,
) -> MigrationConfig:
    """Apply command line overrides on top of the loaded configuration.

    Room lists from the command line are added to those from the file;
    flags only ever switch a mode on.
    """
    changes: dict = {
        "dry_run": base.dry_run or dry_run,
        "leave_rooms": base.leave_rooms or leave_rooms,
        "rooms": list(dict.fromkeys([*base.rooms, *rooms])),
        "rooms_excluded": list(dict.fromkeys([*base.rooms_excluded, *rooms_excluded])),
    }
    if timeout_seconds is not None:
        changes["timeout_seconds"] = float(timeout_seconds)
    return dataclasses.replace(base, **changes)


def log_startup_info(
    settings: MigrationConfig, from_user: str, to_user: str, output_dir: str
) -> None:
    """Log startup information."""
    if settings.dry_run:
        log_with_context(
            logging.INFO, "Running in dry mode, not doing any actual changes"
        )
    log_with_context(logging.INFO, f"Migrating {from_user} -> {to_user}")
    if settings.rooms_excluded:
        log_with_context(
            logging.INFO, f"Excluded rooms {', '.join(settings.rooms_excluded)}"
        )
    if settings.rooms:
        log_with_context(
            logging.INFO, f"Only doing actions for rooms {', '.join(settings.rooms)}"
        )
    log_with_context(logging.INFO, f"- Leave rooms: {settings.leave_rooms}")
    log_with_context(logging.INFO, f"- Timeout: {settings.timeout_seconds}s")
    log_with_context(logging.INFO, f"- Output directory: {output_dir}")


async def run(
    source: MatrixSession,
    destination: MatrixSession,
    settings: MigrationConfig,
    output_dir: str,
) -> int:
    """Run a dry run or migration and return the process exit code."""
    migrator = MatrixMigrator(
        source,
        destination,
        filter_config=settings.filter_config,
        timeout_config=settings.timeout_config,
        cleanup_enabled=settings.leave_rooms,
        show_progress=True,
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, migrator.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        if settings.dry_run:
            rendered = await migrator.dry_run()
            click.echo(rendered.text)
            save_rendered_plan(rendered, output_dir)
            if not rendered.computed:
                return 1
            click.echo("To perform the actual migration, run again without --dry-run")
            return 0

        report = await migrator.migrate()
        report_file = generate_report(report, migrator.plan, output_dir)
        print_migration_summary(report, report_file)
        log_with_context(logging.INFO, "-- All done! --")
        return 1 if report.has_failures or report.cancelled else 0
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await destination.logout()
        await source.logout()
