"""Shared CLI infrastructure: option decorators, error handlers, and the CLI group."""

from __future__ import annotations

import logging
from typing import Callable

import click

import matrix_migrator
from matrix_migrator.exceptions import (
    ConfigError,
    DestinationUnreachable,
    LoginError,
    MigratorError,
    SyncTimeout,
)
from matrix_migrator.utils.logging import log_with_context


# ---------------------------------------------------------------------------
# Shared option decorators
# ---------------------------------------------------------------------------


def account_options(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds the source and destination account options.

    Every option can also be supplied through its environment variable.

    Args:
        f: The Click command function to decorate.

    Returns:
        The decorated function with account options attached.
    """
    f = click.option(
        "--from",
        "from_user",
        envvar="FROM_USER",
        required=True,
        help="User id of the account to migrate from (e.g. @old:example.org)",
    )(f)
    f = click.option(
        "--from-pw",
        "from_password",
        envvar="FROM_PASSWORD",
        required=True,
        help="Password of the account to migrate from",
    )(f)
    f = click.option(
        "--from-homeserver",
        envvar="FROM_HOMESERVER",
        default=None,
        help="Custom homeserver for the source account; discovered if omitted",
    )(f)
    f = click.option(
        "--to",
        "to_user",
        envvar="TO_USER",
        required=True,
        help="User id of the account to migrate to",
    )(f)
    f = click.option(
        "--to-pw",
        "to_password",
        envvar="TO_PASSWORD",
        required=True,
        help="Password of the account to migrate to",
    )(f)
    f = click.option(
        "--to-homeserver",
        envvar="TO_HOMESERVER",
        default=None,
        help="Custom homeserver for the destination account; discovered if omitted",
    )(f)
    return f


def logging_options(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds logging-related options."""
    f = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        default=False,
        help="Enable verbose console logging (shows DEBUG level messages)",
    )(f)
    f = click.option(
        "--debug-http",
        is_flag=True,
        default=False,
        help="Log every HTTP request made to the homeservers",
    )(f)
    return f


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=matrix_migrator.__version__, prog_name="matrix-migrator")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Fast migration of one Matrix account to another.

    Args:
        ctx: The Click context (injected by ``@click.pass_context``).
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def handle_exception(e: BaseException) -> None:
    """Log a user-facing message for an exception that ended the run.

    Args:
        e: The exception to handle.
    """
    if isinstance(e, SyncTimeout):
        log_with_context(logging.ERROR, f"Initial sync failed: {e}")
        log_with_context(
            logging.INFO,
            "No changes were made. Try again later or raise timeout_seconds.",
        )
    elif isinstance(e, DestinationUnreachable):
        log_with_context(logging.ERROR, f"Destination unreachable: {e}")
        log_with_context(
            logging.INFO, "Check the destination homeserver and try again."
        )
    elif isinstance(e, LoginError):
        log_with_context(logging.ERROR, f"Login failed: {e}")
    elif isinstance(e, ConfigError):
        log_with_context(logging.ERROR, f"Configuration error: {e}")
    elif isinstance(e, MigratorError):
        log_with_context(logging.ERROR, str(e))
    elif isinstance(e, KeyboardInterrupt):
        log_with_context(logging.WARNING, "Migration interrupted by user.")
        log_with_context(
            logging.INFO,
            "Rooms already migrated stay migrated; run again to finish the rest.",
        )
    else:
        log_with_context(logging.ERROR, f"Migration failed: {e}", exc_info=True)
