"""CLI command handler for writing a starter configuration file."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from matrix_migrator.cli.common import cli
from matrix_migrator.core.config import create_default_config
from matrix_migrator.utils.logging import setup_logger

# ---------------------------------------------------------------------------
# init-config subcommand
# ---------------------------------------------------------------------------


@cli.command("init-config")
@click.option(
    "--output",
    default="config.yaml",
    show_default=True,
    help="Where to write the configuration file",
)
def init_config(output: str) -> None:
    """Write a default configuration file (never overwrites).

    Args:
        output: Path of the configuration file to create.
    """
    setup_logger()
    if not create_default_config(Path(output)):
        sys.exit(1)
    click.echo(f"Default configuration written to {output}")
