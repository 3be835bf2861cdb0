#!/usr/bin/env python3
"""
Command-line entry point for the Matrix account migration tool.

Importing the subcommand modules registers them on the shared ``cli`` group.
"""

from matrix_migrator.cli import config_cmd, migrate_cmd  # noqa: F401
from matrix_migrator.cli.common import cli, handle_exception

__all__ = ["cli", "handle_exception", "main"]


def main() -> None:
    """Run the matrix-migrator command line interface."""
    cli()


if __name__ == "__main__":
    main()
