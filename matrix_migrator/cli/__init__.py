"""Command-line interface: click group, subcommands and run reports."""

__all__ = [
    "commands",
    "common",
    "config_cmd",
    "migrate_cmd",
    "report",
]
