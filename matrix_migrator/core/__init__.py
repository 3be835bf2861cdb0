"""Core migration logic: snapshots, planning, execution and cleanup."""

__all__ = [
    "cleanup",
    "config",
    "dry_run",
    "executor",
    "migrator",
    "planner",
    "room_filter",
    "snapshot",
]
