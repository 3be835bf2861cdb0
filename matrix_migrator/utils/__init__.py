"""Shared utilities for retrying API calls and logging."""

__all__ = [
    "api",
    "logging",
]
