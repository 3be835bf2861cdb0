"""
Configuration module for the Matrix account migration tool.

This module provides functions for loading configuration settings from YAML
files, creating default configurations, and splitting the loaded settings
into the filter and timeout configurations the migration engine consumes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from matrix_migrator.constants import (
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WORKERS,
    DEFAULT_RETRY_DELAY,
    DEFAULT_SYNC_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
)
from matrix_migrator.exceptions import ConfigError
from matrix_migrator.utils.logging import log_with_context

# camelCase spellings accepted alongside the snake_case keys
_KEY_ALIASES = {
    "roomsExcluded": "rooms_excluded",
    "leaveRooms": "leave_rooms",
    "timeoutSeconds": "timeout_seconds",
    "dryRun": "dry_run",
    "callTimeoutSeconds": "call_timeout_seconds",
    "maxWorkers": "max_workers",
    "maxRetries": "max_retries",
    "retryDelay": "retry_delay",
    "syncRetries": "sync_retries",
}


def _flag(data: dict[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


@dataclass(frozen=True)
class RoomFilterConfig:
    """Inclusion and exclusion rules for rooms (exact ids, names or globs)."""

    rooms: tuple[str, ...] = ()
    rooms_excluded: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.rooms and not self.rooms_excluded


@dataclass(frozen=True)
class TimeoutConfig:
    """Time budget, retry and concurrency settings for a run.

    ``timeout_seconds`` is the ceiling for the initial sync and the overall
    budget retries may consume; ``call_timeout_seconds`` bounds each single
    protocol call.
    """

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS
    max_workers: int = DEFAULT_MAX_WORKERS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    sync_retries: int = DEFAULT_SYNC_RETRIES


@dataclass
class MigrationConfig:
    """Typed configuration for the migration tool."""

    # Room filtering
    rooms: list[str] = field(default_factory=list)
    rooms_excluded: list[str] = field(default_factory=list)

    # Mode flags
    leave_rooms: bool = False
    dry_run: bool = False

    # Timeouts and retry
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS
    max_workers: int = DEFAULT_MAX_WORKERS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    sync_retries: int = DEFAULT_SYNC_RETRIES

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError for values the engine cannot work with."""
        if self.timeout_seconds <= 0:
            raise ConfigError(
                f"timeout_seconds must be positive, got {self.timeout_seconds}"
            )
        if self.call_timeout_seconds <= 0:
            raise ConfigError(
                f"call_timeout_seconds must be positive, got {self.call_timeout_seconds}"
            )
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.max_retries < 0:
            raise ConfigError(
                f"max_retries must be non-negative, got {self.max_retries}"
            )
        if self.sync_retries < 0:
            raise ConfigError(
                f"sync_retries must be non-negative, got {self.sync_retries}"
            )
        if self.retry_delay < 0:
            raise ConfigError(
                f"retry_delay must be non-negative, got {self.retry_delay}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfig:
        """Create a MigrationConfig from a raw config dictionary."""
        normalized = {_KEY_ALIASES.get(key, key): value for key, value in data.items()}
        unknown = sorted(set(normalized) - set(cls.__dataclass_fields__))
        if unknown:
            log_with_context(
                logging.WARNING, f"Ignoring unknown config keys: {', '.join(unknown)}"
            )

        try:
            return cls(
                rooms=[str(r) for r in normalized.get("rooms") or []],
                rooms_excluded=[str(r) for r in normalized.get("rooms_excluded") or []],
                leave_rooms=_flag(normalized, "leave_rooms"),
                dry_run=_flag(normalized, "dry_run"),
                timeout_seconds=float(
                    normalized.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
                ),
                call_timeout_seconds=float(
                    normalized.get("call_timeout_seconds", DEFAULT_CALL_TIMEOUT_SECONDS)
                ),
                max_workers=int(normalized.get("max_workers", DEFAULT_MAX_WORKERS)),
                max_retries=int(normalized.get("max_retries", DEFAULT_MAX_RETRIES)),
                retry_delay=float(normalized.get("retry_delay", DEFAULT_RETRY_DELAY)),
                sync_retries=int(normalized.get("sync_retries", DEFAULT_SYNC_RETRIES)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

    @property
    def filter_config(self) -> RoomFilterConfig:
        return RoomFilterConfig(
            rooms=tuple(self.rooms), rooms_excluded=tuple(self.rooms_excluded)
        )

    @property
    def timeout_config(self) -> TimeoutConfig:
        return TimeoutConfig(
            timeout_seconds=self.timeout_seconds,
            call_timeout_seconds=self.call_timeout_seconds,
            max_workers=self.max_workers,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            sync_retries=self.sync_retries,
        )


def load_config(config_path: Path) -> MigrationConfig:
    """
    Load configuration from YAML file and apply default values.

    If the file doesn't exist or cannot be read, a warning is logged and
    default settings are used. A file that parses but holds invalid values
    raises ConfigError.

    Args:
        config_path: Path to the config YAML file

    Returns:
        MigrationConfig with all necessary defaults applied
    """
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded_config = yaml.safe_load(f)
            # Handle None result from empty file
            if loaded_config is not None:
                if not isinstance(loaded_config, dict):
                    raise ConfigError(
                        f"Config file {config_path} must contain a mapping"
                    )
                raw = loaded_config
            log_with_context(logging.INFO, f"Loaded configuration from {config_path}")
        except (yaml.YAMLError, OSError) as e:
            log_with_context(
                logging.WARNING, f"Failed to load config file {config_path}: {e}"
            )
    else:
        log_with_context(
            logging.WARNING,
            f"Config file {config_path} not found, using default settings",
        )

    return MigrationConfig.from_dict(raw)


def create_default_config(output_path: Path) -> bool:
    """
    Create a default configuration file with recommended settings.

    The function will not overwrite an existing configuration file.

    Args:
        output_path: Path where the default config should be saved

    Returns:
        True if the config file was created successfully, False otherwise
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Config file {output_path} already exists, not overwriting",
        )
        return False

    default_config = {
        # Empty list means every joined room is migrated
        "rooms": [],
        "rooms_excluded": ["!example:matrix.org", "*bridge*"],
        "leave_rooms": False,
        "dry_run": False,
        # Timeouts (seconds)
        "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
        "call_timeout_seconds": DEFAULT_CALL_TIMEOUT_SECONDS,
        # Concurrency and retry options
        "max_workers": DEFAULT_MAX_WORKERS,
        "max_retries": DEFAULT_MAX_RETRIES,
        "retry_delay": DEFAULT_RETRY_DELAY,
        "sync_retries": DEFAULT_SYNC_RETRIES,
    }

    try:
        with open(output_path, "w") as f:
            yaml.safe_dump(default_config, f, default_flow_style=False)
        log_with_context(logging.INFO, f"Created default config file at {output_path}")
        return True
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to create default config file: {e}")
        return False
