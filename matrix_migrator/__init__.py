#!/usr/bin/env python3
"""
Matrix account to account migration tool
"""

__version__ = "0.1.0"

from matrix_migrator.core.config import (
    MigrationConfig,
    RoomFilterConfig,
    TimeoutConfig,
    load_config,
)

# Import the main classes and functions for easier access
from matrix_migrator.core.migrator import MatrixMigrator, run_dry_run, run_migration
from matrix_migrator.services.matrix_client import MatrixSession
from matrix_migrator.types import MigrationPlan, MigrationReport, RenderedPlan
