"""Shared test fixtures for the matrix_migrator test suite."""

import logging

import pytest

from matrix_migrator.core.config import TimeoutConfig

SOURCE_USER = "@old:example.org"
DESTINATION_USER = "@new:example.org"


@pytest.fixture()
def fast_timeouts():
    """Return a TimeoutConfig that never sleeps between retries."""
    return TimeoutConfig(
        timeout_seconds=30,
        call_timeout_seconds=5,
        max_workers=4,
        max_retries=2,
        retry_delay=0,
        sync_retries=2,
    )


@pytest.fixture(autouse=True)
def _reset_migrator_logger():
    """Drop handlers added by setup_logger so tests do not leak log output."""
    yield
    logger = logging.getLogger("matrix_migrator")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
