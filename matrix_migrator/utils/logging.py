"""
Logging module for the Matrix account migration tool
"""

import logging
import os
from typing import Any, Optional

LOGGER_NAME = "matrix_migrator"


class EnhancedFormatter(logging.Formatter):
    """
    Formatter that supports verbose mode (module and line information) and
    appends the room a record belongs to when one is attached.
    """

    def __init__(self, fmt=None, datefmt=None, style="%", verbose=False):
        # Use more detailed format for verbose mode
        if verbose:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(lineno)d] - %(message)s"
        elif not fmt:
            fmt = "%(asctime)s - %(levelname)s - %(message)s"

        super().__init__(fmt, datefmt, style)
        self.verbose = verbose

    def format(self, record):
        result = super().format(record)

        room = getattr(record, "room", None)
        if self.verbose and room:
            result += f" [room={room}]"

        return result


def setup_main_log_file(output_dir: str, verbose: bool = False) -> logging.FileHandler:
    """
    Set up a file handler for the run's main log file.

    Args:
        output_dir: The output directory path
        verbose: If True, include module and line details in the file log

    Returns:
        The file handler for the main log file
    """
    os.makedirs(output_dir, exist_ok=True)

    log_file = os.path.join(output_dir, "migration.log")

    file_handler = logging.FileHandler(log_file, mode="w")
    file_handler.setLevel(logging.DEBUG)  # Always use DEBUG level for file handlers
    file_handler.setFormatter(EnhancedFormatter(verbose=verbose))

    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(file_handler)

    logger.info(f"Main log file created at: {log_file}")
    return file_handler


def setup_logger(
    verbose: bool = False, debug_http: bool = False, output_dir: Optional[str] = None
) -> logging.Logger:
    """
    Set up and return the logger with appropriate formatting.

    Args:
        verbose: If True, set console handler to DEBUG level; otherwise INFO level
        debug_http: If True, enable urllib3 request logging
        output_dir: Optional output directory for the main log file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to prevent duplicate messages
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)  # Always set logger to DEBUG to capture all logs

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(EnhancedFormatter(verbose=verbose))
    logger.addHandler(console_handler)

    if output_dir:
        setup_main_log_file(output_dir, verbose)

    if debug_http:
        http_logger = logging.getLogger("urllib3")
        http_logger.setLevel(logging.DEBUG)
        for handler in logger.handlers:
            http_logger.addHandler(handler)
        logger.info("HTTP debug logging enabled")

    return logger


def log_with_context(level: int, message: str, **kwargs: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        level: The logging level (e.g., logging.INFO)
        message: The log message
        **kwargs: Additional context to include in the log record (e.g. ``room``);
            ``exc_info`` is passed through to the logger
    """
    exc_info = kwargs.pop("exc_info", None)

    # Filter out None values from kwargs
    extras = {k: v for k, v in kwargs.items() if v is not None}

    logger = logging.getLogger(LOGGER_NAME)
    logger.log(level, message, exc_info=exc_info, extra=extras)
