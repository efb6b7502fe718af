"""
Logging utilities for the queue client.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """
    Setup logging configuration for processes using the queue client.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string for log messages
        log_file: Optional file path to write logs to
    """

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.setFormatter(logging.Formatter(format_string))

    handlers: list[logging.Handler] = [console_handler]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(getattr(logging, level.upper()))
        file_handler.setFormatter(logging.Formatter(format_string))
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = handlers

    # boto is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def error_fields(error: BaseException, **fields: Any) -> dict[str, Any]:
    """
    Build the ``extra`` mapping for a log record describing a failure.

    Structured details attached to queue errors are merged in, followed by
    the explicit ``fields``. The error itself is left untouched.

    Example:
        logger.error("Failed to handle message", extra=error_fields(exc, logical_name="orders"))
    """
    extra: dict[str, Any] = {
        "error_type": error.__class__.__name__,
        "error_message": str(error),
    }
    code = getattr(error, "code", None)
    if code is not None:
        extra["error_code"] = code
    details = getattr(error, "details", None)
    if isinstance(details, dict):
        extra.update(details)
    extra.update(fields)
    return extra
