"""Centralized logging configuration for research jobs.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="factor_research", log_level="INFO")
    >>> logger.info("Job started", extra={"context": {"n_factors": 3}})
"""

import logging
import sys

from config.settings import get_settings
from libs.common.logging.context import get_run_id
from libs.common.logging.formatter import JSONFormatter


class RunIDFilter(logging.Filter):
    """Logging filter that stamps the current run ID onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str | None = None,
    include_context: bool = True,
) -> logging.Logger:
    """Configure structured JSON logging on the root logger.

    Sets up JSON output to stdout with run ID injection. Existing root
    handlers are replaced so repeated calls do not duplicate output.

    Args:
        service_name: Name reported in the ``service`` field
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            MULTIFACTOR_LOG_LEVEL from settings if None
        include_context: Whether to include the context dict in output

    Returns:
        Configured root logger

    Raises:
        ValueError: If log_level is invalid
    """
    if log_level is None:
        log_level = get_settings().log_level

    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(service_name=service_name, include_context=include_context))
    handler.addFilter(RunIDFilter())

    root_logger.addHandler(handler)

    return root_logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger by name (root logger if None)."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context_fields: object,
) -> None:
    """Log a message with keyword context fields.

    Example:
        >>> log_with_context(logger, "INFO", "IC computed", ndays=5, mean_ic=0.031)
        # Output includes: "context": {"ndays": 5, "mean_ic": 0.031}
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra={"context": context_fields})
