"""Structured logging for research jobs.

JSON log output with run ID correlation, so that every line emitted during
one factor-synthesis job can be grouped together.

Usage:
    # At job startup
    from libs.common.logging import configure_logging, RunContext
    configure_logging(service_name="factor_research", log_level="INFO")

    with RunContext() as run_id:
        engine.get_icir(20)
"""

from libs.common.logging.config import (
    configure_logging,
    get_logger,
    log_with_context,
)
from libs.common.logging.context import (
    RunContext,
    clear_run_id,
    generate_run_id,
    get_run_id,
    set_run_id,
)
from libs.common.logging.formatter import JSONFormatter

__all__ = [
    # Configuration
    "configure_logging",
    "get_logger",
    "log_with_context",
    # Run ID management
    "generate_run_id",
    "get_run_id",
    "set_run_id",
    "clear_run_id",
    "RunContext",
    # Formatter
    "JSONFormatter",
]
