"""Observability module for autohdr.

Provides structured logging for analysis runs, capture runs and
composition.

Example:
    from autohdr.observability import get_logger, LogContext

    logger = get_logger(__name__)

    logger.info("Camera connected")

    with LogContext(run_id="a1b2c3"):
        logger.info("Exposure stepped", direction="up", exposure="1/30")
"""

from autohdr.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)

__all__ = [
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
]
