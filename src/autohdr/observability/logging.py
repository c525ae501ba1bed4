"""Structured logging for autohdr.

Builds on Python's standard logging module with:
- Structured data support (key-value pairs in logs)
- JSON formatting option for log aggregation
- Context management for per-run tracking (analysis run, capture run)

Design Principles:
- Compatible with standard logging (drop-in replacement)
- Structured data via keyword arguments
- Thread-safe context management (frames and captures arrive on
  worker threads)
- Optional JSON output

Example:
    logger = get_logger(__name__)

    logger.info("Camera connected")
    logger.info("Exposure stepped", direction="down", exposure="1/250")

    with LogContext(run_id="a1b2c3"):
        logger.info("Lower boundary found")  # includes run_id

    configure_logging(json_format=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

ROOT_LOGGER_NAME = "autohdr"

# Context variable for structured logging context
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger with structured data support.

    Extends standard Logger to accept keyword arguments that become
    structured data in the log record.

    Usage:
        logger = StructuredLogger("autohdr.sequence")
        logger.info("Boundary recorded", exposure="1/60", stops=4)
    """

    def debug(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log debug message with optional structured data kwargs."""
        if self.isEnabledFor(logging.DEBUG):
            self._log(
                logging.DEBUG,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def info(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log info message with optional structured data kwargs."""
        if self.isEnabledFor(logging.INFO):
            self._log(
                logging.INFO,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def warning(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log warning message with optional structured data kwargs."""
        if self.isEnabledFor(logging.WARNING):
            self._log(
                logging.WARNING,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def error(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log error message with optional structured data kwargs."""
        if self.isEnabledFor(logging.ERROR):
            self._log(
                logging.ERROR,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def _log(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None = None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Log a message with structured data support.

        Keyword arguments are merged with the active LogContext values,
        explicit kwargs taking precedence, and attached to the record as
        ``structured_data`` for the formatters.

        Args:
            level: Numeric log level.
            msg: Log message, may contain % formatting placeholders.
            args: Arguments for % formatting.
            exc_info: Exception info, True to capture the current exception.
            extra: Additional LogRecord attributes. The 'structured_data'
                key is added/overwritten.
            stack_info: If True, include stack trace in log.
            stacklevel: Stack frames to skip for caller attribution.
            **kwargs: Structured fields (exposure, state, index, ...).
        """
        context = _log_context.get()
        structured_data = {**context, **kwargs}

        if extra is None:
            extra = {}
        extra["structured_data"] = structured_data

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter with structured data.

    Format: timestamp - name - level - message | key=value key=value
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Initialize the structured formatter.

        Args:
            fmt: Format string using LogRecord attributes. Defaults to
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'.
            datefmt: Date/time format string for %(asctime)s.
            include_structured: If True (default), appends structured data
                as ' | key=value key=value' after the message.
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as text, appending structured key=value pairs.

        Args:
            record: The LogRecord to format. Its optional 'structured_data'
                attribute is appended after the base message.

        Returns:
            Formatted log string, e.g.
            '... - autohdr.sequence.machine - INFO - Exposure stepped |
            direction=down exposure=1/250'.
        """
        base = super().format(record)

        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """JSON formatter for log aggregation systems.

    Outputs each log record as a single JSON line with timestamp, level,
    logger name, message and all structured data as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON object.

        Args:
            record: The LogRecord to format. Structured data is merged into
                the output dict; exception info is included when present.

        Returns:
            Single-line JSON string. Non-serializable values use str().
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        structured = getattr(record, "structured_data", {})
        log_dict.update(structured)

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Format a value for human-readable structured log output.

    Formatting rules:
    - None: 'null'
    - Strings: as-is, quoted when containing spaces
    - Dicts/lists: JSON
    - Other types: str()

    Example:
        >>> _format_value(None)
        'null'
        >>> _format_value("1/250")
        '1/250'
        >>> _format_value("Found lower criteria.")
        '"Found lower criteria."'
        >>> _format_value(["1/60", "1/15"])
        '["1/60", "1/15"]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


@dataclass
class LogContext:
    """Context manager for structured logging context.

    Adds key-value pairs to all log messages within the context.
    Thread-safe and supports nesting.

    Usage:
        with LogContext(run_id="abc"):
            logger.info("Seeking lower boundary")  # includes run_id

            with LogContext(shot=2):
                logger.info("Capturing")  # includes run_id and shot
    """

    _kwargs: dict[str, Any] = field(default_factory=dict, init=False, repr=True)
    _token: contextvars.Token[dict[str, Any]] | None = field(
        default=None, init=False, repr=False
    )

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a logging context with key-value pairs.

        Args:
            **kwargs: Fields included in every log message emitted within
                the context. Inner contexts override outer values.
        """
        self._kwargs = kwargs

    def __enter__(self) -> LogContext:
        """Merge this context's fields into the active logging context."""
        current = _log_context.get()
        new_context = {**current, **self._kwargs}
        self._token = _log_context.set(new_context)
        return self

    def __exit__(self, *args: Any) -> None:
        """Restore the logging context active before __enter__."""
        if self._token is not None:
            _log_context.reset(self._token)


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure the autohdr structured logging system.

    Sets up a stream handler and formatter on the 'autohdr' logger. Should
    be called once at startup (the CLI does this from its flags). Idempotent
    unless ``force=True``; guarded by a lock for concurrent initialization.

    Args:
        level: Minimum log level (int or name such as "DEBUG").
        json_format: Emit one JSON object per line instead of text.
        stream: Output stream (default: sys.stderr).
        include_structured: Append key=value pairs in text mode.
        force: Drop any previous configuration first.

    Example:
        >>> configure_logging(level=logging.DEBUG)
        >>> configure_logging(level="INFO", json_format=True, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Internal implementation of configure_logging (assumes lock is held)."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    if stream is None:
        stream = sys.stderr
    handler = logging.StreamHandler(stream)

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)

    # Prevent propagation to root logger (avoid duplicate logs)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Internal implementation of reset_logging (assumes lock is held)."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Reset the logging system to unconfigured state (for testing)."""
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module.

    Configures logging with defaults (INFO, text, stderr) on first use if
    configure_logging() has not been called.

    Args:
        name: Logger name, normally ``__name__`` (e.g.
            'autohdr.sequence.machine').

    Returns:
        StructuredLogger accepting ``logger.info("msg", key=value)``.
    """
    # Double-checked locking for thread-safe lazy initialization
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    logger = logging.getLogger(name)
    if not isinstance(logger, StructuredLogger):
        # Created before setLoggerClass() ran (e.g. by a third party);
        # swap the class so keyword fields are still accepted.
        logger.__class__ = StructuredLogger
    return cast(StructuredLogger, logger)
