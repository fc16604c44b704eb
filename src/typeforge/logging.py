"""Structured logging for typeforge.

This module provides consistent, structured logging across the compiler,
the dependency resolver and the wrapper generators. It supports both
human-readable and JSON output formats.

Library loggers install no handlers of their own; call configure_logging()
to send typeforge records to stderr.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ROOT_LOGGER = "typeforge"

logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())


class LogFormat(Enum):
    """Log output format."""

    TEXT = "text"
    JSON = "json"


@dataclass
class LogContext:
    """Context information for structured logging."""

    component: str = ""
    operation: str = ""
    session: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def with_extra(self, **kwargs: Any) -> "LogContext":
        """Create new context with additional fields."""
        return LogContext(
            component=self.component,
            operation=self.operation,
            session=self.session,
            extra={**self.extra, **kwargs},
        )


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        ctx = getattr(record, "context", None)
        if isinstance(ctx, LogContext):
            if ctx.component:
                log_data["component"] = ctx.component
            if ctx.operation:
                log_data["operation"] = ctx.operation
            if ctx.session:
                log_data["session"] = ctx.session
            if ctx.extra:
                log_data.update({k: str(v) for k, v in ctx.extra.items()})

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Formatter that outputs human-readable logs with context."""

    def format(self, record: logging.LogRecord) -> str:
        prefix_parts = []

        ctx = getattr(record, "context", None)
        if isinstance(ctx, LogContext):
            if ctx.component:
                prefix_parts.append(f"[{ctx.component}]")
            if ctx.operation:
                prefix_parts.append(f"({ctx.operation})")
            if ctx.session:
                prefix_parts.append(f"session:{ctx.session[:8]}")

        prefix = " ".join(prefix_parts)
        if prefix:
            prefix = f"{prefix} "

        base = super().format(record)

        extra_str = ""
        if isinstance(ctx, LogContext) and ctx.extra:
            extra_str = " " + " ".join(f"{k}={v}" for k, v in ctx.extra.items())

        return f"{prefix}{base}{extra_str}"


class ForgeLogger:
    """Structured logger for typeforge components."""

    def __init__(self, name: str, level: int = logging.NOTSET):
        """Initialize the logger.

        Args:
            name: Component name, e.g. "compiler"
            level: Logging level; NOTSET defers to the "typeforge" root logger
        """
        self._logger = logging.getLogger(f"{ROOT_LOGGER}.{name}")
        if level != logging.NOTSET:
            self._logger.setLevel(level)
        self._context = LogContext(component=name)

    def _derive(self, context: LogContext) -> "ForgeLogger":
        new_logger = ForgeLogger.__new__(ForgeLogger)
        new_logger._logger = self._logger
        new_logger._context = context
        return new_logger

    def with_context(self, **kwargs: Any) -> "ForgeLogger":
        """Create a new logger with additional context fields."""
        return self._derive(self._context.with_extra(**kwargs))

    def with_operation(self, operation: str) -> "ForgeLogger":
        """Create a new logger for a specific operation."""
        return self._derive(
            LogContext(
                component=self._context.component,
                operation=operation,
                session=self._context.session,
                extra=self._context.extra,
            )
        )

    def with_session(self, session: str) -> "ForgeLogger":
        """Create a new logger bound to one generation session."""
        return self._derive(
            LogContext(
                component=self._context.component,
                operation=self._context.operation,
                session=session,
                extra=self._context.extra,
            )
        )

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "(unknown file)",
            0,
            msg,
            (),
            None,
        )
        record.context = self._context.with_extra(**kwargs) if kwargs else self._context
        self._logger.handle(record)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, **kwargs)

    @contextmanager
    def timed(self, operation: str, **kwargs: Any):
        """Context manager for timing operations.

        Args:
            operation: Name of the operation being timed
            **kwargs: Additional context fields

        Yields:
            Dict where 'elapsed_ms' will be set after completion
        """
        start = time.perf_counter()
        result: dict[str, Any] = {}
        try:
            yield result
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            result["elapsed_ms"] = elapsed_ms
            self.debug(
                f"{operation} completed",
                operation=operation,
                elapsed_ms=f"{elapsed_ms:.2f}",
                **kwargs,
            )


_loggers: dict[str, ForgeLogger] = {}


def get_logger(name: str) -> ForgeLogger:
    """Get or create a logger for a component.

    Args:
        name: Component name

    Returns:
        ForgeLogger instance
    """
    if name not in _loggers:
        _loggers[name] = ForgeLogger(name)
    return _loggers[name]


def configure_logging(
    level: int = logging.INFO,
    log_format: LogFormat = LogFormat.TEXT,
) -> None:
    """Configure the typeforge root logger.

    Args:
        level: Logging level for all typeforge components
        log_format: Output format
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if log_format == LogFormat.JSON:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter("%(asctime)s %(levelname)s %(message)s"))

    root.addHandler(handler)
