"""
Structured JSON logging for the compliance engine.

Responsibility:
    One JSON object per log line, carrying the pass/client/entry that was
    being processed when the line was written, so a single calendar entry
    can be followed through generation, re-evaluation and filing.

Architecture position:
    Kernel -- imported by every layer.  Only ``compliance_kernel.*`` loggers
    are configured; the host application's root logger is left alone.

Usage:
    logger = get_logger("services.calendar")

    with LogContext.bind(client_id=str(client_id)):
        logger.info("entry_created", extra={"period_code": "JAN-2025"})

    -> {"ts": "...", "level": "INFO", "logger": "compliance_kernel.services.calendar",
        "message": "entry_created", "client_id": "...", "period_code": "JAN-2025"}
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "compliance_kernel"

_CONTEXT_FIELDS = ("correlation_id", "client_id", "entry_id", "pass_id", "trace_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"compliance_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _context_vars[name]
    except KeyError:
        raise TypeError(
            f"Unknown log context field '{name}'; expected one of {_CONTEXT_FIELDS}"
        ) from None


# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """Pass-scoped log fields held in contextvars.

    Worker threads do not inherit contextvars; the pass executor re-binds
    the fields it needs inside each partition.
    """

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set the given fields; ``None`` values leave the current value."""
        for name, value in fields.items():
            if value is not None:
                _context_var(name).set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens = [
            (_context_var(name), _context_var(name).set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message, ``code`` and structured attributes of engine errors."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each record as a single JSON line.

    Key order: ts, level, logger, message, context fields, ``extra`` fields,
    exception fields.  Context wins over an ``extra`` key of the same name.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RESERVED_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``compliance_kernel`` namespace, e.g. ``engines.penalty``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_setup_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``compliance_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``.
    """
    global _configured
    with _setup_lock:
        if _configured:
            return
        _configured = True

        engine_logger = logging.getLogger(_LOGGER_PREFIX)
        engine_logger.setLevel(level)
        engine_logger.propagate = False

        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())
        engine_logger.addHandler(handler)


def reset_logging() -> None:
    """Detach handlers and allow ``configure_logging()`` again.  Tests only."""
    global _configured
    with _setup_lock:
        _configured = False
        engine_logger = logging.getLogger(_LOGGER_PREFIX)
        engine_logger.handlers.clear()
        engine_logger.setLevel(logging.WARNING)
