"""
Structured JSON logging for the receivables engine.

Every logger lives under the ``receivables`` namespace and every record is
emitted as one JSON object per line.  Request-scoped fields (who is acting,
on which receipt or document, inside which operation) are held in context
variables by ``LogContext`` and merged into each record, so a lifecycle
service binds them once and every kernel log line inherits them.

Exceptions logged with ``exc_info`` contribute ``exc_type``,
``exc_message``, ``exc_code`` and one ``exc_<field>`` entry per public
attribute of the exception (``exc_locked_periods``, ``exc_expected_version``).
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "receivables"

_CONTEXT_FIELDS = ("correlation_id", "actor_id", "operation", "entity_id", "trace_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"receivables_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """Context-variable backed fields merged into every log record."""

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set the given fields; ``None`` values leave the field untouched."""
        for name, value in fields.items():
            if value is not None and name in _context_vars:
                _context_vars[name].set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        values = {name: var.get() for name, var in _context_vars.items()}
        return {name: value for name, value in values.items() if value is not None}

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any):
        """
        Set fields for the duration of a ``with`` block.

        Previous values are restored on exit, so nested binds (bulk approve
        calling approve) keep the outer operation's context afterwards.
        """
        tokens = [
            (_context_vars[name], _context_vars[name].set(str(value)))
            for name, value in fields.items()
            if value is not None and name in _context_vars
        ]
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


def get_logger(name: str) -> logging.Logger:
    """Logger ``receivables.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            for key, value in vars(exc).items():
                if not key.startswith("_") and key != "code":
                    payload[f"exc_{key}"] = value
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


_configure_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``receivables`` logger once per process."""
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False
    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Undo ``configure_logging``. Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
