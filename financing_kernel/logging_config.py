"""
Structured JSON logging for the financing engine.

Every record is rendered as one JSON object per line:

    {"ts": ..., "level": "INFO", "logger": "financing_kernel.services.orchestrator",
     "message": "operation_committed", "correlation_id": ..., "invoice_id": ...,
     "operation": "accept_offer", "invoice_status": "accepted", "version": 3}

Request-scoped fields (correlation, invoice, actor, operation) live in
contextvars so threads and sweeps running side by side never mix them.
Messages are snake_case event names; detail goes in ``extra``.
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
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_ROOT_LOGGER = "financing_kernel"

_CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"financing_log_{name}", default=None)
    for name in ("correlation_id", "invoice_id", "actor_id", "actor_role", "operation")
}


class LogContext:
    """Request-scoped log fields shared by every logger in the current context."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Set fields for the rest of the current context. None values are ignored."""
        for name, value in fields.items():
            if value is not None:
                _CONTEXT_FIELDS[name].set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: var.get()
            for name, var in _CONTEXT_FIELDS.items()
            if var.get() is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT_FIELDS.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens: list[tuple[ContextVar[str | None], Token]] = [
            (_CONTEXT_FIELDS[name], _CONTEXT_FIELDS[name].set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Flatten an exception into ``exc_*`` keys, including kernel error attributes."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name != "code" and not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``financing_kernel`` hierarchy, e.g. ``get_logger("batch.executor")``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


_configure_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``financing_kernel`` logger. Later calls are no-ops."""
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo configure_logging(). Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(_ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
