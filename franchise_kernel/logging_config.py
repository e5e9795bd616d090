"""
Structured JSON logging for the franchise kernel.

Every logger lives under the ``franchise_kernel`` namespace (see
``get_logger``) and writes one JSON object per line.  Each line carries the
envelope (ts, level, logger, message), the bound ``LogContext`` fields
(correlation id, actor, obligation, sweep scope, trace id) and whatever the
caller passed through ``extra=``.  Kernel exceptions logged with
``exc_info`` also contribute their ``code`` and attributes as ``exc_*``
fields, so a failed sweep scope can be traced from its log line alone.
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
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from typing import Any

_LOGGER_PREFIX = "franchise_kernel"

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = ("correlation_id", "actor_id", "obligation_id", "scope", "trace_id")

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Request-scoped log fields, safe across threads and asyncio tasks.

    Only the names in ``_CONTEXT_FIELDS`` are tracked; other keyword
    arguments to ``bind`` are ignored.
    """

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields.  None values leave the field untouched."""
        for name, value in fields.items():
            if name not in _context:
                raise TypeError(f"Unknown log context field: {name}")
            if value is not None:
                _context[name].set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: var.get() for name, var in _context.items() if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: str | None) -> "_BoundContext":
        """Context manager: set fields on entry, restore previous values on exit."""
        return _BoundContext(fields)


class _BoundContext:

    def __init__(self, fields: dict[str, str | None]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar, Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _context.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(value)))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else on a record came from extra=.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    """json.dumps fallback: ISO dates, UUID and Decimal as strings, else str()."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            for key, value in vars(exc).items():
                if not key.startswith("_") and key not in ("args", "code"):
                    payload[f"exc_{key}"] = value
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger ``franchise_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``franchise_kernel`` logger.

    Idempotent: only the first call after import (or after
    ``reset_logging``) has any effect.  The kernel logger does not
    propagate to the root logger.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False

    handler = handler or logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers and return to WARNING.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
