"""
Structured JSON logging for the warehouse kernel.

Every kernel module logs through ``get_logger(__name__-ish)`` so all records
land under the ``warehouse_kernel`` hierarchy.  Records are rendered as one
JSON object per line by ``StructuredFormatter``; request-scoped fields
(correlation id, acting user, document or count being processed) are held in
``LogContext`` and merged into every record emitted while they are bound.

Services pass their structured payload through ``extra={...}``.  Kernel
exceptions raised with ``exc_info`` contribute their ``code`` and public
attributes as ``exc_*`` keys, so a rejected confirmation can be filtered on
``exc_code == "INSUFFICIENT_STOCK"`` without parsing messages.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

_NAMESPACE = "warehouse_kernel"

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("warehouse_log_context", default=_EMPTY)


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    FIELDS = frozenset({
        "correlation_id",
        "actor_id",
        "document_id",
        "count_id",
        "operation",
        "trace_id",
    })

    @classmethod
    def _merged(cls, fields: Mapping[str, Any]) -> Mapping[str, str]:
        unknown = set(fields) - cls.FIELDS
        if unknown:
            raise KeyError(f"Unknown log context field: {', '.join(sorted(unknown))}")
        current = dict(_context.get())
        current.update({k: str(v) for k, v in fields.items() if v is not None})
        return MappingProxyType(current)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields for the rest of the current context. None values are ignored."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block, then restore."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}

# Exception attributes that are not useful as structured fields.
_SKIPPED_EXC_ATTRS = frozenset({"args", "code", "result"})


def _to_json(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name in _SKIPPED_EXC_ATTRS:
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                entry.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger for ``warehouse_kernel.<name>``."""
    return logging.getLogger(f"{_NAMESPACE}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``warehouse_kernel`` logger.

    Only the first call has any effect; later calls (one per engine or
    facade construction) are no-ops.  Records do not propagate to the root
    logger, so host applications see kernel output only through this handler.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

        kernel_logger = logging.getLogger(_NAMESPACE)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())
        kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` to run again. Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
        kernel_logger = logging.getLogger(_NAMESPACE)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
