"""
Module: invoice_kernel.logging_config
Responsibility: JSON log lines for every invoice engine event, with
    request-scoped fields (correlation, invoice, company, actor, batch)
    attached automatically.
Architecture position: Kernel.  Imported by every layer; imports nothing
    from the project.

Invariants enforced:
    - One JSON object per line, keys ``ts``, ``level``, ``logger``,
      ``message`` always present.
    - Bound context never leaks past the ``LogContext.bind`` block that set it.
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
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

_LOGGER_PREFIX = "invoice_kernel"

_CONTEXT_FIELDS = frozenset(
    {"correlation_id", "invoice_id", "company_id", "actor_id", "batch_id"}
)

_EMPTY: Mapping[str, str] = MappingProxyType({})

_bound: ContextVar[Mapping[str, str]] = ContextVar("invoice_log_context", default=_EMPTY)


def _merged(fields: dict[str, Any]) -> Mapping[str, str]:
    unknown = set(fields) - _CONTEXT_FIELDS
    if unknown:
        raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
    current = dict(_bound.get())
    current.update({k: str(v) for k, v in fields.items() if v is not None})
    return MappingProxyType(current)


class LogContext:
    """
    Request-scoped log fields, safe across threads and asyncio tasks.

    The fields live in one ContextVar holding an immutable mapping, so a
    ``bind`` block restores exactly what was visible before it.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Overwrite the given fields for the rest of the current context."""
        _bound.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound.get())

    @staticmethod
    def clear() -> None:
        _bound.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        token = _bound.set(_merged(fields))
        try:
            yield
        finally:
            _bound.reset(token)


_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # InvoiceEngineError subclasses carry their structured attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: fixed keys, bound context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_bound.get(),
        }
        line.update(
            (k, v) for k, v in vars(record).items() if k not in _RESERVED and k not in line
        )
        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)
        return json.dumps(line, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.lifecycle")`` -> ``invoice_kernel.services.lifecycle``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_state_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``invoice_kernel`` logger.  Later calls are no-ops."""
    global _installed
    with _state_lock:
        if _installed is not None:
            return
        _installed = handler or logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())

        package_logger = logging.getLogger(_LOGGER_PREFIX)
        package_logger.setLevel(level)
        package_logger.propagate = False
        package_logger.addHandler(_installed)


def reset_logging() -> None:
    """Detach every handler and forget the configuration.  Tests only."""
    global _installed
    with _state_lock:
        _installed = None
        package_logger = logging.getLogger(_LOGGER_PREFIX)
        package_logger.handlers.clear()
        package_logger.setLevel(logging.WARNING)
