"""
invoice_engines.tracer -- ``@traced_engine`` decorator for pure engine calls.

Each decorated call emits one DEBUG record, ``INVOICE_ENGINE_TRACE``, carrying
the engine name and version, a short fingerprint of the selected arguments and
the wall-clock duration.  The decorator never touches the arguments or the
result, so engines stay pure.

The fingerprint reuses the audit trail's canonical JSON, so two calls with the
same invoice snapshot produce the same fingerprint regardless of how the
Decimal amounts were scaled when loaded.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from invoice_kernel.logging_config import get_logger
from invoice_kernel.utils.hashing import canonicalize_json

_logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """SHA-256 prefix over the named arguments; absent ones count as null."""
    selected = {name: _plain(arguments.get(name)) for name in fingerprint_fields}
    digest = hashlib.sha256(canonicalize_json(selected).encode("utf-8"))
    return digest.hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.monotonic() - started) * 1000, 2)

            if _logger.isEnabledFor(logging.DEBUG):
                fingerprint = ""
                if fingerprint_fields:
                    bound = signature.bind_partial(*args, **kwargs)
                    fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)
                _logger.debug(
                    "INVOICE_ENGINE_TRACE",
                    extra={
                        "trace_type": "INVOICE_ENGINE_TRACE",
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": elapsed_ms,
                        "function": func.__qualname__,
                    },
                )
            return result

        return wrapper

    return decorator
