"""
Trace logging for fee calculations.

``@traced_engine`` logs one BILLING_ENGINE_TRACE record per call of a
decorated fee function.  The record names the engine and its version,
carries a short fingerprint of the monetary inputs and the call duration,
so two runs that billed a franchise differently can be told apart by their
inputs without logging the amounts themselves.

The decorator only reads arguments and writes a log line; the decorated
functions stay pure.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal
from typing import Any

from franchise_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

TRACE_TYPE = "BILLING_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16


def _stable_repr(value: Any) -> str:
    # Decimal("8.0") and Decimal("8.00") fingerprint the same.
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, Mapping):
        return "{" + ",".join(f"{k}:{_stable_repr(value[k])}" for k in sorted(value)) + "}"
    if isinstance(value, Sequence) and not isinstance(value, str):
        return "[" + ",".join(_stable_repr(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """
    First 16 hex characters of the SHA-256 of ``name=value`` pairs.

    Fields absent from ``arguments`` hash as ``null``.
    """
    canonical = "|".join(
        f"{name}={_stable_repr(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[Callable], Callable]:
    """
    Wrap a fee function so each call logs a BILLING_ENGINE_TRACE record.

    ``fingerprint_fields`` names the parameters (passed positionally or by
    keyword) that go into ``input_fingerprint``; defaults the caller left
    out are not filled in.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                fingerprint = compute_input_fingerprint(
                    fingerprint_fields, signature.bind_partial(*args, **kwargs).arguments
                )

            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000

            logger.info(
                TRACE_TYPE,
                extra={
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__qualname__,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round(elapsed_ms, 3),
                },
            )
            return result

        return wrapper

    return decorator
