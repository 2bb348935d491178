"""
Debug tracing for money calculations.

``@traced_engine`` wraps a quote function and logs one ``engine_traced``
record per call: which engine ran, a short fingerprint of the amounts and
dates it was given, and how long it took.  Two calls with numerically equal
inputs (``Decimal("100")`` and ``Decimal("100.00")``) share a fingerprint, so
a disputed discount can be matched to the quote that produced it.

    @traced_engine("discounting", "1.0", fingerprint_fields=("total", "percent"))
    def quote_offer(*, total, percent, due_date, early_payment_date): ...

Only keyword arguments are fingerprinted.  Inputs and results pass through
untouched.
"""

from __future__ import annotations

import functools
import hashlib
import time
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any

from financing_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        # 100, 100.00 and 1E+2 are the same amount
        return format(value.normalize(), "f")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """Hex prefix of the SHA-256 of ``field=value`` pairs, in field order."""
    canonical = "|".join(f"{name}={_canonical(kwargs.get(name))}" for name in fingerprint_fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            _logger.debug(
                "engine_traced",
                extra={
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__name__,
                    "input_fingerprint": compute_input_fingerprint(fingerprint_fields, kwargs),
                    "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                },
            )
            return result

        return wrapper

    return decorator
