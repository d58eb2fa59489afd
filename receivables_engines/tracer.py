"""
receivables_engines.tracer -- Engine invocation tracer emitting RECEIVABLES_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps pure engine calls with one structured trace
    record carrying engine_name, engine_version, a deterministic input
    fingerprint and duration_ms.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; never touches the database or the clock used by services.

Invariants enforced:
    - Fingerprints are deterministic: values are canonicalized (sorted dict
      keys, Decimal/UUID/enum by string value) and hashed with SHA-256,
      truncated to 16 hex chars.
    - The decorator never mutates inputs or the result.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from receivables_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    """Stable string form of ``value`` for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize(
            {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        )
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """16-char SHA-256 prefix over the named arguments.  Missing ones are "null"."""
    parts = [f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits RECEIVABLES_ENGINE_TRACE for an engine method.

    Positional and keyword arguments are both visible to the fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, dict(bound.arguments))

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.debug(
                "RECEIVABLES_ENGINE_TRACE",
                extra={
                    "trace_type": "RECEIVABLES_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
