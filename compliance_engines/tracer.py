"""
compliance_engines.tracer -- Engine invocation tracer emitting COMPLIANCE_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps pure engine calls with a structured trace log
    record carrying engine_name, engine_version, input_fingerprint (a
    deterministic SHA-256 prefix over selected kwargs) and duration_ms.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log
    record only; never mutates inputs.

Failure modes:
    - Fingerprint fields missing from kwargs are recorded as "null".
    - Unknown value types fall back to ``str(value)``.

Audit relevance:
    The fingerprint lets a reviewer confirm that a stored penalty was
    produced from a specific rule and day count.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from compliance_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    """Stable string form of a value for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    if isinstance(value, (set, frozenset)):
        return "[" + ",".join(sorted(_canonicalize(v) for v in value)) + "]"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize({f.name: getattr(value, f.name) for f in dataclasses.fields(value)})
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16-hex-char SHA-256 prefix over the named kwargs."""
    parts = [f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits COMPLIANCE_ENGINE_TRACE for engine invocations.

    Only keyword arguments are fingerprinted, so engines are called with
    keywords at their public entry points.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "COMPLIANCE_ENGINE_TRACE",
                extra={
                    "trace_type": "COMPLIANCE_ENGINE_TRACE",
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
