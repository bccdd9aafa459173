"""
ledger_engines.tracer -- invocation tracing for pure engines.

``@traced_engine`` wraps an engine entry point and logs one
LEDGER_ENGINE_TRACE record per call: engine name and version, a fingerprint
of the selected keyword inputs, and the duration.  Two calls with equal
inputs log the same fingerprint, which is how a suggestion can be tied back
to the exact data it was computed from.

The decorator only reads kwargs and logs; engine purity is unaffected.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import json
import time
from collections.abc import Callable
from typing import Any, TypeVar

from ledger_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

F = TypeVar("F", bound=Callable[..., Any])


def _plain(value: Any) -> Any:
    """JSON fallback: dataclasses become dicts, everything else its str()."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return str(value)


def compute_input_fingerprint(fingerprint_fields: tuple[str, ...], kwargs: dict[str, Any]) -> str:
    """
    First 16 hex digits of the SHA-256 of the canonical JSON of the fields.

    Dict keys are sorted; sequence order is kept, so callers that want an
    order-insensitive fingerprint must sort first.  Missing fields hash as
    null.
    """
    selected = {name: kwargs.get(name) for name in fingerprint_fields}
    canonical = json.dumps(selected, sort_keys=True, default=_plain, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[F], F]:
    """Decorate an engine entry point; call it with keyword arguments."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
            started = time.monotonic()
            result = func(*args, **kwargs)
            _logger.info(
                "LEDGER_ENGINE_TRACE",
                extra={
                    "trace_type": "LEDGER_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
