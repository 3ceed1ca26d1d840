"""
Lightweight observability utilities.

Why this exists
---------------
Conversational assessments fail in non-obvious ways:
- slow model calls
- retries hidden inside SDKs
- streams abandoned by disconnecting clients
- extraction replies that do not match the schema

This module provides execution tracing so that every model call, rule
evaluation and dialogue turn produces a structured latency record.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger("lemon_law.trace")


@contextmanager
def trace_span(name: str, **metadata: Any) -> Iterator[dict[str, Any]]:
    """
    Measure execution duration of a critical operation.

    Wraps:
    - language model calls (streaming and non-streaming)
    - rule evaluation
    - dialogue turn boundaries

    The yielded dict is the span's metadata; callers may add outcome fields
    (``span["next_step"] = "ASSESS"``) before the block exits.

    Example log:
    [TRACE] rule_evaluation duration_ms=0.42 status=ok manufacturer=Ford qualified=True

    Guarantees
    ----------
    - Always logs completion (even if exception occurs or the block is cancelled)
    - Never suppresses exceptions
    - Produces structured key=value logs
    """
    start = time.perf_counter()
    status = "ok"
    try:
        yield metadata
    except BaseException as e:
        status = type(e).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000

        meta = " ".join(f"{k}={v}" for k, v in metadata.items())
        logger.info("[TRACE] %s duration_ms=%.2f status=%s %s", name, duration_ms, status, meta)
