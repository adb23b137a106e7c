"""Shared utilities for Napoleon AI."""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog


@asynccontextmanager
async def timed_operation(
    name: str,
    log: structlog.stdlib.BoundLogger | None = None,
    **extra: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Measure elapsed time for an async block.

    Usage::

        async with timed_operation("analysis_completed", log=log) as timing:
            result = await compute()
        timing["elapsed_ms"]

    Args:
        name: Event name logged on exit.
        log: Optional structlog logger; when given, an info-level event
             carrying ``duration_ms`` is emitted on exit.
        **extra: Additional context forwarded to the log call. Keys added
             to the yielded dict inside the block are logged as well.

    Yields:
        A mutable dict that holds ``elapsed_ms`` after the block exits.
    """
    start = time.perf_counter()
    result: dict[str, Any] = {}
    try:
        yield result
    finally:
        result["elapsed_ms"] = round((time.perf_counter() - start) * 1000, 2)
        if log:
            context = {k: v for k, v in result.items() if k != "elapsed_ms"}
            log.info(name, **{**extra, **context, "duration_ms": result["elapsed_ms"]})
