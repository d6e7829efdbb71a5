"""Shared utilities for liveupdate."""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog


@asynccontextmanager
async def timed_stage(
    stage: str,
    log: structlog.stdlib.BoundLogger,
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Time one pipeline stage and log how it ended.

    A clean exit logs ``update_stage_finished``. An exception logs
    ``update_stage_failed`` with the error and is re-raised unchanged, so the
    caller still decides what the failure means for the run.

    The yielded dict receives ``elapsed_ms`` once the block exits.
    """
    start = time.perf_counter()
    timing: dict[str, Any] = {}
    try:
        yield timing
    except Exception as exc:
        timing["elapsed_ms"] = _elapsed_ms(start)
        log.warning(
            "update_stage_failed",
            stage=stage,
            duration_ms=timing["elapsed_ms"],
            error=str(exc),
            **context,
        )
        raise
    timing["elapsed_ms"] = _elapsed_ms(start)
    log.info("update_stage_finished", stage=stage, duration_ms=timing["elapsed_ms"], **context)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
