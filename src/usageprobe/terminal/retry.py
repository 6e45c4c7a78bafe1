import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

from usageprobe.errors import RETRYABLE_CAPTURE_ERRORS
from usageprobe.models import TerminalGeometry

logger = structlog.get_logger()

T = TypeVar("T")

WIDE_ROWS = 70
WIDE_COLS = 220
WIDE_MIN_TIMEOUT = 24.0
RETRY_DELAY_SECONDS = 0.25


def widened(geometry: "TerminalGeometry") -> "TerminalGeometry":
    """
    the geometry for the single retry: at least 70x220 and a timeout
    of at least 24 seconds.
    """
    return TerminalGeometry(
        rows=max(geometry.rows, WIDE_ROWS),
        cols=max(geometry.cols, WIDE_COLS),
        timeout=max(geometry.timeout, WIDE_MIN_TIMEOUT),
    )


def is_larger(candidate: "TerminalGeometry", current: "TerminalGeometry") -> "bool":
    if candidate.rows < current.rows or candidate.cols < current.cols:
        return False
    return (candidate.rows, candidate.cols) != (current.rows, current.cols)


async def capture_with_retry(
    attempt: "Callable[[TerminalGeometry], Awaitable[T]]",
    geometry: "TerminalGeometry",
    provider: "str",
    on_retry: "Callable[[], None] | None" = None,
    retry_delay: "float" = RETRY_DELAY_SECONDS,
) -> "T":
    """
    runs attempt (capture and parse) once. A parse failure or timeout
    on the smaller geometry gets exactly one more try on a strictly
    larger terminal with a longer timeout; whatever that second try
    raises is final.
    """
    try:
        return await attempt(geometry)
    except RETRYABLE_CAPTURE_ERRORS as e:
        wider = widened(geometry)
        if not is_larger(wider, geometry):
            raise
        logger.info(
            "terminal_capture_retry",
            provider=provider,
            reason=e.kind,
            rows=wider.rows,
            cols=wider.cols,
            timeout=wider.timeout,
        )
        if on_retry is not None:
            on_retry()
        await asyncio.sleep(retry_delay)
    return await attempt(wider)
