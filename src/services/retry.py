from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from src.services.errors import AnalysisError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay_ms(attempt: int, base_ms: int, max_ms: int, jitter_ms: int, rng: random.Random | None = None) -> float:
    """Delay before retry ``attempt`` (1-based): capped 1.5x growth plus uniform jitter."""
    rng = rng or random
    capped = min(base_ms * 1.5 ** (attempt - 1), max_ms)
    return capped + rng.uniform(0, max(0, jitter_ms))


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int,
    base_ms: int = 2000,
    max_ms: int = 15000,
    jitter_ms: int = 1000,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``retries + 1`` times.

    Errors marked non-retryable are raised immediately; the last error is
    raised once the budget is spent.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except AnalysisError as exc:
            if not exc.retryable or attempt >= retries:
                raise
            error: Exception = exc
        except Exception as exc:  # noqa: BLE001
            if attempt >= retries:
                raise
            error = exc

        attempt += 1
        delay_ms = backoff_delay_ms(attempt, base_ms, max_ms, jitter_ms)
        LOGGER.warning("%s failed (attempt %s/%s), retrying in %.0fms: %s", label, attempt, retries + 1, delay_ms, error)
        await sleep(delay_ms / 1000)
