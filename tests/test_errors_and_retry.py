import asyncio
import random

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from src.services.errors import USER_MESSAGES, AnalysisError, category_for, classify_error
from src.services.retry import backoff_delay_ms, execute_with_retry
from tests.fakes import no_sleep


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (AnalysisError("no_reviews", "empty"), "no_reviews"),
        (asyncio.TimeoutError(), "timeout"),
        (PlaywrightTimeoutError("Timeout 30000ms exceeded."), "timeout"),
        (ConnectionResetError("reset by peer"), "network"),
        (RuntimeError("Failed to launch chromium"), "browser_launch"),
        (RuntimeError("net::ERR_NAME_NOT_RESOLVED"), "navigation"),
        (RuntimeError("429 RESOURCE_EXHAUSTED"), "api"),
        (RuntimeError("review selector missing"), "scraping"),
        (RuntimeError("something odd"), "unknown"),
    ],
)
def test_errors_are_categorized(exc: BaseException, category: str) -> None:
    assert category_for(exc) == category


def test_fatal_categories_are_not_retryable() -> None:
    assert AnalysisError("validation", "bad url").retryable is False
    assert AnalysisError("no_reviews", "empty").retryable is False
    assert AnalysisError("navigation", "blocked").retryable is True
    assert AnalysisError("navigation", "blocked", retryable=False).retryable is False


def test_classify_error_builds_session_error() -> None:
    error = classify_error(AnalysisError("validation", "bad url"), "pending")

    assert error.category == "validation"
    assert error.retryable is False
    assert error.phase == "pending"
    assert error.user_message == USER_MESSAGES["validation"]
    assert error.session_duration_ms == 0


def test_classify_error_names_anonymous_errors() -> None:
    error = classify_error(RuntimeError(), "scraping")

    assert error.message == "RuntimeError"
    assert error.category == "unknown"
    assert error.retryable is True


def test_backoff_grows_and_caps() -> None:
    assert backoff_delay_ms(1, 1000, 15000, 0) == 1000
    assert backoff_delay_ms(3, 1000, 15000, 0) == 2250
    assert backoff_delay_ms(20, 1000, 15000, 0) == 15000
    assert 1000 <= backoff_delay_ms(1, 1000, 15000, 500, rng=random.Random(7)) <= 1500


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failures() -> None:
    calls = {"count": 0}
    delays: list[float] = []

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise RuntimeError("connection reset")
        return "ok"

    async def record(seconds: float) -> None:
        delays.append(seconds)

    result = await execute_with_retry(flaky, retries=2, base_ms=100, max_ms=1000, jitter_ms=0, sleep=record)

    assert result == "ok"
    assert delays == [0.1, 0.15]


@pytest.mark.asyncio
async def test_non_retryable_errors_are_raised_immediately() -> None:
    calls = {"count": 0}

    async def invalid() -> None:
        calls["count"] += 1
        raise AnalysisError("no_reviews", "nothing here")

    with pytest.raises(AnalysisError):
        await execute_with_retry(invalid, retries=3, sleep=no_sleep)

    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_last_error_is_raised_when_budget_is_spent() -> None:
    calls = {"count": 0}

    async def broken() -> None:
        calls["count"] += 1
        raise AnalysisError("navigation", f"attempt {calls['count']}")

    with pytest.raises(AnalysisError, match="attempt 2"):
        await execute_with_retry(broken, retries=1, sleep=no_sleep)
