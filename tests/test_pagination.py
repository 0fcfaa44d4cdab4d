import pytest

from src.models.collection import PaginationAttempt
from src.scraper.pagination import PaginationConfig, PaginationEngine
from src.scraper.selectors import SELECTOR_PATTERNS
from tests.fakes import FakeClock, FakePage, make_review


def _growing(step: int, limit: int | None = None):
    state = {"calls": 0}

    async def extract():
        state["calls"] += 1
        count = step * state["calls"]
        if limit is not None:
            count = min(count, limit)
        return [make_review(f"user{i}", 4, f"review text {i}") for i in range(count)]

    return extract


def _attempt(response_ms: int, success: bool) -> PaginationAttempt:
    return PaginationAttempt(
        attempt=1,
        method="scroll",
        reviews_before=0,
        reviews_after=1 if success else 0,
        response_time_ms=response_ms,
        success=success,
    )


def test_config_defaults_scale_with_target() -> None:
    small = PaginationConfig(target_count=20)
    large = PaginationConfig(target_count=80)

    assert small.timeout_ms == 300_000
    assert small.stagnation_threshold == 15
    assert small.progressive_timeout is False
    assert small.memory_optimization is False
    assert large.timeout_ms == 600_000
    assert large.progressive_timeout is True
    assert large.memory_optimization is True
    assert PaginationConfig(target_count=10, max_attempts=8).stagnation_threshold == 3


@pytest.mark.asyncio
async def test_stops_when_target_reached() -> None:
    page = FakePage()

    result = await PaginationEngine().paginate_for_target(page, PaginationConfig(target_count=12), _growing(5))

    assert result.stopped_reason == "target-reached"
    assert result.reviews_collected == 15
    assert len(result.attempts) == 2
    assert result.stats.pages_traversed == 2
    assert page.scrolls > 0


@pytest.mark.asyncio
async def test_initial_extraction_can_satisfy_target() -> None:
    result = await PaginationEngine().paginate_for_target(FakePage(), PaginationConfig(target_count=3), _growing(5))

    assert result.stopped_reason == "target-reached"
    assert result.attempts == []


@pytest.mark.asyncio
async def test_stagnation_stops_exactly_at_threshold() -> None:
    config = PaginationConfig(target_count=50, max_attempts=20)

    result = await PaginationEngine().paginate_for_target(FakePage(), config, _growing(3, limit=3))

    assert config.stagnation_threshold == 5
    assert result.stopped_reason == "stagnation"
    assert len(result.attempts) == 5
    assert result.stats.stagnation_detected is True
    assert result.reviews_collected == 3


@pytest.mark.asyncio
async def test_failing_cycles_end_in_stagnation() -> None:
    calls = {"count": 0}

    async def flaky():
        calls["count"] += 1
        if calls["count"] > 1:
            raise RuntimeError("extract failed")
        return [make_review("a", 5, "fine"), make_review("b", 4, "ok")]

    config = PaginationConfig(target_count=10, max_attempts=12, stagnation_threshold=3)

    result = await PaginationEngine().paginate_for_target(FakePage(), config, flaky)

    assert result.stopped_reason == "stagnation"
    assert result.error is None
    assert len(result.attempts) == 3
    assert [attempt.error for attempt in result.attempts] == ["extract failed"] * 3
    assert result.reviews_collected == 2


@pytest.mark.asyncio
async def test_failure_outside_a_cycle_stops_with_error() -> None:
    def broken_memory_reading() -> float:
        raise RuntimeError("memory reading unavailable")

    engine = PaginationEngine(memory_probe=broken_memory_reading)

    result = await engine.paginate_for_target(FakePage(), PaginationConfig(target_count=10), _growing(2))

    assert result.stopped_reason == "error"
    assert result.error == "memory reading unavailable"
    assert result.reviews_collected == 4


@pytest.mark.parametrize(
    ("initial", "expected_attempts", "extended"),
    [(9, 5, True), (6, 4, True), (2, 3, False)],
)
@pytest.mark.asyncio
async def test_progressive_deadline_follows_progress(initial: int, expected_attempts: int, extended: bool) -> None:
    clock = FakeClock()
    reviews = [make_review(f"user{i}", 4, f"review text {i}") for i in range(initial)]
    calls = {"count": 0}

    async def slow_extract():
        calls["count"] += 1
        if calls["count"] > 1:
            clock.advance(0.35)
        return reviews

    config = PaginationConfig(
        target_count=10,
        max_attempts=20,
        timeout_ms=1000,
        stagnation_threshold=20,
        progressive_timeout=True,
    )

    result = await PaginationEngine(clock=clock).paginate_for_target(FakePage(), config, slow_extract)

    assert result.stopped_reason == "timeout"
    assert len(result.attempts) == expected_attempts
    assert result.stats.progressive_timeout_used is extended


@pytest.mark.asyncio
async def test_deadline_stops_with_timeout() -> None:
    config = PaginationConfig(target_count=10, timeout_ms=1000)
    engine = PaginationEngine(clock=FakeClock(step=0.6))

    result = await engine.paginate_for_target(FakePage(), config, _growing(1))

    assert result.stopped_reason == "timeout"
    assert len(result.attempts) == 1


@pytest.mark.asyncio
async def test_attempt_budget_ends_with_no_more_content() -> None:
    config = PaginationConfig(target_count=50, max_attempts=2)

    result = await PaginationEngine().paginate_for_target(FakePage(), config, _growing(1))

    assert result.stopped_reason == "no-more-content"
    assert len(result.attempts) == 2


@pytest.mark.asyncio
async def test_memory_cleanup_runs_every_ten_cycles_for_large_targets() -> None:
    page = FakePage()
    config = PaginationConfig(target_count=100, max_attempts=10)

    result = await PaginationEngine(memory_probe=lambda: 123.0).paginate_for_target(page, config, _growing(1))

    assert result.stats.memory_cleanup_count == 1
    assert page.garbage_collections == 1
    assert result.attempts[-1].memory_mb == 123.0


def test_cycle_params_adapt_to_response_times() -> None:
    engine = PaginationEngine()
    config = PaginationConfig(target_count=50)

    slow = engine.next_cycle_params(config, [_attempt(4000, True)] * 5, 1500, 10)
    fast = engine.next_cycle_params(config, [_attempt(200, True)] * 5, 1500, 10)
    steady = engine.next_cycle_params(config, [_attempt(2000, True)] * 5, 1500, 10)

    assert (slow.adjustment, slow.scroll_px, slow.delay_ms, slow.scroll_count) == ("slow-down", 600, 2250, 2)
    assert (fast.adjustment, fast.scroll_px, fast.delay_ms, fast.scroll_count) == ("speed-up", 1500, 1200, 4)
    assert (steady.adjustment, steady.delay_ms, steady.scroll_count) == ("none", 1500, 3)


def test_cycle_params_respect_bounds_and_long_feeds() -> None:
    engine = PaginationEngine()
    config = PaginationConfig(target_count=200)

    capped = engine.next_cycle_params(config, [_attempt(100, False)] * 5, 3500, 10)
    floored = engine.next_cycle_params(config, [_attempt(100, True)] * 5, 1100, 10)
    long_feed = engine.next_cycle_params(config, [], 1500, 150)

    assert capped.delay_ms == 4000
    assert floored.delay_ms == 1000
    assert long_feed.scroll_px == 800


def test_fixed_strategies_force_adjustment() -> None:
    engine = PaginationEngine()

    aggressive = engine.next_cycle_params(PaginationConfig(target_count=10, scroll_strategy="aggressive"), [], 1500, 0)
    conservative = engine.next_cycle_params(
        PaginationConfig(target_count=10, scroll_strategy="conservative"), [], 1500, 0
    )

    assert aggressive.adjustment == "speed-up"
    assert conservative.adjustment == "slow-down"


@pytest.mark.asyncio
async def test_detects_pagination_method() -> None:
    load_more = SELECTOR_PATTERNS["LOAD_MORE"][0]
    scroller = SELECTOR_PATTERNS["SCROLL_CONTAINER"][0]
    engine = PaginationEngine()

    assert await engine.detect_pagination_method(FakePage()) == "scroll"
    assert await engine.detect_pagination_method(FakePage(counts={load_more: 1})) == "click"
    assert await engine.detect_pagination_method(FakePage(counts={load_more: 1, scroller: 1})) == "hybrid"


@pytest.mark.asyncio
async def test_click_mode_presses_load_more() -> None:
    load_more = SELECTOR_PATTERNS["LOAD_MORE"][0]
    page = FakePage(counts={load_more: 1})

    result = await PaginationEngine().paginate_for_target(page, PaginationConfig(target_count=3), _growing(2))

    assert result.stats.pagination_method == "click"
    assert result.stats.click_attempts == 1
    assert page.scrolls == 0
