from __future__ import annotations

import logging
from dataclasses import dataclass, field
from statistics import mean
from time import monotonic
from typing import Callable, Literal

from src.models.collection import (
    AdaptiveAdjustment,
    PaginationAttempt,
    PaginationMethod,
    PaginationResult,
    PaginationStats,
    StoppedReason,
)
from src.models.review import Review
from src.scraper.page_query import PageQuery
from src.scraper.review_extractor import ExtractFn
from src.scraper.selectors import SELECTOR_PATTERNS

LOGGER = logging.getLogger(__name__)

ScrollStrategy = Literal["aggressive", "conservative", "adaptive"]


@dataclass
class PaginationConfig:
    target_count: int
    max_attempts: int = 60
    timeout_ms: int | None = None
    scroll_strategy: ScrollStrategy = "adaptive"
    scroll_delay_ms: int = 1500
    slow_response_ms: int = 3000
    fast_response_ms: int = 1000
    stagnation_threshold: int | None = None
    progressive_timeout: bool | None = None
    memory_optimization: bool | None = None
    cleanup_every: int = 10

    def __post_init__(self) -> None:
        large_target = self.target_count > 50
        if self.timeout_ms is None:
            self.timeout_ms = 600_000 if large_target else 300_000
        if self.stagnation_threshold is None:
            self.stagnation_threshold = max(3, self.max_attempts // 4)
        if self.progressive_timeout is None:
            self.progressive_timeout = large_target
        if self.memory_optimization is None:
            self.memory_optimization = large_target


@dataclass
class CycleParams:
    adjustment: AdaptiveAdjustment
    scroll_px: int
    delay_ms: int
    scroll_count: int


@dataclass
class _LoopState:
    delay_ms: int
    collected: dict[str, Review] = field(default_factory=dict)
    attempts: list[PaginationAttempt] = field(default_factory=list)
    stagnant_cycles: int = 0


class PaginationEngine:
    """Grows the visible review list until a target, a budget or the feed runs out."""

    WINDOW = 5

    def __init__(
        self,
        *,
        clock: Callable[[], float] = monotonic,
        memory_probe: Callable[[], float] | None = None,
    ) -> None:
        self._clock = clock
        self._memory_probe = memory_probe

    async def paginate_for_target(
        self,
        page: PageQuery,
        config: PaginationConfig,
        extract_fn: ExtractFn,
        card_selectors: tuple[str, ...] = (),
    ) -> PaginationResult:
        started = self._clock()
        stats = PaginationStats()
        state = _LoopState(delay_ms=config.scroll_delay_ms)
        error: str | None = None

        try:
            reason = await self._run(page, config, extract_fn, card_selectors, started, state, stats)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Pagination aborted after %s attempts: %s", len(state.attempts), exc)
            reason = "error"
            error = str(exc)

        stats.time_elapsed_ms = int((self._clock() - started) * 1000)
        if state.attempts:
            stats.average_response_ms = round(mean(a.response_time_ms for a in state.attempts), 2)

        LOGGER.info(
            "Pagination stopped reason=%s collected=%s target=%s attempts=%s",
            reason,
            len(state.collected),
            config.target_count,
            len(state.attempts),
        )
        return PaginationResult(
            reviews=list(state.collected.values()),
            stopped_reason=reason,
            attempts=state.attempts,
            stats=stats,
            error=error,
        )

    async def _run(
        self,
        page: PageQuery,
        config: PaginationConfig,
        extract_fn: ExtractFn,
        card_selectors: tuple[str, ...],
        started: float,
        state: _LoopState,
        stats: PaginationStats,
    ) -> StoppedReason:
        try:
            self._merge(state.collected, await extract_fn())
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Initial extraction failed: %s", exc)

        if len(state.collected) >= config.target_count:
            return "target-reached"
        stats.pagination_method = await self.detect_pagination_method(page)

        attempt_no = 0
        while attempt_no < config.max_attempts:
            deadline = self._deadline(started, config, len(state.collected), stats)
            if self._clock() >= deadline:
                return "timeout"

            attempt_no += 1
            params = self.next_cycle_params(config, state.attempts, state.delay_ms, len(state.collected))
            state.delay_ms = params.delay_ms
            if params.adjustment != "none":
                stats.adaptive_adjustments += 1

            before = len(state.collected)
            cycle_started = self._clock()
            attempt_error: str | None = None
            try:
                await self._cycle(page, stats.pagination_method, params, card_selectors, stats)
                self._merge(state.collected, await extract_fn())
            except Exception as exc:  # noqa: BLE001
                # A failed cycle only counts toward stagnation.
                LOGGER.debug("Pagination cycle %s failed: %s", attempt_no, exc)
                attempt_error = str(exc)

            after = len(state.collected)
            grew = after > before
            state.attempts.append(
                PaginationAttempt(
                    attempt=attempt_no,
                    method=stats.pagination_method,
                    reviews_before=before,
                    reviews_after=after,
                    response_time_ms=int((self._clock() - cycle_started) * 1000),
                    success=grew,
                    adaptive_adjustment=params.adjustment,
                    memory_mb=self._memory_probe() if self._memory_probe else None,
                    error=attempt_error,
                )
            )

            if grew:
                stats.pages_traversed += 1
                state.stagnant_cycles = 0
            else:
                state.stagnant_cycles += 1

            if after >= config.target_count:
                return "target-reached"
            if state.stagnant_cycles >= config.stagnation_threshold:
                stats.stagnation_detected = True
                return "stagnation"
            if config.memory_optimization and attempt_no % config.cleanup_every == 0:
                await self.memory_cleanup(page)
                stats.memory_cleanup_count += 1

        return "no-more-content"

    async def detect_pagination_method(self, page: PageQuery) -> PaginationMethod:
        try:
            has_load_more = await self._any_present(page, SELECTOR_PATTERNS["LOAD_MORE"])
            has_scroller = await self._any_present(page, SELECTOR_PATTERNS["SCROLL_CONTAINER"])
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Pagination mode detection failed, using scroll: %s", exc)
            return "scroll"

        if has_load_more and has_scroller:
            return "hybrid"
        if has_load_more:
            return "click"
        return "scroll"

    def next_cycle_params(
        self,
        config: PaginationConfig,
        attempts: list[PaginationAttempt],
        current_delay_ms: int,
        collected: int,
    ) -> CycleParams:
        adjustment = self._adjustment(config, attempts[-self.WINDOW :])

        if adjustment == "slow-down":
            params = CycleParams("slow-down", 600, min(int(current_delay_ms * 1.5), 4000), 2)
        elif adjustment == "speed-up":
            params = CycleParams("speed-up", 1500, max(int(current_delay_ms * 0.8), 1000), 4)
        else:
            params = CycleParams("none", 1000, current_delay_ms, 3)

        if collected > 100:
            # Long feeds get heavy; keep steps short once past a hundred cards.
            params.scroll_px = 800
            params.scroll_count = min(params.scroll_count, 2)
        return params

    async def memory_cleanup(self, page: PageQuery) -> None:
        try:
            await page.clear_transient_markers()
            await page.collect_garbage()
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Memory cleanup step failed: %s", exc)

    def _adjustment(self, config: PaginationConfig, window: list[PaginationAttempt]) -> AdaptiveAdjustment:
        if config.scroll_strategy == "aggressive":
            return "speed-up"
        if config.scroll_strategy == "conservative":
            return "slow-down"
        if not window:
            return "none"

        avg_response = mean(attempt.response_time_ms for attempt in window)
        success_rate = sum(1 for attempt in window if attempt.success) / len(window)
        if avg_response > config.slow_response_ms or success_rate < 0.3:
            return "slow-down"
        if avg_response < config.fast_response_ms and success_rate > 0.7:
            return "speed-up"
        return "none"

    def _deadline(self, started: float, config: PaginationConfig, collected: int, stats: PaginationStats) -> float:
        base_s = (config.timeout_ms or 0) / 1000
        if not config.progressive_timeout or config.target_count <= 0:
            return started + base_s

        progress = collected / config.target_count
        factor = 1.5 if progress > 0.8 else 1.2 if progress > 0.5 else 1.0
        if factor > 1.0 and self._clock() >= started + base_s:
            stats.progressive_timeout_used = True
        return started + base_s * factor

    async def _cycle(
        self,
        page: PageQuery,
        method: PaginationMethod,
        params: CycleParams,
        card_selectors: tuple[str, ...],
        stats: PaginationStats,
    ) -> None:
        if method in {"click", "hybrid"}:
            for selector in SELECTOR_PATTERNS["LOAD_MORE"]:
                if await page.click(selector, 0):
                    stats.click_attempts += 1
                    break

        if method in {"scroll", "hybrid"}:
            for _ in range(params.scroll_count):
                metrics = await page.scroll_feed(card_selectors, params.scroll_px)
                stats.scroll_attempts += 1
                if metrics.at_bottom:
                    break
                await page.wait(params.delay_ms // params.scroll_count)

        await page.wait(params.delay_ms)

    async def _any_present(self, page: PageQuery, selectors: tuple[str, ...]) -> bool:
        for selector in selectors:
            if await page.count(selector) > 0:
                return True
        return False

    def _merge(self, collected: dict[str, Review], reviews: list[Review]) -> None:
        for review in reviews:
            collected.setdefault(review.id, review)
