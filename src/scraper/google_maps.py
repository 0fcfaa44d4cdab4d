from __future__ import annotations

import logging
from pathlib import Path
from time import monotonic
from typing import Any

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright

from src.config import settings
from src.models.collection import CollectionResult, PhaseResult
from src.models.detection import InterfaceDetectionResult, LanguageDetectionResult, SelectorSet
from src.models.review import SORT_TYPES, Review, SortType
from src.pipeline.deduplication import ReviewDeduplicator
from src.scraper.interface_detector import InterfaceDetector
from src.scraper.language_detector import LanguageDetector
from src.scraper.page_query import PageQuery, PlaywrightPageQuery
from src.scraper.pagination import PaginationConfig, PaginationEngine
from src.scraper.review_extractor import ReviewExtractor
from src.scraper.selector_resolver import SelectorResolver
from src.scraper.selectors import SELECTOR_PATTERNS
from src.scraper.sort_navigation import SortNavigator
from src.services.errors import AnalysisError

LOGGER = logging.getLogger(__name__)


class GoogleMapsScraper:
    """Collects reviews for one place across the configured sort orders."""

    def __init__(
        self,
        page: Page | None = None,
        *,
        headless: bool = True,
        slow_mo_ms: int = 0,
        user_data_dir: str = "playwright-data",
        browser_channel: str | None = None,
        timeout_ms: int = 30000,
        locale: str = "en-US",
        extra_chromium_args: list[str] | None = None,
        min_click_gap_ms: int = 0,
        sort_orders: list[str] | None = None,
        target_counts: dict[str, int] | None = None,
        total_timeout_s: float = 300.0,
        sort_timeout_ms: int = 10000,
        sort_attempts: int = 3,
        pagination_attempts: int = 60,
        scroll_delay_ms: int = 1500,
        scroll_strategy: str = "adaptive",
        language_detector: LanguageDetector | None = None,
        interface_detector: InterfaceDetector | None = None,
        resolver: SelectorResolver | None = None,
        extractor: ReviewExtractor | None = None,
        navigator: SortNavigator | None = None,
        pagination: PaginationEngine | None = None,
        deduplicator: ReviewDeduplicator | None = None,
    ) -> None:
        self._page = page
        self._external_page = page is not None

        self._headless = headless
        self._slow_mo_ms = slow_mo_ms
        self._user_data_dir = user_data_dir
        self._browser_channel = (browser_channel or "").strip() or None
        self._timeout_ms = timeout_ms
        self._locale = locale
        self._extra_chromium_args = list(extra_chromium_args or [])
        self._min_click_gap_ms = min_click_gap_ms
        self._project_root = Path(__file__).resolve().parents[2]

        self._sort_orders = self._resolve_sort_orders(sort_orders)
        self._target_counts = dict(target_counts or {sort_type: 100 for sort_type in SORT_TYPES})
        self._total_timeout_s = total_timeout_s
        self._sort_timeout_ms = sort_timeout_ms
        self._sort_attempts = sort_attempts
        self._pagination_attempts = pagination_attempts
        self._scroll_delay_ms = scroll_delay_ms
        self._scroll_strategy = scroll_strategy

        self.extractor = extractor or ReviewExtractor()
        self.language_detector = language_detector or LanguageDetector()
        self.interface_detector = interface_detector or InterfaceDetector()
        self.resolver = resolver or SelectorResolver()
        self.navigator = navigator or SortNavigator(self.extractor)
        self.pagination = pagination or PaginationEngine()
        self.deduplicator = deduplicator or ReviewDeduplicator()

        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._default_user_agent = (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/133.0.0.0 Safari/537.36"
        )

    @classmethod
    def from_settings(cls, **overrides: Any) -> GoogleMapsScraper:
        options: dict[str, Any] = {
            "headless": settings.scraper_headless,
            "slow_mo_ms": settings.scraper_slow_mo_ms,
            "user_data_dir": settings.scraper_user_data_dir,
            "browser_channel": settings.scraper_browser_channel,
            "timeout_ms": settings.scraper_timeout_ms,
            "locale": settings.scraper_locale,
            "extra_chromium_args": settings.scraper_extra_chromium_args,
            "min_click_gap_ms": settings.scraper_min_click_gap_ms,
            "sort_orders": settings.scraper_sort_orders,
            "target_counts": settings.target_counts,
            "total_timeout_s": settings.scraper_total_timeout_s,
            "sort_timeout_ms": settings.scraper_sort_timeout_ms,
            "sort_attempts": settings.scraper_sort_attempts,
            "pagination_attempts": settings.scraper_pagination_attempts,
            "scroll_delay_ms": settings.scraper_scroll_delay_ms,
            "scroll_strategy": settings.scraper_scroll_strategy,
        }
        options.update(overrides)
        return cls(**options)

    async def __aenter__(self) -> GoogleMapsScraper:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.close()

    async def start(self) -> Page:
        if self._page is not None:
            return self._page

        try:
            self._playwright = await async_playwright().start()
            self._context = await self._launch_context()
        except Exception as exc:
            await self.close()
            raise AnalysisError("browser_launch", f"Browser launch failed: {exc}", phase="scraping") from exc

        await self._context.add_init_script(
            "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"
        )
        self._context.set_default_timeout(self._timeout_ms)
        self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
        return self._page

    async def close(self) -> None:
        if not self._external_page and self._context is not None:
            await self._context.close()

        if not self._external_page and self._playwright is not None:
            await self._playwright.stop()

        self._context = None
        self._playwright = None
        self._page = None
        self._external_page = False

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Playwright page is not configured. Call start() first.")
        return self._page

    async def collect(self, url: str, targets: dict[str, int] | None = None) -> CollectionResult:
        page = await self.start()
        page_query = PlaywrightPageQuery(page, min_click_gap_ms=self._min_click_gap_ms)
        return await self.collect_from(page_query, url, targets)

    async def collect_from(
        self,
        page: PageQuery,
        url: str,
        targets: dict[str, int] | None = None,
    ) -> CollectionResult:
        started = monotonic()
        deadline = started + self._total_timeout_s
        targets = {**self._target_counts, **(targets or {})}

        await self.open_place(page, url)
        language = await self.language_detector.detect(page)
        interface = await self.interface_detector.detect(page)
        selectors = await self.resolver.resolve(language, page, interface)

        if not await self.open_reviews_panel(page, selectors):
            LOGGER.warning("Reviews panel did not open for %s, extracting from the visible page", url)

        reviews_by_category: dict[str, list[Review]] = {}
        phase_results: list[PhaseResult] = []
        timed_out = False

        for sort_type in self._sort_orders:
            target = max(0, int(targets.get(sort_type, 0)))
            if target == 0:
                continue

            remaining_s = deadline - monotonic()
            if remaining_s <= 0:
                timed_out = True
                phase_results.append(
                    PhaseResult(
                        phase=sort_type,
                        target_count=target,
                        stopped_reason="timeout",
                        error="Collection deadline reached before this order started.",
                    )
                )
                continue

            reviews, phase = await self._collect_order(
                page,
                sort_type=sort_type,
                target=target,
                language=language,
                interface=interface,
                url=url,
                deadline=deadline,
            )
            reviews_by_category[sort_type] = reviews
            phase_results.append(phase)
            timed_out = timed_out or phase.stopped_reason == "timeout"

        merged = self.deduplicator.merge_and_deduplicate(reviews_by_category)
        result = CollectionResult(
            unique_reviews=merged.unique_reviews,
            reviews_by_category=reviews_by_category,
            contributions=merged.contributions,
            phase_results=phase_results,
            total_collected=sum(len(reviews) for reviews in reviews_by_category.values()),
            duplicates_removed=merged.duplicate_count,
            collection_time_ms=int((monotonic() - started) * 1000),
            timed_out=timed_out,
            language=language,
            interface=interface,
        )
        LOGGER.info(
            "Collected %s unique reviews (%s duplicates removed) in %sms",
            len(result.unique_reviews),
            result.duplicates_removed,
            result.collection_time_ms,
        )
        return result

    async def open_place(self, page: PageQuery, url: str) -> None:
        try:
            await page.goto(url, timeout_ms=self._timeout_ms)
        except Exception as exc:
            raise AnalysisError("navigation", f"Could not open {url}: {exc}", phase="scraping") from exc

        if await self.dismiss_consent(page) and "consent." in page.url:
            await page.goto(url, timeout_ms=self._timeout_ms)

    async def dismiss_consent(self, page: PageQuery) -> bool:
        for selector in SELECTOR_PATTERNS["CONSENT_ACCEPT"]:
            if await page.count(selector) <= 0:
                continue
            if await page.click(selector, 0):
                await page.wait(1500)
                return True
        return False

    async def open_reviews_panel(self, page: PageQuery, selectors: SelectorSet) -> bool:
        if await self._wait_for_reviews_ready(page, selectors, timeout_ms=2200):
            return True

        for _ in range(3):
            for selector in selectors.reviews_tab:
                if await page.count(selector) <= 0:
                    continue
                if not await page.click(selector, 0):
                    continue
                await page.wait(1200)
                if await self._wait_for_reviews_ready(page, selectors, timeout_ms=4500):
                    return True

        return await self._wait_for_reviews_ready(page, selectors, timeout_ms=2500)

    async def reopen_reviews_panel(
        self,
        page: PageQuery,
        language: LanguageDetectionResult,
        interface: InterfaceDetectionResult,
    ) -> bool:
        """Restore the reviews panel after the page was navigated away and back."""
        await self.dismiss_consent(page)
        selectors = await self.resolver.resolve(language, page, interface)
        return await self.open_reviews_panel(page, selectors)

    async def _collect_order(
        self,
        page: PageQuery,
        *,
        sort_type: SortType,
        target: int,
        language: LanguageDetectionResult,
        interface: InterfaceDetectionResult,
        url: str,
        deadline: float,
    ) -> tuple[list[Review], PhaseResult]:
        phase_started = monotonic()
        remaining_ms = int((deadline - monotonic()) * 1000)

        async def reopen_reviews(current: PageQuery) -> bool:
            return await self.reopen_reviews_panel(current, language, interface)

        navigation = await self.navigator.navigate_to_sort_with_retry(
            page,
            sort_type,
            language,
            max_attempts=self._sort_attempts,
            timeout_ms=max(1, min(self._sort_timeout_ms, remaining_ms)),
            after_reload=reopen_reviews,
        )
        if not navigation.success:
            LOGGER.warning("Could not verify %s ordering, collecting in the current order: %s", sort_type, navigation.error)
        if navigation.page_reloaded and not await reopen_reviews(page):
            LOGGER.warning("Reviews panel did not reopen after sorting by %s", sort_type)

        selectors = await self.resolver.resolve(language, page, interface)
        config = self._pagination_config(target, int((deadline - monotonic()) * 1000))
        extract_fn = self.extractor.build_callback(page, selectors, sort_origin=sort_type, original_url=url)
        pagination = await self.pagination.paginate_for_target(page, config, extract_fn, selectors.review_container)

        reviews = pagination.reviews[:target]
        phase = PhaseResult(
            phase=sort_type,
            reviews_collected=len(reviews),
            target_count=target,
            success=bool(reviews),
            stopped_reason=pagination.stopped_reason,
            navigation_method=navigation.method_used,
            time_elapsed_ms=int((monotonic() - phase_started) * 1000),
            error=pagination.error or (None if navigation.success else navigation.error),
        )
        LOGGER.info(
            "Order %s collected=%s target=%s stopped=%s navigation=%s",
            sort_type,
            phase.reviews_collected,
            target,
            phase.stopped_reason,
            phase.navigation_method,
        )
        return reviews, phase

    def _pagination_config(self, target: int, remaining_ms: int) -> PaginationConfig:
        config = PaginationConfig(
            target_count=target,
            max_attempts=self._pagination_attempts,
            scroll_strategy=self._scroll_strategy,  # type: ignore[arg-type]
            scroll_delay_ms=self._scroll_delay_ms,
        )
        # Progressive extension may not outlive the collection deadline.
        longest_ms = int((config.timeout_ms or 0) * (1.5 if config.progressive_timeout else 1.0))
        if longest_ms > remaining_ms:
            config.timeout_ms = max(0, remaining_ms)
            config.progressive_timeout = False
        return config

    async def _wait_for_reviews_ready(self, page: PageQuery, selectors: SelectorSet, timeout_ms: int) -> bool:
        for _ in range(max(1, timeout_ms // 220)):
            for selector in SELECTOR_PATTERNS["REVIEWS_PANEL_READY"]:
                if await page.count(selector) > 0:
                    return True
            for selector in selectors.review_container[:3]:
                if await page.count(selector) > 0:
                    return True
            await page.wait(220)
        return False

    async def _launch_context(self) -> BrowserContext:
        assert self._playwright is not None
        launch_options: dict[str, Any] = {
            "user_data_dir": str(self._resolve_user_data_dir()),
            "headless": self._headless,
            "slow_mo": self._slow_mo_ms,
            "viewport": {"width": 1366, "height": 900},
            "locale": self._locale,
            "user_agent": self._default_user_agent,
            "args": [
                "--disable-blink-features=AutomationControlled",
                "--js-flags=--expose-gc",
                *self._extra_chromium_args,
            ],
        }
        if self._browser_channel:
            launch_options["channel"] = self._browser_channel

        try:
            return await self._playwright.chromium.launch_persistent_context(**launch_options)
        except Exception:
            if not self._browser_channel:
                raise
            # Fallback to bundled Chromium if requested browser channel is unavailable.
            launch_options.pop("channel", None)
            return await self._playwright.chromium.launch_persistent_context(**launch_options)

    def _resolve_user_data_dir(self) -> Path:
        path = Path(self._user_data_dir).expanduser()
        if not path.is_absolute():
            path = self._project_root / path
        return path.resolve()

    def _resolve_sort_orders(self, sort_orders: list[str] | None) -> tuple[SortType, ...]:
        if not sort_orders:
            return SORT_TYPES
        unknown = [order for order in sort_orders if order not in SORT_TYPES]
        if unknown:
            raise ValueError(f"Unknown sort orders {unknown}. Supported: {' | '.join(SORT_TYPES)}")
        return tuple(dict.fromkeys(sort_orders))  # type: ignore[return-value]
