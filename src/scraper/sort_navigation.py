from __future__ import annotations

import asyncio
import logging
import unicodedata
from functools import partial
from statistics import mean
from time import monotonic
from typing import Awaitable, Callable
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from src.models.collection import SortNavigationResult
from src.models.detection import LanguageDetectionResult
from src.models.review import Review, SortType
from src.scraper.page_query import ElementSnapshot, PageQuery
from src.scraper.review_extractor import ReviewExtractor
from src.scraper.selectors import SELECTOR_PATTERNS, SORT_LABELS, SORT_URL_INDICATORS, SORT_URL_PARAMS

LOGGER = logging.getLogger(__name__)

AfterReload = Callable[[PageQuery], Awaitable[object]]

_SORT_CONTROL_TERMS = ("sort", "most relevant", "מיון", "רלוונטי", "ordenar")


def _normalize(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    normalized = "".join(char for char in normalized if not unicodedata.combining(char))
    return " ".join(normalized.lower().split())


def labels_for(sort_type: SortType, language: str) -> tuple[str, ...]:
    table = SORT_LABELS[sort_type]
    return tuple(dict.fromkeys([*table.get(language, ()), *table["generic"]]))


def match_option(options: list[ElementSnapshot], labels: tuple[str, ...]) -> int | None:
    """Index of the option matching ``labels``: exact first, then substring."""
    normalized_labels = [_normalize(label) for label in labels]
    normalized_options = [(_normalize(option.text), _normalize(option.aria_label)) for option in options]

    for label in normalized_labels:
        for idx, (text, aria) in enumerate(normalized_options):
            if label and label in {text, aria}:
                return idx

    for label in normalized_labels:
        for idx, (text, aria) in enumerate(normalized_options):
            if label and (label in text or label in aria):
                return idx

    return None


class SortNavigator:
    METHOD_RANK = {"click": 3, "url": 2, "fallback": 1, "none": 0}

    def __init__(
        self,
        extractor: ReviewExtractor | None = None,
        *,
        settle_ms: int = 1500,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.extractor = extractor or ReviewExtractor()
        self._settle_ms = settle_ms
        self._sleep = sleep

    async def navigate_to_sort(
        self,
        page: PageQuery,
        sort_type: SortType,
        language_context: LanguageDetectionResult,
        *,
        after_reload: AfterReload | None = None,
    ) -> SortNavigationResult:
        started = monotonic()
        before = await self._order_snapshot(page, language_context)
        strategies = (
            ("click", self._try_click),
            ("url", partial(self._try_url, after_reload=after_reload)),
            ("fallback", self._try_fallback),
        )

        last_error: str | None = None
        reloaded = False
        for method, strategy in strategies:
            # Every url attempt navigates, so the page state is gone even if it fails.
            reloaded = reloaded or method == "url"
            try:
                evidence = await strategy(page, sort_type, language_context, before)
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("Sort strategy %s failed for %s: %s", method, sort_type, exc)
                last_error = str(exc)
                continue

            if evidence:
                LOGGER.info("Sorted reviews by %s using %s (%s)", sort_type, method, evidence)
                return SortNavigationResult(
                    success=True,
                    method_used=method,
                    sort_type=sort_type,
                    attempts=1,
                    evidence=evidence,
                    duration_ms=int((monotonic() - started) * 1000),
                    page_reloaded=reloaded,
                )

        return SortNavigationResult(
            success=False,
            method_used="none",
            sort_type=sort_type,
            attempts=1,
            error=last_error or "No strategy produced a verified ordering.",
            duration_ms=int((monotonic() - started) * 1000),
            page_reloaded=reloaded,
        )

    async def navigate_to_sort_with_retry(
        self,
        page: PageQuery,
        sort_type: SortType,
        language_context: LanguageDetectionResult,
        *,
        max_attempts: int = 3,
        timeout_ms: int = 10000,
        after_reload: AfterReload | None = None,
    ) -> SortNavigationResult:
        deadline = monotonic() + timeout_ms / 1000
        best: SortNavigationResult | None = None
        attempts = 0
        reloaded = False

        for attempt in range(1, max(1, max_attempts) + 1):
            if attempt > 1:
                delay_ms = min(1000 * 2 ** (attempt - 2), 5000)
                await self._sleep(delay_ms / 1000)
                await self.recover_page_state(page)

            remaining = deadline - monotonic()
            if remaining <= 0:
                break

            attempts = attempt
            try:
                result = await asyncio.wait_for(
                    self.navigate_to_sort(page, sort_type, language_context, after_reload=after_reload),
                    timeout=remaining,
                )
            except asyncio.TimeoutError:
                # A cancelled attempt may have stopped anywhere, including mid-reload.
                result = SortNavigationResult(
                    success=False, sort_type=sort_type, error="Sort navigation timed out.", page_reloaded=True
                )

            reloaded = reloaded or result.page_reloaded
            if best is None or self._rank(result) > self._rank(best):
                best = result
            if result.success:
                break

        if best is None:
            best = SortNavigationResult(success=False, sort_type=sort_type, error="Sort navigation timed out.")
        return best.model_copy(update={"attempts": attempts, "page_reloaded": reloaded})

    async def recover_page_state(self, page: PageQuery) -> None:
        try:
            await page.scroll_to_top()
            await page.press("Escape")
            await page.wait(500)
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Page recovery step failed: %s", exc)

    async def verify(
        self,
        page: PageQuery,
        sort_type: SortType,
        language_context: LanguageDetectionResult,
        before: list[Review],
        *,
        trust_url: bool = True,
    ) -> str | None:
        if trust_url:
            url_evidence = self._url_evidence(page.url, sort_type)
            if url_evidence:
                return url_evidence

        labels = labels_for(sort_type, language_context.language)
        for selector in SELECTOR_PATTERNS["ACTIVE_CONTROL"]:
            active = await page.query(selector, limit=10)
            if match_option(active, labels) is not None:
                return f"active-control:{selector}"

        after = await self._order_snapshot(page, language_context)
        return self.content_evidence(sort_type, before, after)

    def content_evidence(self, sort_type: SortType, before: list[Review], after: list[Review]) -> str | None:
        if len(after) < 2:
            return None
        if before and [review.id for review in before[:5]] == [review.id for review in after[:5]]:
            # A click that leaves the visible order untouched did nothing.
            return None

        head = after[:3]
        ratings = [review.rating for review in head]
        if sort_type == "worst" and mean(ratings) <= 2.5:
            return f"ratings-trend-low:{ratings}"
        if sort_type == "best" and mean(ratings) >= 4.0 and ratings == sorted(ratings, reverse=True):
            return f"ratings-trend-high:{ratings}"
        if sort_type == "recent":
            dates = [review.date for review in head if review.date is not None]
            if len(dates) >= 2 and dates == sorted(dates, reverse=True):
                return "dates-descending"
        return None

    def _url_evidence(self, url: str, sort_type: SortType) -> str | None:
        indicators = SORT_URL_INDICATORS[sort_type]
        for key, value in parse_qsl(urlparse(url).query):
            if key.lower() in {"sort", "orderby", "sort_by"} and value.lower() in indicators:
                return f"url:{key}={value}"
        return None

    async def _try_click(
        self,
        page: PageQuery,
        sort_type: SortType,
        language_context: LanguageDetectionResult,
        before: list[Review],
    ) -> str | None:
        if not await self._open_sort_control(page):
            return None
        if not await self._select_option(page, sort_type, language_context.language):
            await page.press("Escape")
            return None
        await page.wait(self._settle_ms)
        return await self.verify(page, sort_type, language_context, before)

    async def _try_url(
        self,
        page: PageQuery,
        sort_type: SortType,
        language_context: LanguageDetectionResult,
        before: list[Review],
        *,
        after_reload: AfterReload | None = None,
    ) -> str | None:
        base_url = page.url
        for key, value in SORT_URL_PARAMS[sort_type]:
            await self._reload(page, self._with_param(base_url, key, value), after_reload)
            # The parameter we injected is not evidence by itself.
            evidence = await self.verify(page, sort_type, language_context, before, trust_url=False)
            if evidence:
                return f"{key}={value};{evidence}"
        await self._reload(page, base_url, after_reload)
        return None

    async def _reload(self, page: PageQuery, url: str, after_reload: AfterReload | None) -> None:
        await page.goto(url, timeout_ms=10000)
        if after_reload is not None:
            await after_reload(page)
        await page.wait(self._settle_ms)

    async def _try_fallback(
        self,
        page: PageQuery,
        sort_type: SortType,
        language_context: LanguageDetectionResult,
        before: list[Review],
    ) -> str | None:
        steps = (
            ("keyboard-navigation", self._keyboard_navigation),
            ("scroll-and-search", self._scroll_and_search),
            ("dropdown-trigger", self._dropdown_trigger),
            ("clickable-scan", self._clickable_scan),
        )
        for name, step in steps:
            try:
                acted = await step(page, sort_type, language_context.language)
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("Fallback step %s failed: %s", name, exc)
                continue
            if not acted:
                continue
            await page.wait(self._settle_ms)
            evidence = await self.verify(page, sort_type, language_context, before)
            if evidence:
                return f"{name};{evidence}"
        return None

    async def _keyboard_navigation(self, page: PageQuery, sort_type: SortType, language: str) -> bool:
        if not await self._open_sort_control(page):
            return False
        for selector in SELECTOR_PATTERNS["SORT_OPTION"]:
            options = await page.query(selector, limit=10)
            index = match_option(options, labels_for(sort_type, language))
            if index is None:
                continue
            for _ in range(index + 1):
                await page.press("ArrowDown")
            await page.press("Enter")
            return True
        await page.press("Escape")
        return False

    async def _scroll_and_search(self, page: PageQuery, sort_type: SortType, language: str) -> bool:
        await page.scroll_to_top()
        await page.wait(300)
        if not await self._open_sort_control(page):
            return False
        return await self._select_option(page, sort_type, language)

    async def _dropdown_trigger(self, page: PageQuery, sort_type: SortType, language: str) -> bool:
        for selector in SELECTOR_PATTERNS["DROPDOWN_TRIGGER"]:
            triggers = await page.query(selector, limit=15)
            for idx, trigger in enumerate(triggers):
                label = _normalize(trigger.label)
                if not any(term in label for term in _SORT_CONTROL_TERMS):
                    continue
                if await page.click(selector, idx) and await self._select_option(page, sort_type, language):
                    return True
        return False

    async def _clickable_scan(self, page: PageQuery, sort_type: SortType, language: str) -> bool:
        labels = labels_for(sort_type, language)
        for selector in SELECTOR_PATTERNS["CLICKABLE"]:
            candidates = await page.query(selector, limit=60)
            index = match_option([candidate for candidate in candidates], labels)
            if index is not None and candidates[index].visible and await page.click(selector, index):
                return True
        return False

    async def _open_sort_control(self, page: PageQuery) -> bool:
        for selector in SELECTOR_PATTERNS["SORT_BUTTON"]:
            if await page.count(selector) <= 0:
                continue
            if await page.click(selector, 0):
                await page.wait(600)
                return True
        return False

    async def _select_option(self, page: PageQuery, sort_type: SortType, language: str) -> bool:
        labels = labels_for(sort_type, language)
        for selector in SELECTOR_PATTERNS["SORT_OPTION"]:
            options = await page.query(selector, limit=10)
            index = match_option(options, labels)
            if index is not None and await page.click(selector, index):
                return True
        return False

    async def _order_snapshot(self, page: PageQuery, language_context: LanguageDetectionResult) -> list[Review]:
        try:
            batch = await self.extractor.extract(
                page,
                language_context.suggested_selectors,
                sort_origin="probe",
                limit=5,
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Order snapshot failed: %s", exc)
            return []
        return batch.reviews

    def _with_param(self, url: str, key: str, value: str) -> str:
        parsed = urlparse(url)
        params = [(k, v) for k, v in parse_qsl(parsed.query) if k != key]
        params.append((key, value))
        return urlunparse(parsed._replace(query=urlencode(params)))

    def _rank(self, result: SortNavigationResult) -> tuple[int, int]:
        return (1 if result.success else 0, self.METHOD_RANK.get(result.method_used, 0))
