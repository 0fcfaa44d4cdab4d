from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from time import monotonic
from typing import Any, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ElementSnapshot:
    text: str = ""
    aria_label: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    visible: bool = True

    @property
    def label(self) -> str:
        return " ".join(part for part in (self.aria_label, self.text) if part).strip()


@dataclass(frozen=True)
class ScrollMetrics:
    found: bool = False
    scrolled: bool = False
    at_bottom: bool = False
    scroll_top: int = 0
    scroll_height: int = 0


@dataclass(frozen=True)
class PageSignals:
    viewport_width: int = 1366
    viewport_height: int = 900
    user_agent: str = ""
    has_touch: bool = False
    css_classes: tuple[str, ...] = ()
    rtl_elements: int = 0


class PageQuery(Protocol):
    """Narrow browser capability used by every scraper component.

    Implementations only gather raw DOM bundles; scoring and ordering happen
    in the callers so they can be exercised against an in-memory page.
    """

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, timeout_ms: int = 30000) -> None: ...

    async def wait(self, ms: int) -> None: ...

    async def press(self, key: str) -> None: ...

    async def count(self, selector: str) -> int: ...

    async def query(self, selector: str, limit: int = 20) -> list[ElementSnapshot]: ...

    async def query_cards(
        self,
        container_selector: str,
        field_selectors: dict[str, tuple[str, ...]],
        limit: int | None = None,
    ) -> list[dict[str, ElementSnapshot]]: ...

    async def click(self, selector: str, index: int = 0) -> bool: ...

    async def document_language(self) -> str: ...

    async def visible_text(self, max_chars: int = 20000) -> str: ...

    async def page_signals(self) -> PageSignals: ...

    async def scroll_feed(self, card_selectors: tuple[str, ...], step_px: int) -> ScrollMetrics: ...

    async def scroll_to_top(self) -> None: ...

    async def clear_transient_markers(self) -> None: ...

    async def collect_garbage(self) -> None: ...


_QUERY_CARDS_SCRIPT = """
(payload) => {
    const safeAll = (root, selector) => {
        try { return Array.from(root.querySelectorAll(selector)); } catch (e) { return []; }
    };
    const snapshot = (node) => {
        const attributes = {};
        for (const attr of node.attributes || []) {
            if (attr.name.startsWith('data-') || attr.name === 'dir' || attr.name === 'lang') {
                attributes[attr.name] = attr.value;
            }
        }
        return {
            text: (node.innerText || node.textContent || '').trim(),
            aria_label: node.getAttribute('aria-label') || '',
            attributes,
            visible: !!(node.offsetWidth || node.offsetHeight || node.getClientRects().length),
        };
    };
    const cards = safeAll(document, payload.container).slice(0, payload.limit);
    return cards.map((card) => {
        const fields = { card: snapshot(card) };
        for (const [name, selectors] of Object.entries(payload.fields)) {
            for (const selector of selectors) {
                const match = safeAll(card, selector)[0];
                if (match) {
                    fields[name] = snapshot(match);
                    break;
                }
            }
        }
        return fields;
    });
}
"""

_SCROLL_FEED_SCRIPT = """
(payload) => {
    let card = null;
    for (const selector of payload.selectors) {
        try { card = document.querySelector(selector); } catch (e) { card = null; }
        if (card) break;
    }
    const empty = { found: false, scrolled: false, at_bottom: true, scroll_top: 0, scroll_height: 0 };
    if (!card) {
        window.scrollBy(0, payload.stepPx);
        return empty;
    }
    let parent = card.parentElement;
    while (parent) {
        const style = window.getComputedStyle(parent);
        const canScroll = parent.scrollHeight > parent.clientHeight + 20;
        if ((style.overflowY === 'auto' || style.overflowY === 'scroll') && canScroll) {
            const before = parent.scrollTop;
            parent.scrollBy(0, payload.stepPx);
            if (parent.scrollTop === before) {
                parent.scrollTop = Math.min(parent.scrollTop + payload.stepPx, parent.scrollHeight);
            }
            const after = parent.scrollTop;
            parent.setAttribute('data-review-feed', 'true');
            return {
                found: true,
                scrolled: after > before,
                at_bottom: after + parent.clientHeight >= parent.scrollHeight - 4,
                scroll_top: Math.round(after),
                scroll_height: Math.round(parent.scrollHeight),
            };
        }
        parent = parent.parentElement;
    }
    window.scrollBy(0, payload.stepPx);
    return { ...empty, scrolled: true };
}
"""

_PAGE_SIGNALS_SCRIPT = """
() => {
    const classes = new Set();
    for (const node of document.querySelectorAll('[class]')) {
        const value = typeof node.className === 'string' ? node.className : '';
        for (const cls of value.split(/\\s+/)) {
            if (cls) classes.add(cls);
            if (classes.size >= 100) break;
        }
        if (classes.size >= 100) break;
    }
    return {
        viewport_width: window.innerWidth,
        viewport_height: window.innerHeight,
        user_agent: navigator.userAgent,
        has_touch: 'ontouchstart' in window || navigator.maxTouchPoints > 0,
        css_classes: Array.from(classes),
        rtl_elements: document.querySelectorAll('[dir="rtl"]').length,
    };
}
"""


class PlaywrightPageQuery:
    def __init__(self, page: Page, *, min_click_gap_ms: int = 0) -> None:
        self._page = page
        self._min_click_gap_ms = max(0, min_click_gap_ms)
        self._last_click_ts: float | None = None
        self._rng = random.Random()

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, timeout_ms: int = 30000) -> None:
        await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    async def wait(self, ms: int) -> None:
        await self._page.wait_for_timeout(max(0, ms))

    async def press(self, key: str) -> None:
        await self._page.keyboard.press(key)

    async def count(self, selector: str) -> int:
        try:
            return await self._page.locator(selector).count()
        except PlaywrightError:
            return 0

    async def query(self, selector: str, limit: int = 20) -> list[ElementSnapshot]:
        items = self._page.locator(selector)
        try:
            total = await items.count()
        except PlaywrightError:
            return []

        snapshots: list[ElementSnapshot] = []
        for idx in range(min(total, limit)):
            item = items.nth(idx)
            try:
                text = await item.inner_text(timeout=1000)
                aria = await item.get_attribute("aria-label", timeout=1000)
                visible = await item.is_visible()
            except PlaywrightError:
                continue
            snapshots.append(ElementSnapshot(text=(text or "").strip(), aria_label=aria or "", visible=visible))
        return snapshots

    async def query_cards(
        self,
        container_selector: str,
        field_selectors: dict[str, tuple[str, ...]],
        limit: int | None = None,
    ) -> list[dict[str, ElementSnapshot]]:
        payload = {
            "container": container_selector,
            "fields": {name: list(selectors) for name, selectors in field_selectors.items()},
            "limit": limit if limit and limit > 0 else 100000,
        }
        try:
            raw_cards = await self._page.evaluate(_QUERY_CARDS_SCRIPT, payload)
        except PlaywrightError as exc:
            LOGGER.debug("query_cards failed for %s: %s", container_selector, exc)
            return []

        cards: list[dict[str, ElementSnapshot]] = []
        for raw_card in raw_cards or []:
            cards.append({name: ElementSnapshot(**values) for name, values in raw_card.items()})
        return cards

    async def click(self, selector: str, index: int = 0) -> bool:
        locator = self._page.locator(selector).nth(index)
        try:
            if not await locator.is_visible():
                return False
            await self._enforce_click_gap()
            await locator.scroll_into_view_if_needed(timeout=2000)
            await locator.click(timeout=3000)
        except PlaywrightError:
            return False
        self._last_click_ts = monotonic()
        return True

    async def document_language(self) -> str:
        value = await self._page.evaluate("() => document.documentElement.lang || ''")
        return str(value or "")

    async def visible_text(self, max_chars: int = 20000) -> str:
        value = await self._page.evaluate(
            "(limit) => (document.body ? document.body.innerText : '').slice(0, limit)",
            max_chars,
        )
        return str(value or "")

    async def page_signals(self) -> PageSignals:
        raw: dict[str, Any] = await self._page.evaluate(_PAGE_SIGNALS_SCRIPT)
        return PageSignals(
            viewport_width=int(raw.get("viewport_width") or 0),
            viewport_height=int(raw.get("viewport_height") or 0),
            user_agent=str(raw.get("user_agent") or ""),
            has_touch=bool(raw.get("has_touch")),
            css_classes=tuple(raw.get("css_classes") or ()),
            rtl_elements=int(raw.get("rtl_elements") or 0),
        )

    async def scroll_feed(self, card_selectors: tuple[str, ...], step_px: int) -> ScrollMetrics:
        raw = await self._page.evaluate(
            _SCROLL_FEED_SCRIPT,
            {"selectors": list(card_selectors), "stepPx": max(100, step_px)},
        )
        return ScrollMetrics(**raw)

    async def scroll_to_top(self) -> None:
        await self._page.evaluate(
            """
            () => {
                const feed = document.querySelector('[data-review-feed="true"]');
                if (feed) feed.scrollTop = 0;
                window.scrollTo(0, 0);
            }
            """
        )

    async def clear_transient_markers(self) -> None:
        await self._page.evaluate(
            """
            () => {
                for (const node of document.querySelectorAll('[data-scrape-marker]')) {
                    node.removeAttribute('data-scrape-marker');
                }
            }
            """
        )

    async def collect_garbage(self) -> None:
        # window.gc only exists when chromium runs with --js-flags=--expose-gc.
        await self._page.evaluate("() => { if (typeof window.gc === 'function') window.gc(); }")

    async def _enforce_click_gap(self) -> None:
        if self._last_click_ts is None or self._min_click_gap_ms <= 0:
            return
        target_gap_ms = self._rng.randint(self._min_click_gap_ms, int(self._min_click_gap_ms * 1.6))
        elapsed_ms = int((monotonic() - self._last_click_ts) * 1000)
        remaining = target_gap_ms - elapsed_ms
        if remaining > 0:
            await asyncio.sleep(remaining / 1000)
