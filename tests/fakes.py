from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable

from src.models.collection import CollectionResult
from src.models.review import Review
from src.scraper.page_query import ElementSnapshot, PageSignals, ScrollMetrics
from src.utils.review_id import review_id

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
PLACE_URL = "https://www.google.com/maps/place/Cafe+Test/@32.08,34.78,17z"


def make_review(
    author: str,
    rating: int,
    text: str = "",
    *,
    days_ago: int | None = None,
    sort_origin: str = "recent",
    original_url: str = PLACE_URL,
) -> Review:
    return Review(
        id=review_id(author, text, rating),
        author=author,
        rating=rating,
        text=text,
        date=NOW - timedelta(days=days_ago) if days_ago is not None else None,
        original_url=original_url,
        sort_origin=sort_origin,
    )


def card(author: str, rating: int, text: str, date: str = "2 weeks ago") -> dict[str, ElementSnapshot]:
    return {
        "card": ElementSnapshot(),
        "author": ElementSnapshot(text=author),
        "rating": ElementSnapshot(aria_label=f"{rating} stars"),
        "text": ElementSnapshot(text=text),
        "date": ElementSnapshot(text=date),
    }


class FakePage:
    """In-memory page implementing the page-query capability.

    ``counts`` and ``elements`` answer selector probes, ``cards`` is what any
    review container returns, and ``on_click`` / ``on_scroll`` / ``on_goto``
    let a test mutate the page the way a real interaction would.
    """

    def __init__(
        self,
        *,
        url: str = PLACE_URL,
        cards: list[dict[str, ElementSnapshot]] | None = None,
        counts: dict[str, int] | None = None,
        elements: dict[str, list[ElementSnapshot]] | None = None,
        html_lang: str = "en",
        text: str = "",
        signals: PageSignals | None = None,
    ) -> None:
        self._url = url
        self.cards = list(cards or [])
        self.counts = dict(counts or {})
        self.elements = dict(elements or {})
        self.html_lang = html_lang
        self.text = text
        self.signals = signals or PageSignals()

        self.on_click: dict[str, Callable[[FakePage, int], bool | None]] = {}
        self.on_scroll: Callable[[FakePage], None] | None = None
        self.on_goto: Callable[[FakePage, str], None] | None = None
        self.goto_error: Exception | None = None
        self.raise_on_signals: Exception | None = None

        self.visited: list[str] = []
        self.clicks: list[tuple[str, int]] = []
        self.keys: list[str] = []
        self.waited_ms = 0
        self.scrolls = 0
        self.garbage_collections = 0

    @property
    def url(self) -> str:
        return self._url

    async def goto(self, url: str, timeout_ms: int = 30000) -> None:
        if self.goto_error is not None:
            raise self.goto_error
        self.visited.append(url)
        self._url = url
        if self.on_goto is not None:
            self.on_goto(self, url)

    async def wait(self, ms: int) -> None:
        self.waited_ms += max(0, ms)

    async def press(self, key: str) -> None:
        self.keys.append(key)

    async def count(self, selector: str) -> int:
        if selector in self.counts:
            return self.counts[selector]
        return len(self.elements.get(selector, []))

    async def query(self, selector: str, limit: int = 20) -> list[ElementSnapshot]:
        return list(self.elements.get(selector, []))[:limit]

    async def query_cards(
        self,
        container_selector: str,
        field_selectors: dict[str, tuple[str, ...]],
        limit: int | None = None,
    ) -> list[dict[str, ElementSnapshot]]:
        cards = list(self.cards)
        return cards[:limit] if limit else cards

    async def click(self, selector: str, index: int = 0) -> bool:
        handler = self.on_click.get(selector)
        if handler is None and not self.elements.get(selector) and self.counts.get(selector, 0) <= 0:
            return False
        self.clicks.append((selector, index))
        if handler is not None:
            outcome = handler(self, index)
            return True if outcome is None else bool(outcome)
        return True

    async def document_language(self) -> str:
        return self.html_lang

    async def visible_text(self, max_chars: int = 20000) -> str:
        return self.text[:max_chars]

    async def page_signals(self) -> PageSignals:
        if self.raise_on_signals is not None:
            raise self.raise_on_signals
        return self.signals

    async def scroll_feed(self, card_selectors: tuple[str, ...], step_px: int) -> ScrollMetrics:
        self.scrolls += 1
        if self.on_scroll is not None:
            self.on_scroll(self)
        return ScrollMetrics(found=True, scrolled=True, at_bottom=False, scroll_top=self.scrolls * step_px)

    async def scroll_to_top(self) -> None:
        return None

    async def clear_transient_markers(self) -> None:
        return None

    async def collect_garbage(self) -> None:
        self.garbage_collections += 1


class FakeClock:
    def __init__(self, start: float = 1000.0, step: float = 0.0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGenaiModels:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def generate_content(self, *, model: str, contents: str) -> Any:
        self.calls.append({"model": model, "contents": contents})
        response = self._responses.pop(0) if self._responses else "[]"
        if isinstance(response, Exception):
            raise response
        part = SimpleNamespace(text=response)
        return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


class FakeGenaiClient:
    def __init__(self, responses: list[Any]) -> None:
        self.models = FakeGenaiModels(responses)


async def no_sleep(_: float) -> None:
    return None


class FakeReviewSource:
    """Review source returning scripted results or raising scripted errors."""

    def __init__(self, outcomes: list[CollectionResult | Exception]) -> None:
        self._outcomes = outcomes
        self.calls = 0
        self.entered = 0
        self.exited = 0

    def __call__(self) -> FakeReviewSource:
        return self

    async def __aenter__(self) -> FakeReviewSource:
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.exited += 1

    async def collect(self, url: str, targets: dict[str, int] | None = None) -> CollectionResult:
        outcome = self._outcomes[min(self.calls, len(self._outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
