from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from src.models.detection import SelectorSet
from src.models.review import Review
from src.pipeline.preprocessor import ReviewPreprocessor
from src.scraper.page_query import ElementSnapshot, PageQuery
from src.scraper.selectors import SELECTOR_PATTERNS

LOGGER = logging.getLogger(__name__)

ExtractFn = Callable[[], Awaitable[list[Review]]]


@dataclass
class ExtractionBatch:
    reviews: list[Review] = field(default_factory=list)
    rejected: int = 0
    container_selector: str | None = None


class ReviewExtractor:
    _AUTHOR_PREFIX_REGEX = re.compile(r"^(photo of|תמונה של)\s+", re.IGNORECASE)

    def __init__(self, preprocessor: ReviewPreprocessor | None = None, *, max_expand_clicks: int = 4) -> None:
        self.preprocessor = preprocessor or ReviewPreprocessor()
        self._max_expand_clicks = max_expand_clicks

    async def extract(
        self,
        page: PageQuery,
        selectors: SelectorSet,
        *,
        sort_origin: str,
        original_url: str = "",
        limit: int | None = None,
    ) -> ExtractionBatch:
        field_selectors = {
            "author": selectors.author_name,
            "rating": selectors.rating,
            "text": selectors.review_text,
            "date": selectors.date,
        }

        total_rejected = 0
        for container in selectors.review_container:
            cards = await page.query_cards(container, field_selectors, limit)
            if not cards:
                continue

            raw_reviews = [self.card_to_raw(card) for card in cards]
            reviews, rejected = self.preprocessor.process(
                raw_reviews,
                sort_origin=sort_origin,
                original_url=original_url,
            )
            total_rejected += rejected
            if reviews:
                if rejected:
                    LOGGER.debug("Rejected %s incomplete cards from %s", rejected, container)
                return ExtractionBatch(reviews=reviews, rejected=rejected, container_selector=container)

        return ExtractionBatch(rejected=total_rejected)

    def build_callback(
        self,
        page: PageQuery,
        selectors: SelectorSet,
        *,
        sort_origin: str,
        original_url: str = "",
    ) -> ExtractFn:
        async def extract_current() -> list[Review]:
            await self.expand_truncated(page)
            batch = await self.extract(page, selectors, sort_origin=sort_origin, original_url=original_url)
            return batch.reviews

        return extract_current

    async def expand_truncated(self, page: PageQuery) -> int:
        clicks = 0
        for selector in SELECTOR_PATTERNS["REVIEW_EXPAND"]:
            while clicks < self._max_expand_clicks:
                if await page.count(selector) <= 0:
                    break
                if not await page.click(selector, 0):
                    break
                clicks += 1
        return clicks

    def card_to_raw(self, card: dict[str, ElementSnapshot]) -> dict:
        author = self._field_text(card.get("author"))
        if not author:
            author_snapshot = card.get("author")
            author = self._AUTHOR_PREFIX_REGEX.sub("", author_snapshot.aria_label if author_snapshot else "")

        rating_snapshot = card.get("rating")
        rating = ""
        if rating_snapshot is not None:
            rating = rating_snapshot.aria_label or rating_snapshot.text

        return {
            "author": author,
            "rating": rating,
            "text": self._field_text(card.get("text")),
            "date": self._field_text(card.get("date")),
        }

    def _field_text(self, snapshot: ElementSnapshot | None) -> str:
        if snapshot is None:
            return ""
        return snapshot.text or ""
