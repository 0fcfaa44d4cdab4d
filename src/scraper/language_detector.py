from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from time import monotonic
from typing import Callable

from src.models.detection import Language, LanguageDetectionResult
from src.scraper.page_query import PageQuery
from src.scraper.selector_resolver import selector_set_for_family
from src.scraper.selectors import UI_VOCABULARY

LOGGER = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    result: LanguageDetectionResult
    stored_at: float
    ttl_s: float


class DetectionCache:
    """TTL cache for detection results keyed by page identity.

    When full, the entry with the lowest ``stored_at + confidence * 60`` is
    evicted, so old low-confidence results go first.
    """

    def __init__(
        self,
        *,
        ttl_s: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._ttl_s = ttl_s
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> LanguageDetectionResult | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= entry.ttl_s:
            del self._entries[key]
            return None
        return entry.result

    def put(self, key: str, result: LanguageDetectionResult, ttl_s: float | None = None) -> None:
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict_one()
        self._entries[key] = _CacheEntry(
            result=result,
            stored_at=self._clock(),
            ttl_s=self._ttl_s if ttl_s is None else ttl_s,
        )

    def clear(self) -> None:
        self._entries.clear()

    def _evict_one(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.stored_at >= entry.ttl_s]
        if expired:
            for key in expired:
                del self._entries[key]
            return

        victim = min(
            self._entries,
            key=lambda key: self._entries[key].stored_at + self._entries[key].result.confidence * 60,
        )
        del self._entries[victim]


@dataclass(frozen=True)
class DetectionSignals:
    html_lang: str = ""
    text: str = ""
    rtl_elements: int = 0
    hebrew_ui_labels: int = 0
    english_ui_labels: int = 0


class LanguageDetector:
    _HEBREW_CHARS_REGEX = re.compile(r"[\u0590-\u05FF\uFB1D-\uFB4F]")
    _HEBREW_UI_SELECTOR = ", ".join(f"[aria-label*='{label}']" for label in UI_VOCABULARY["hebrew"]["ui_labels"])
    _ENGLISH_UI_SELECTOR = ", ".join(f"[aria-label*='{label}']" for label in UI_VOCABULARY["english"]["ui_labels"])

    FALLBACK_LANGUAGE: Language = "english"
    FALLBACK_CONFIDENCE = 0.3

    def __init__(self, cache: DetectionCache | None = None, *, fallback_ttl_s: float = 60.0) -> None:
        self.cache = cache or DetectionCache()
        self._fallback_ttl_s = fallback_ttl_s

    async def detect(self, page: PageQuery, *, content_qualified: bool = False) -> LanguageDetectionResult:
        key = page.url
        try:
            if content_qualified:
                key = f"{key}#{await self._content_hash(page)}"

            cached = self.cache.get(key)
            if cached is not None:
                return cached

            signals = await self._gather_signals(page)
            result = self.score_signals(signals)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Language detection failed for %s, using fallback: %s", page.url, exc)
            result = self.fallback_result(str(exc))
            self.cache.put(key, result, ttl_s=self._fallback_ttl_s)
            return result

        self.cache.put(key, result)
        LOGGER.info(
            "Detected language=%s confidence=%.2f evidence=%s",
            result.language,
            result.confidence,
            result.detected_elements,
        )
        return result

    def score_signals(self, signals: DetectionSignals) -> LanguageDetectionResult:
        scores: dict[Language, float] = {"english": 0.0, "hebrew": 0.0}
        evidence: list[str] = []

        html_lang = signals.html_lang.strip().lower()
        if html_lang.startswith(("he", "iw")):
            scores["hebrew"] += 30
            evidence.append(f"html-lang:{html_lang}")
        elif html_lang.startswith("en"):
            scores["english"] += 30
            evidence.append(f"html-lang:{html_lang}")

        hebrew_chars = len(self._HEBREW_CHARS_REGEX.findall(signals.text))
        if hebrew_chars:
            scores["hebrew"] += min(hebrew_chars * 2, 40)
            evidence.append(f"hebrew-chars:{hebrew_chars}")

        for word in UI_VOCABULARY["hebrew"]["words"]:
            if word in signals.text:
                scores["hebrew"] += 15
                evidence.append(f"hebrew-word:{word}")

        lowered = signals.text.lower()
        for word in UI_VOCABULARY["english"]["words"]:
            if word in lowered:
                scores["english"] += 10
                evidence.append(f"english-word:{word}")

        if signals.rtl_elements > 0:
            scores["hebrew"] += 20
            evidence.append(f"rtl-elements:{signals.rtl_elements}")

        if signals.hebrew_ui_labels > 0:
            scores["hebrew"] += 25
            evidence.append("hebrew-ui")

        if signals.english_ui_labels > 0:
            scores["english"] += 20
            evidence.append("english-ui")

        # Ties resolve to the default language.
        language: Language = "hebrew" if scores["hebrew"] > scores["english"] else "english"
        confidence = min(max(scores[language], 0.0) / 100, 1.0)

        return LanguageDetectionResult(
            language=language,
            confidence=confidence,
            is_rtl=language == "hebrew",
            detected_elements=evidence,
            suggested_selectors=selector_set_for_family(language).merged_with(selector_set_for_family("generic")),
        )

    def fallback_result(self, error: str | None = None) -> LanguageDetectionResult:
        evidence = ["fallback-default"]
        if error:
            evidence.append(f"error: {error}")
        return LanguageDetectionResult(
            language=self.FALLBACK_LANGUAGE,
            confidence=self.FALLBACK_CONFIDENCE,
            is_rtl=False,
            detected_elements=evidence,
            suggested_selectors=selector_set_for_family("generic"),
        )

    async def _gather_signals(self, page: PageQuery) -> DetectionSignals:
        page_signals = await page.page_signals()
        return DetectionSignals(
            html_lang=await page.document_language(),
            text=await page.visible_text(20000),
            rtl_elements=page_signals.rtl_elements,
            hebrew_ui_labels=await page.count(self._HEBREW_UI_SELECTOR),
            english_ui_labels=await page.count(self._ENGLISH_UI_SELECTOR),
        )

    async def _content_hash(self, page: PageQuery) -> str:
        text = await page.visible_text(2000)
        return hashlib.sha1(text.encode("utf-8")).hexdigest()[:12]
