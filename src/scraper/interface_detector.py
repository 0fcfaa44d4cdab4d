from __future__ import annotations

import logging
import re

from src.models.detection import InterfaceDetectionResult
from src.scraper.page_query import PageQuery, PageSignals
from src.scraper.selectors import LEGACY_LAYOUT_MARKERS, MODERN_LAYOUT_MARKERS

LOGGER = logging.getLogger(__name__)


class InterfaceDetector:
    _MOBILE_UA_REGEX = re.compile(r"Mobile|Android|iPhone|iPad|iPod|BlackBerry|Windows Phone", re.IGNORECASE)
    _MOBILE_CLASS_REGEX = re.compile(r"mobile|touch|compact|small", re.IGNORECASE)
    _DESKTOP_CLASS_REGEX = re.compile(r"desktop|large|wide|full", re.IGNORECASE)
    _MODERN_CLASS_PATTERNS = (
        re.compile(r"^[a-zA-Z]+[A-Z][a-zA-Z]*$"),
        re.compile(r"^[a-z]+-[a-z]+(-[a-z]+)*$"),
        re.compile(r"fontBody", re.IGNORECASE),
    )
    _LEGACY_CLASS_PATTERNS = (
        re.compile(r"^[a-z]+_[a-z]+(_[a-z]+)*$"),
        re.compile(r"section-", re.IGNORECASE),
        re.compile(r"gws-", re.IGNORECASE),
        re.compile(r"review-item", re.IGNORECASE),
    )

    async def detect(self, page: PageQuery) -> InterfaceDetectionResult:
        try:
            signals = await page.page_signals()
            modern_markers = [selector for selector in MODERN_LAYOUT_MARKERS if await page.count(selector) > 0]
            legacy_markers = [selector for selector in LEGACY_LAYOUT_MARKERS if await page.count(selector) > 0]
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Interface detection failed, assuming desktop/unknown: %s", exc)
            return InterfaceDetectionResult()

        result = self.classify(signals, modern_markers, legacy_markers)
        LOGGER.info(
            "Interface detected type=%s version=%s layout=%s confidence=%.2f",
            result.interface_type,
            result.version,
            result.layout_pattern,
            result.confidence,
        )
        return result

    def classify(
        self,
        signals: PageSignals,
        modern_markers: list[str],
        legacy_markers: list[str],
    ) -> InterfaceDetectionResult:
        interface_type = self._interface_type(signals)
        version = self._version(modern_markers, legacy_markers)
        layout = self._layout_pattern(signals, len(modern_markers) + len(legacy_markers))
        css_pattern = self._css_class_pattern(signals.css_classes)

        confidence = 0.7
        if layout != "unknown":
            confidence += 0.1
        if modern_markers or legacy_markers:
            confidence += 0.1
        if modern_markers and legacy_markers:
            confidence -= 0.1

        return InterfaceDetectionResult(
            interface_type=interface_type,
            version=version,
            layout_pattern=layout,
            css_class_pattern=css_pattern,
            confidence=min(1.0, max(0.1, confidence)),
            layout_markers=[*modern_markers, *legacy_markers],
        )

    def _interface_type(self, signals: PageSignals) -> str:
        mobile_score = 0.0
        desktop_score = 0.0

        if signals.viewport_width <= 768:
            mobile_score += 2
        else:
            desktop_score += 2

        if self._MOBILE_UA_REGEX.search(signals.user_agent):
            mobile_score += 3
        else:
            desktop_score += 1

        if signals.has_touch:
            mobile_score += 1
        else:
            desktop_score += 1

        for css_class in signals.css_classes:
            if self._MOBILE_CLASS_REGEX.search(css_class):
                mobile_score += 0.5
            if self._DESKTOP_CLASS_REGEX.search(css_class):
                desktop_score += 0.5

        return "mobile" if mobile_score > desktop_score else "desktop"

    def _version(self, modern_markers: list[str], legacy_markers: list[str]) -> str:
        if modern_markers and legacy_markers:
            return "hybrid"
        if modern_markers:
            return "modern"
        if legacy_markers:
            return "legacy"
        return "unknown"

    def _layout_pattern(self, signals: PageSignals, marker_count: int) -> str:
        if signals.viewport_width <= 0 or signals.viewport_height <= 0:
            return "unknown"
        small_viewport = signals.viewport_width < 600 or signals.viewport_height < 800
        many_containers = marker_count > 2
        if small_viewport:
            return "compact" if many_containers else "minimal"
        return "standard" if many_containers else "compact"

    def _css_class_pattern(self, css_classes: tuple[str, ...]) -> str:
        modern_score = 0
        legacy_score = 0
        for css_class in css_classes[:50]:
            if any(pattern.search(css_class) for pattern in self._MODERN_CLASS_PATTERNS):
                modern_score += 1
            if any(pattern.search(css_class) for pattern in self._LEGACY_CLASS_PATTERNS):
                legacy_score += 1

        ratio = modern_score / max(legacy_score, 1)
        if ratio > 2:
            return "modern"
        if modern_score > 0 and legacy_score > 0:
            return "hybrid" if ratio >= 0.5 else "legacy"
        if legacy_score > 0:
            return "legacy"
        return "unknown"
