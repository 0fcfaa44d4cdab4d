from __future__ import annotations

import logging
from functools import lru_cache
from itertools import zip_longest
from typing import Iterable

from src.models.detection import (
    SELECTOR_FIELDS,
    ConfidenceTier,
    InterfaceDetectionResult,
    LanguageDetectionResult,
    SelectorSet,
)
from src.scraper.page_query import PageQuery
from src.scraper.selectors import INTERFACE_CONTAINER_SELECTORS, SELECTOR_FAMILIES

LOGGER = logging.getLogger(__name__)


def specificity(selector: str) -> int:
    """Attribute and class density of a selector."""
    return selector.count("[") + selector.count(".") + selector.count("#") + selector.count(">")


def order_by_specificity(selectors: Iterable[str]) -> tuple[str, ...]:
    unique = list(dict.fromkeys(selector for selector in selectors if selector))
    # sorted() is stable, so equal specificity keeps authored order.
    return tuple(sorted(unique, key=specificity, reverse=True))


@lru_cache(maxsize=None)
def selector_set_for_family(family: str) -> SelectorSet:
    fields = SELECTOR_FAMILIES.get(family)
    if fields is None:
        raise KeyError(f"Unknown selector family '{family}'.")
    return SelectorSet(**{field: tuple(fields.get(field, ())) for field in SELECTOR_FIELDS})


def _interleave(primary: tuple[str, ...], secondary: tuple[str, ...]) -> list[str]:
    merged: list[str] = []
    for first, second in zip_longest(primary, secondary):
        if first is not None:
            merged.append(first)
        if second is not None:
            merged.append(second)
    return merged


class SelectorResolver:
    """Builds the ordered selector set used for one extraction call.

    High confidence puts the language family first with generic selectors as
    fallback. Medium confidence interleaves both and promotes whatever the live
    DOM actually contains. Low confidence starts generic.
    """

    def __init__(self) -> None:
        self._static_cache: dict[tuple[str, ConfidenceTier, str, str], SelectorSet] = {}

    async def resolve(
        self,
        detection: LanguageDetectionResult,
        page: PageQuery | None = None,
        interface: InterfaceDetectionResult | None = None,
    ) -> SelectorSet:
        tier = detection.confidence_tier
        base = self.resolve_static(detection.language, tier, interface)
        if tier != "medium" or page is None:
            return base

        probed: dict[str, tuple[str, ...]] = {}
        for field in SELECTOR_FIELDS:
            probed[field] = await self._promote_present(page, base.for_field(field))
        return SelectorSet(**probed)

    def resolve_static(
        self,
        language: str,
        tier: ConfidenceTier,
        interface: InterfaceDetectionResult | None = None,
    ) -> SelectorSet:
        version = interface.version if interface else "unknown"
        interface_type = interface.interface_type if interface else "desktop"
        cache_key = (language, tier, version, interface_type)
        cached = self._static_cache.get(cache_key)
        if cached is not None:
            return cached

        language_set = selector_set_for_family(language)
        generic_set = selector_set_for_family("generic")
        values: dict[str, tuple[str, ...]] = {}

        for field in SELECTOR_FIELDS:
            specific = order_by_specificity(language_set.for_field(field))
            generic = order_by_specificity(generic_set.for_field(field))
            if tier == "high":
                ordered = [*specific, *generic]
            elif tier == "medium":
                ordered = _interleave(specific, generic)
            else:
                ordered = [*generic, *specific]

            if field == "review_container":
                ordered = [*self._interface_containers(version, interface_type), *ordered]

            values[field] = tuple(dict.fromkeys(ordered))

        resolved = SelectorSet(**values)
        self._static_cache[cache_key] = resolved
        return resolved

    def _interface_containers(self, version: str, interface_type: str) -> list[str]:
        extra: list[str] = []
        if interface_type == "mobile":
            extra.extend(INTERFACE_CONTAINER_SELECTORS["mobile"])
        if version in {"legacy", "hybrid"}:
            extra.extend(INTERFACE_CONTAINER_SELECTORS["legacy"])
        return extra

    async def _promote_present(self, page: PageQuery, selectors: tuple[str, ...]) -> tuple[str, ...]:
        counts: dict[str, int] = {}
        for selector in selectors:
            try:
                counts[selector] = await page.count(selector)
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("Selector probe failed for %s: %s", selector, exc)
                counts[selector] = 0

        present = sorted((selector for selector in selectors if counts[selector] > 0), key=lambda s: -counts[s])
        absent = [selector for selector in selectors if counts[selector] <= 0]
        return tuple([*present, *absent])
