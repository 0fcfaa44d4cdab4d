from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Language = Literal["english", "hebrew"]
ConfidenceTier = Literal["high", "medium", "low"]

SELECTOR_FIELDS: tuple[str, ...] = (
    "reviews_tab",
    "review_container",
    "author_name",
    "rating",
    "review_text",
    "date",
)


class SelectorSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    reviews_tab: tuple[str, ...] = ()
    review_container: tuple[str, ...] = ()
    author_name: tuple[str, ...] = ()
    rating: tuple[str, ...] = ()
    review_text: tuple[str, ...] = ()
    date: tuple[str, ...] = ()

    def for_field(self, field: str) -> tuple[str, ...]:
        if field not in SELECTOR_FIELDS:
            raise KeyError(f"Unknown selector field '{field}'.")
        return getattr(self, field)

    def merged_with(self, fallback: "SelectorSet") -> "SelectorSet":
        """Append ``fallback`` selectors after ours, keeping first occurrences."""
        values = {
            field: tuple(dict.fromkeys([*self.for_field(field), *fallback.for_field(field)]))
            for field in SELECTOR_FIELDS
        }
        return SelectorSet(**values)


class LanguageDetectionResult(BaseModel):
    language: Language
    confidence: float = Field(ge=0.0, le=1.0)
    is_rtl: bool = False
    detected_elements: list[str] = Field(default_factory=list)
    suggested_selectors: SelectorSet = Field(default_factory=SelectorSet)
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def confidence_tier(self) -> ConfidenceTier:
        if self.confidence >= 0.8:
            return "high"
        if self.confidence >= 0.5:
            return "medium"
        return "low"


class InterfaceDetectionResult(BaseModel):
    interface_type: Literal["mobile", "desktop"] = "desktop"
    version: str = "unknown"
    layout_pattern: Literal["standard", "compact", "minimal", "unknown"] = "unknown"
    css_class_pattern: Literal["modern", "legacy", "hybrid", "unknown"] = "unknown"
    confidence: float = Field(default=0.1, ge=0.0, le=1.0)
    layout_markers: list[str] = Field(default_factory=list)
