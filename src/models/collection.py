from typing import Literal

from pydantic import BaseModel, Field

from src.models.detection import InterfaceDetectionResult, LanguageDetectionResult
from src.models.review import Review

NavigationMethod = Literal["click", "url", "fallback", "none"]
StoppedReason = Literal["target-reached", "stagnation", "no-more-content", "timeout", "error"]
PaginationMethod = Literal["scroll", "click", "hybrid"]
AdaptiveAdjustment = Literal["speed-up", "slow-down", "none"]


class SortNavigationResult(BaseModel):
    success: bool
    method_used: NavigationMethod = "none"
    sort_type: str
    attempts: int = 0
    evidence: str | None = None
    error: str | None = None
    duration_ms: int = 0
    page_reloaded: bool = False


class PaginationAttempt(BaseModel):
    attempt: int
    method: PaginationMethod
    reviews_before: int
    reviews_after: int
    response_time_ms: int
    success: bool
    adaptive_adjustment: AdaptiveAdjustment = "none"
    memory_mb: float | None = None
    error: str | None = None


class PaginationStats(BaseModel):
    pages_traversed: int = 0
    pagination_method: PaginationMethod = "scroll"
    time_elapsed_ms: int = 0
    scroll_attempts: int = 0
    click_attempts: int = 0
    average_response_ms: float = 0.0
    stagnation_detected: bool = False
    memory_cleanup_count: int = 0
    adaptive_adjustments: int = 0
    progressive_timeout_used: bool = False


class PaginationResult(BaseModel):
    reviews: list[Review] = Field(default_factory=list)
    stopped_reason: StoppedReason
    attempts: list[PaginationAttempt] = Field(default_factory=list)
    stats: PaginationStats = Field(default_factory=PaginationStats)
    error: str | None = None

    @property
    def reviews_collected(self) -> int:
        return len(self.reviews)


class DeduplicationResult(BaseModel):
    unique_reviews: list[Review] = Field(default_factory=list)
    duplicate_count: int = 0
    duplicate_ids: list[str] = Field(default_factory=list)
    # duplicate id -> (kind, kept id)
    duplicate_details: dict[str, tuple[str, str]] = Field(default_factory=dict)


class MergeResult(DeduplicationResult):
    labels: dict[str, str] = Field(default_factory=dict)
    contributions: dict[str, int] = Field(default_factory=dict)


class SampleBreakdown(BaseModel):
    recent: int = 0
    fivestar: int = 0
    onestar: int = 0


class SampledReviews(BaseModel):
    reviews: list[Review] = Field(default_factory=list)
    breakdown: SampleBreakdown = Field(default_factory=SampleBreakdown)
    categories: dict[str, str] = Field(default_factory=dict)
    sampling_used: bool = False
    total_original: int = 0


class PhaseResult(BaseModel):
    phase: str
    reviews_collected: int = 0
    target_count: int = 0
    success: bool = False
    stopped_reason: StoppedReason = "error"
    navigation_method: NavigationMethod = "none"
    time_elapsed_ms: int = 0
    error: str | None = None


class CollectionResult(BaseModel):
    unique_reviews: list[Review] = Field(default_factory=list)
    reviews_by_category: dict[str, list[Review]] = Field(default_factory=dict)
    contributions: dict[str, int] = Field(default_factory=dict)
    phase_results: list[PhaseResult] = Field(default_factory=list)
    total_collected: int = 0
    duplicates_removed: int = 0
    collection_time_ms: int = 0
    timed_out: bool = False
    language: LanguageDetectionResult | None = None
    interface: InterfaceDetectionResult | None = None
