from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from src.models.analysis import AnalysisResults, FakeReviewAnalysis, SentimentAnalysis
from src.models.collection import PhaseResult, SampledReviews
from src.models.review import Review

SessionStatus = Literal[
    "pending",
    "scraping",
    "sampling",
    "sentiment",
    "fake-detection",
    "verdict",
    "complete",
    "error",
]
PHASE_ORDER: tuple[str, ...] = ("scraping", "sampling", "sentiment", "fake-detection", "verdict")

ErrorCategory = Literal[
    "validation",
    "no_reviews",
    "browser_launch",
    "navigation",
    "timeout",
    "scraping",
    "api",
    "network",
    "unknown",
]


class AnalysisProgress(BaseModel):
    phase: str = "pending"
    percent: int = Field(default=0, ge=0, le=100)
    message: str = ""
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionError(BaseModel):
    category: ErrorCategory
    message: str
    user_message: str
    retryable: bool
    phase: str
    session_duration_ms: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CollectionSession(BaseModel):
    target_counts: dict[str, int] = Field(default_factory=dict)
    total_timeout_s: float = 300.0
    scrape_retries: int = 3
    analysis_retries: int = 2
    reviews_by_order: dict[str, list[Review]] = Field(default_factory=dict)
    phase_results: list[PhaseResult] = Field(default_factory=list)
    duplicates_removed: int = 0
    collection_time_ms: int = 0


class AnalysisSession(BaseModel):
    id: str
    url: str
    status: SessionStatus = "pending"
    progress: AnalysisProgress = Field(default_factory=AnalysisProgress)
    collection: CollectionSession = Field(default_factory=CollectionSession)
    reviews: list[Review] | None = None
    sample: SampledReviews | None = None
    sentiment: list[SentimentAnalysis] | None = None
    fake_analysis: list[FakeReviewAnalysis] | None = None
    results: AnalysisResults | None = None
    error: SessionError | None = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    def status_payload(self) -> dict:
        payload = {
            "session_id": self.id,
            "url": self.url,
            "status": self.status,
            "progress": self.progress.model_dump(mode="json"),
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.results is not None:
            payload["results"] = self.results.model_dump(mode="json")
        if self.error is not None:
            payload["error"] = self.error.model_dump(mode="json")
        if self.completed_at is not None:
            payload["completed_at"] = self.completed_at.isoformat()
        return payload
