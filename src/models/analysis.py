from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from src.models.collection import SampleBreakdown

Sentiment = Literal["positive", "negative", "neutral"]
AnalysisSource = Literal["llm", "fallback"]


class SentimentAnalysis(BaseModel):
    review_id: str
    sentiment: Sentiment = "neutral"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    mismatch_detected: bool = False
    source: AnalysisSource = "llm"


class FakeReviewAnalysis(BaseModel):
    review_id: str
    is_fake: bool = False
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    source: AnalysisSource = "llm"


class Verdict(BaseModel):
    overall_score: float = Field(ge=0.0, le=100.0)
    trustworthiness: float = Field(ge=0.0, le=100.0)
    red_flags: float = Field(ge=0.0, le=100.0)


class AnalysisMetrics(BaseModel):
    fake_review_ratio: float = 0.0
    sentiment_mismatch_ratio: float = 0.0
    confidence_score: float = 0.0
    sanitation_hazard_hits: int = 0


class ReviewCitation(BaseModel):
    review_id: str
    author: str
    rating: int
    text: str
    original_url: str
    sort_origin: str
    sentiment: SentimentAnalysis
    fake_analysis: FakeReviewAnalysis


class SamplingSummary(BaseModel):
    total_original_reviews: int
    sampling_used: bool
    sample_breakdown: SampleBreakdown | None = None
    sampling_methodology: str


class AnalysisBreakdown(BaseModel):
    total_analyzed: int = 0
    fake_review_count: int = 0
    fake_review_ratio: float = 0.0
    sentiment_mismatch_count: int = 0
    sentiment_mismatch_ratio: float = 0.0
    average_confidence_score: float = 0.0
    fallback_sentiment_count: int = 0
    fallback_fake_count: int = 0


class QualityMetrics(BaseModel):
    citation_accuracy: float = 0.0
    link_validity_ratio: float = 0.0
    analysis_completeness: float = 0.0


class TransparencyReport(BaseModel):
    sampling_breakdown: SamplingSummary
    analysis_breakdown: AnalysisBreakdown
    quality_metrics: QualityMetrics


class AnalysisResults(BaseModel):
    verdict: Verdict
    metrics: AnalysisMetrics
    sampling: SamplingSummary
    citations: list[ReviewCitation] = Field(default_factory=list)
    transparency_report: TransparencyReport
    collection: dict = Field(default_factory=dict)
    stats: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
