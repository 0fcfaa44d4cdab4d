import logging
from datetime import datetime, timezone

from src.models.analysis import (
    AnalysisBreakdown,
    FakeReviewAnalysis,
    QualityMetrics,
    ReviewCitation,
    SamplingSummary,
    SentimentAnalysis,
    TransparencyReport,
)
from src.models.collection import SampledReviews
from src.models.review import Review
from src.utils.url_validator import is_valid_review_url

LOGGER = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class ReviewCitationService:
    def build_citations(
        self,
        reviews: list[Review],
        sentiment: list[SentimentAnalysis],
        fake_analysis: list[FakeReviewAnalysis],
    ) -> list[ReviewCitation]:
        sentiment_by_id = {item.review_id: item for item in sentiment}
        fake_by_id = {item.review_id: item for item in fake_analysis}

        missing = 0
        citations: list[ReviewCitation] = []
        for review in sorted(reviews, key=lambda item: item.date or _OLDEST, reverse=True):
            review_sentiment = sentiment_by_id.get(review.id)
            review_fake = fake_by_id.get(review.id)
            if review_sentiment is None or review_fake is None:
                missing += 1

            citations.append(
                ReviewCitation(
                    review_id=review.id,
                    author=review.author,
                    rating=review.rating,
                    text=review.text,
                    original_url=review.original_url,
                    sort_origin=review.sort_origin,
                    sentiment=review_sentiment or SentimentAnalysis(review_id=review.id, source="fallback"),
                    fake_analysis=(
                        review_fake.model_copy(update={"reasons": [r.strip() for r in review_fake.reasons if r.strip()]})
                        if review_fake
                        else FakeReviewAnalysis(review_id=review.id, confidence=0.0, source="fallback")
                    ),
                )
            )

        if missing:
            LOGGER.warning("%s of %s citations are missing analysis results", missing, len(reviews))
        return citations

    def transparency_report(
        self,
        sampled: SampledReviews,
        methodology: str,
        sentiment: list[SentimentAnalysis],
        fake_analysis: list[FakeReviewAnalysis],
        citations: list[ReviewCitation],
    ) -> TransparencyReport:
        return TransparencyReport(
            sampling_breakdown=self.sampling_summary(sampled, methodology),
            analysis_breakdown=self.analysis_breakdown(sentiment, fake_analysis),
            quality_metrics=self.quality_metrics(sentiment, fake_analysis, citations),
        )

    def sampling_summary(self, sampled: SampledReviews, methodology: str) -> SamplingSummary:
        return SamplingSummary(
            total_original_reviews=sampled.total_original,
            sampling_used=sampled.sampling_used,
            sample_breakdown=sampled.breakdown if sampled.sampling_used else None,
            sampling_methodology=methodology,
        )

    def analysis_breakdown(
        self,
        sentiment: list[SentimentAnalysis],
        fake_analysis: list[FakeReviewAnalysis],
    ) -> AnalysisBreakdown:
        total = len(sentiment)
        if total == 0:
            return AnalysisBreakdown()

        fake_count = sum(1 for item in fake_analysis if item.is_fake)
        mismatch_count = sum(1 for item in sentiment if item.mismatch_detected)
        sentiment_confidence = sum(item.confidence for item in sentiment) / total
        fake_confidence = sum(item.confidence for item in fake_analysis) / total

        return AnalysisBreakdown(
            total_analyzed=total,
            fake_review_count=fake_count,
            fake_review_ratio=round(fake_count / total, 4),
            sentiment_mismatch_count=mismatch_count,
            sentiment_mismatch_ratio=round(mismatch_count / total, 4),
            average_confidence_score=round((sentiment_confidence + fake_confidence) / 2, 2),
            fallback_sentiment_count=sum(1 for item in sentiment if item.source == "fallback"),
            fallback_fake_count=sum(1 for item in fake_analysis if item.source == "fallback"),
        )

    def quality_metrics(
        self,
        sentiment: list[SentimentAnalysis],
        fake_analysis: list[FakeReviewAnalysis],
        citations: list[ReviewCitation],
    ) -> QualityMetrics:
        total = len(sentiment)
        if total == 0:
            return QualityMetrics()

        fake_ids = {item.review_id for item in fake_analysis}
        complete = sum(1 for item in sentiment if item.review_id in fake_ids) / total
        average_confidence = sum(item.confidence for item in sentiment) / total
        valid_links = sum(1 for citation in citations if is_valid_review_url(citation.original_url))

        return QualityMetrics(
            citation_accuracy=round(complete * 0.7 + average_confidence * 0.3, 2),
            link_validity_ratio=round(valid_links / len(citations), 2) if citations else 0.0,
            analysis_completeness=round(complete, 2),
        )
