from src.models.analysis import FakeReviewAnalysis, SentimentAnalysis
from src.pipeline.citations import ReviewCitationService
from src.pipeline.sampling import ReviewSampler
from tests.fakes import make_review


def test_citations_are_newest_first_with_placeholders() -> None:
    older = make_review("a", 4, "Good", days_ago=5)
    newer = make_review("b", 2, "Meh", days_ago=1)
    undated = make_review("c", 5, "Great")
    sentiment = [SentimentAnalysis(review_id=older.id, sentiment="positive", confidence=0.9)]
    fake = [FakeReviewAnalysis(review_id=older.id, is_fake=False, confidence=0.7, reasons=[" specific ", "  "])]

    citations = ReviewCitationService().build_citations([older, undated, newer], sentiment, fake)

    assert [citation.author for citation in citations] == ["b", "a", "c"]
    assert citations[1].sentiment.sentiment == "positive"
    assert citations[1].fake_analysis.reasons == ["specific"]
    assert citations[0].sentiment.source == "fallback"
    assert citations[0].fake_analysis.confidence == 0.0
    assert citations[0].original_url == newer.original_url


def test_transparency_report_summarizes_analysis() -> None:
    linked = make_review("a", 5, "Lovely")
    unlinked = make_review("b", 1, "Awful", original_url="")
    reviews = [linked, unlinked]
    sentiment = [
        SentimentAnalysis(review_id=linked.id, sentiment="positive", confidence=0.8),
        SentimentAnalysis(review_id=unlinked.id, sentiment="positive", confidence=0.8, mismatch_detected=True),
    ]
    fake = [
        FakeReviewAnalysis(review_id=linked.id, confidence=0.6, source="fallback"),
        FakeReviewAnalysis(review_id=unlinked.id, is_fake=True, confidence=0.6),
    ]
    service = ReviewCitationService()
    sampler = ReviewSampler()
    sampled = sampler.sample(reviews)
    citations = service.build_citations(reviews, sentiment, fake)

    report = service.transparency_report(sampled, sampler.sampling_report(sampled), sentiment, fake, citations)

    assert report.sampling_breakdown.total_original_reviews == 2
    assert report.sampling_breakdown.sampling_used is False
    assert report.sampling_breakdown.sample_breakdown is None
    assert report.sampling_breakdown.sampling_methodology.startswith("All 2 reviews")
    assert report.analysis_breakdown.total_analyzed == 2
    assert report.analysis_breakdown.fake_review_count == 1
    assert report.analysis_breakdown.sentiment_mismatch_ratio == 0.5
    assert report.analysis_breakdown.average_confidence_score == 0.7
    assert report.analysis_breakdown.fallback_fake_count == 1
    assert report.quality_metrics.link_validity_ratio == 0.5
    assert report.quality_metrics.analysis_completeness == 1.0
    assert report.quality_metrics.citation_accuracy == 0.94


def test_empty_analysis_yields_zeroed_breakdowns() -> None:
    service = ReviewCitationService()

    assert service.analysis_breakdown([], []).total_analyzed == 0
    assert service.quality_metrics([], [], []).citation_accuracy == 0.0
