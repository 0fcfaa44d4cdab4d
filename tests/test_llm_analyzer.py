import pytest

from src.pipeline.fallback_classifier import FallbackClassifier
from src.pipeline.llm_analyzer import ResponseParseError, ReviewLLMAnalyzer
from src.pipeline.quality_filter import ReviewQualityFilter, is_symbol_only
from tests.fakes import FakeGenaiClient, make_review, no_sleep


def _analyzer(responses: list, **overrides) -> ReviewLLMAnalyzer:
    options = {
        "client": FakeGenaiClient(responses),
        "use_fallback": False,
        "sentiment_batch_size": 2,
        "sentiment_concurrency": 1,
        "sentiment_delay_ms": 0,
        "fake_batch_size": 2,
        "fake_concurrency": 1,
        "fake_delay_ms": 0,
        "max_retries": 2,
        "sleep": no_sleep,
    }
    options.update(overrides)
    return ReviewLLMAnalyzer(**options)


def test_fallback_sentiment_counts_keywords() -> None:
    classifier = FallbackClassifier()

    positive = classifier.sentiment(make_review("a", 5, "Amazing food, great staff"))
    contradicted = classifier.sentiment(make_review("b", 1, "Great place, love it"))
    by_rating = classifier.sentiment(make_review("c", 3, "We came on Tuesday"))

    assert (positive.sentiment, positive.confidence, positive.mismatch_detected) == ("positive", 0.7, False)
    assert (contradicted.sentiment, contradicted.confidence, contradicted.mismatch_detected) == ("positive", 0.6, True)
    assert (by_rating.sentiment, by_rating.confidence) == ("neutral", 0.5)
    assert positive.source == "fallback"


def test_fallback_fake_detection_rules() -> None:
    classifier = FallbackClassifier()

    brief = classifier.fake(make_review("a", 5, "Amazing!"))
    promotional = classifier.fake(
        make_review("b", 4, "The best, most perfect and amazing and incredible spot in town")
    )
    plain = classifier.fake(make_review("c", 3, "Decent pasta, slow service but a friendly waiter"))

    assert (brief.is_fake, brief.confidence, brief.reasons) == (True, 0.3, ["Extremely brief with extreme rating"])
    assert (promotional.is_fake, promotional.confidence) == (True, 0.35)
    assert promotional.reasons == ["Excessive promotional language"]
    assert (plain.is_fake, plain.confidence, plain.reasons) == (False, 0.2, [])


def test_quality_filter_separates_empty_and_symbol_only_text() -> None:
    reviews = [make_review("a", 5, ""), make_review("b", 5, "👍👍"), make_review("c", 4, "ok!"), make_review("d", 1, " ... ")]

    result = ReviewQualityFilter().split(reviews)

    assert [review.author for review in result.analyzable] == ["c"]
    assert result.stats == {"total": 4, "sent_to_llm": 1, "skipped_empty": 1, "skipped_symbol_only": 2}
    assert is_symbol_only("  ") is False


@pytest.mark.asyncio
async def test_fallback_mode_never_calls_the_model() -> None:
    analyzer = _analyzer(["should not be used"], use_fallback=True)
    reviews = [make_review("a", 5, "Great"), make_review("b", 1, "Awful")]

    results = await analyzer.analyze_sentiment(reviews)

    assert [result.review_id for result in results] == [review.id for review in reviews]
    assert all(result.source == "fallback" for result in results)
    assert analyzer.client.models.calls == []


@pytest.mark.asyncio
async def test_missing_api_key_disables_the_model() -> None:
    analyzer = ReviewLLMAnalyzer(api_key="", use_fallback=False)

    results = await analyzer.detect_fake([make_review("a", 5, "Amazing!")])

    assert analyzer.llm_enabled is False
    assert results[0].is_fake is True


@pytest.mark.asyncio
async def test_batches_are_parsed_in_input_order() -> None:
    analyzer = _analyzer(
        [
            '```json\n[{"sentiment": "positive", "confidence": 0.9, "mismatchDetected": false},'
            ' {"sentiment": "NEGATIVE", "confidence": 0.8, "mismatch_detected": true}]\n```',
            '[{"sentiment": "ecstatic", "confidence": 7}]',
        ]
    )
    reviews = [make_review("a", 5, "Lovely"), make_review("b", 5, "Cold and rude"), make_review("c", 3, "Fine")]

    results = await analyzer.analyze_sentiment(reviews)

    assert [result.review_id for result in results] == [review.id for review in reviews]
    assert [result.sentiment for result in results] == ["positive", "negative", "neutral"]
    assert results[1].mismatch_detected is True
    assert results[2].confidence == 0.5
    assert all(result.source == "llm" for result in results)
    assert len(analyzer.client.models.calls) == 2


@pytest.mark.asyncio
async def test_short_response_is_padded_with_fallback_results() -> None:
    analyzer = _analyzer(['[{"isFake": false, "confidence": 0.9, "reasons": []}]'])
    reviews = [make_review("a", 4, "Nice place for lunch"), make_review("b", 5, "Amazing!")]

    results = await analyzer.detect_fake(reviews)

    assert (results[0].source, results[0].is_fake) == ("llm", False)
    assert (results[1].source, results[1].is_fake) == ("fallback", True)


@pytest.mark.asyncio
async def test_unparseable_response_falls_back_for_the_batch() -> None:
    analyzer = _analyzer(["Sorry, I cannot help with that."])

    results = await analyzer.analyze_sentiment([make_review("a", 5, "Great"), make_review("b", 1, "Bad")])

    assert [result.source for result in results] == ["fallback", "fallback"]
    assert len(analyzer.client.models.calls) == 1


@pytest.mark.asyncio
async def test_failed_call_is_retried_after_a_delay() -> None:
    delays: list[float] = []

    async def record(seconds: float) -> None:
        delays.append(seconds)

    analyzer = _analyzer([RuntimeError("boom"), '[{"sentiment": "positive", "confidence": 0.9}]'], sleep=record)

    results = await analyzer.analyze_sentiment([make_review("a", 5, "Great")])

    assert results[0].source == "llm"
    assert delays == [2.0]


@pytest.mark.asyncio
async def test_exhausted_retries_fall_back() -> None:
    analyzer = _analyzer([RuntimeError("boom"), RuntimeError("boom again")])

    results = await analyzer.analyze_sentiment([make_review("a", 1, "Terrible")])

    assert results[0].source == "fallback"
    assert results[0].sentiment == "negative"


@pytest.mark.asyncio
async def test_texts_without_words_skip_the_model() -> None:
    analyzer = _analyzer(['[{"sentiment": "positive", "confidence": 0.8}]'])
    reviews = [make_review("a", 5, ""), make_review("b", 5, "👍👍"), make_review("c", 4, "Tasty shakshuka")]

    results = await analyzer.analyze_sentiment(reviews)

    assert [result.source for result in results] == ["fallback", "fallback", "llm"]
    assert len(analyzer.client.models.calls) == 1
    assert "Tasty shakshuka" in analyzer.client.models.calls[0]["contents"]


def test_rate_limit_detection_and_backoff() -> None:
    analyzer = _analyzer([], rate_limit_base_ms=1000)
    limited = RuntimeError("429 RESOURCE_EXHAUSTED: quota")

    assert analyzer.is_rate_limited(limited) is True
    assert analyzer.is_rate_limited(RuntimeError("connection reset")) is False
    assert 2.0 <= analyzer.retry_delay_s(limited, 1) <= 7.0
    assert analyzer.retry_delay_s(RuntimeError("connection reset"), 1) == 2.0


def test_fake_response_accepts_snake_case_and_caps_reasons() -> None:
    analyzer = _analyzer([])
    review = make_review("a", 5, "Best place ever")

    results = analyzer.parse_fake_response(
        '[{"is_fake": true, "confidence": 0.9, "reasons": ["a", "b", "c", "d", "e", "f", " "]}]', [review]
    )

    assert results[0].is_fake is True
    assert results[0].reasons == ["a", "b", "c", "d", "e"]


def test_non_array_response_is_a_parse_error() -> None:
    analyzer = _analyzer([])

    with pytest.raises(ResponseParseError):
        analyzer.parse_sentiment_response('{"sentiment": "positive"}', [make_review("a", 5, "Great")])


def test_string_flags_are_read_as_booleans() -> None:
    analyzer = _analyzer([])
    reviews = [make_review("a", 5, "Great"), make_review("b", 1, "Bad"), make_review("c", 3, "Fine")]

    fake = analyzer.parse_fake_response(
        '[{"isFake": "false", "confidence": 0.9}, {"isFake": "True", "confidence": 0.8}, {"isFake": 1}]', reviews
    )
    sentiment = analyzer.parse_sentiment_response(
        '[{"sentiment": "positive", "mismatchDetected": "false"}, {"sentiment": "negative", "mismatch_detected": "true"}]',
        reviews[:2],
    )

    assert [result.is_fake for result in fake] == [False, True, False]
    assert [result.mismatch_detected for result in sentiment] == [False, True]
