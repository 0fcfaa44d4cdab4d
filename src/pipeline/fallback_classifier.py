from src.models.analysis import FakeReviewAnalysis, SentimentAnalysis
from src.models.review import Review


class FallbackClassifier:
    """Keyword heuristics used when the language model is unavailable."""

    POSITIVE_WORDS = (
        "excellent", "amazing", "great", "good", "fantastic", "wonderful", "perfect", "love",
        "best", "awesome", "outstanding", "superb", "delicious", "friendly", "helpful", "recommend",
        "מעולה", "מדהים", "טעים", "מומלץ", "אדיב",
    )
    NEGATIVE_WORDS = (
        "terrible", "awful", "bad", "horrible", "worst", "hate", "disgusting", "rude", "poor",
        "disappointing", "waste", "never", "avoid", "pathetic", "useless",
        "גרוע", "נורא", "מגעיל", "אכזבה", "לא ממליץ",
    )
    GENERIC_PHRASES = (
        "highly recommend", "amazing service", "great experience", "excellent quality",
        "outstanding service", "perfect place", "terrible service", "worst experience", "never again",
    )
    PROMOTIONAL_WORDS = ("best", "perfect", "amazing", "incredible", "outstanding")

    def sentiment(self, review: Review) -> SentimentAnalysis:
        text = review.text.lower()
        positive_count = sum(1 for word in self.POSITIVE_WORDS if word in text)
        negative_count = sum(1 for word in self.NEGATIVE_WORDS if word in text)

        sentiment = "neutral"
        confidence = 0.5
        if positive_count > negative_count:
            sentiment = "positive"
            confidence = min(0.7, 0.5 + positive_count * 0.1)
        elif negative_count > positive_count:
            sentiment = "negative"
            confidence = min(0.7, 0.5 + negative_count * 0.1)
        elif review.rating >= 4:
            sentiment = "positive"
        elif review.rating <= 2:
            sentiment = "negative"

        mismatch = (review.rating <= 2 and sentiment == "positive") or (review.rating >= 4 and sentiment == "negative")
        if mismatch:
            confidence = min(confidence, 0.6)

        return SentimentAnalysis(
            review_id=review.id,
            sentiment=sentiment,
            confidence=round(confidence, 2),
            mismatch_detected=mismatch,
            source="fallback",
        )

    def fake(self, review: Review) -> FakeReviewAnalysis:
        text = review.text.lower()
        word_count = len(review.text.split())
        reasons: list[str] = []
        confidence = 0.2

        generic_count = sum(1 for phrase in self.GENERIC_PHRASES if phrase in text)
        if generic_count >= 2 and word_count < 20:
            reasons.append("Generic language with minimal detail")
            confidence = 0.4

        if word_count < 5 and review.rating in {1, 5}:
            reasons.append("Extremely brief with extreme rating")
            confidence = 0.3

        promotional_count = sum(1 for word in self.PROMOTIONAL_WORDS if word in text)
        if promotional_count >= 3:
            reasons.append("Excessive promotional language")
            confidence = 0.35

        return FakeReviewAnalysis(
            review_id=review.id,
            is_fake=bool(reasons),
            confidence=confidence,
            reasons=reasons,
            source="fallback",
        )
