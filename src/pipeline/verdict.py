import re
from statistics import mean

from src.models.analysis import AnalysisMetrics, FakeReviewAnalysis, SentimentAnalysis, Verdict
from src.models.review import Review

SANITATION_HAZARD_KEYWORDS: tuple[str, ...] = (
    "cockroach", "cockroaches", "roach", "roaches",
    "rodent", "rodents", "rat", "rats", "mouse", "mice",
    "insect", "insects", "bug", "bugs", "maggot", "maggots",
    "mold", "mould", "mildew",
    "filthy", "filth", "dirty restroom", "dirty bathroom", "dirty toilet", "unsanitary", "unsanitary conditions",
    "hygiene", "sanitation", "infestation", "infested",
    "food poisoning", "vomit", "vomiting", "diarrhea", "diarrhoea", "nausea",
    "undercooked", "raw chicken", "raw meat", "hair in food", "sewage",
)


_HAZARD_PATTERNS = tuple(re.compile(rf"\b{re.escape(keyword)}\b") for keyword in SANITATION_HAZARD_KEYWORDS)


def sanitation_hazard_hits(reviews: list[Review]) -> int:
    corpus = "\n".join(review.text.lower() for review in reviews)
    return sum(1 for pattern in _HAZARD_PATTERNS if pattern.search(corpus))


class ReviewVerdictGenerator:
    """Scores a place from analyzed reviews; fake-flagged reviews never count."""

    def generate(
        self,
        reviews: list[Review],
        sentiment: list[SentimentAnalysis],
        fake_analysis: list[FakeReviewAnalysis],
    ) -> tuple[Verdict, AnalysisMetrics]:
        fake_ids = {item.review_id for item in fake_analysis if item.is_fake}
        authentic = [review for review in reviews if review.id not in fake_ids]
        authentic_sentiment = [item for item in sentiment if item.review_id not in fake_ids]
        hazard_hits = sanitation_hazard_hits(authentic)

        verdict = self.score(authentic, authentic_sentiment, len(fake_ids), hazard_hits)
        metrics = self.metrics(sentiment, fake_analysis, hazard_hits)
        return verdict, metrics

    def score(
        self,
        authentic: list[Review],
        authentic_sentiment: list[SentimentAnalysis],
        fake_count: int,
        hazard_hits: int = 0,
    ) -> Verdict:
        if not authentic:
            return Verdict(overall_score=0, trustworthiness=0, red_flags=100)

        average_rating = mean(review.rating for review in authentic)
        mismatch_ratio = (
            sum(1 for item in authentic_sentiment if item.mismatch_detected) / len(authentic_sentiment)
            if authentic_sentiment
            else 0.0
        )
        red_flags = self.red_flags(authentic, authentic_sentiment, mismatch_ratio, fake_count, hazard_hits)

        return Verdict(
            overall_score=self._clamp(round(average_rating / 5 * 100)),
            trustworthiness=self._clamp(round((1 - mismatch_ratio) * 100)),
            red_flags=self._clamp(red_flags),
        )

    def red_flags(
        self,
        authentic: list[Review],
        authentic_sentiment: list[SentimentAnalysis],
        mismatch_ratio: float,
        fake_count: int,
        hazard_hits: int,
    ) -> float:
        score = 0

        if mismatch_ratio > 0.22:
            score += 30
        elif mismatch_ratio > 0.10:
            score += 15

        extreme_ratio = sum(1 for review in authentic if review.rating in {1, 5}) / len(authentic)
        if extreme_ratio > 0.8:
            score += 30
        elif extreme_ratio > 0.6:
            score += 15

        if authentic_sentiment:
            average_confidence = mean(item.confidence for item in authentic_sentiment)
            if average_confidence < 0.5:
                score += 20
            elif average_confidence < 0.6:
                score += 10

        considered = len(authentic) + fake_count
        fake_ratio = fake_count / considered if considered else 0.0
        if fake_ratio > 0.3:
            score += 35
        elif fake_ratio > 0.15:
            score += 20

        if hazard_hits > 0:
            score += min(20, 5 + hazard_hits * 2)

        return min(100, score)

    def metrics(
        self,
        sentiment: list[SentimentAnalysis],
        fake_analysis: list[FakeReviewAnalysis],
        hazard_hits: int = 0,
    ) -> AnalysisMetrics:
        total = len(sentiment)
        if total == 0:
            return AnalysisMetrics(sanitation_hazard_hits=hazard_hits)

        fake_count = sum(1 for item in fake_analysis if item.is_fake)
        mismatch_count = sum(1 for item in sentiment if item.mismatch_detected)
        sentiment_confidence = mean(item.confidence for item in sentiment)
        fake_confidence = mean(item.confidence for item in fake_analysis) if fake_analysis else 0.0

        return AnalysisMetrics(
            fake_review_ratio=round(fake_count / total, 2),
            sentiment_mismatch_ratio=round(mismatch_count / total, 2),
            confidence_score=round((sentiment_confidence + fake_confidence) / 2, 2),
            sanitation_hazard_hits=hazard_hits,
        )

    def _clamp(self, value: float) -> float:
        return max(0.0, min(100.0, float(value)))
