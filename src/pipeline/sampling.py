from __future__ import annotations

from datetime import datetime, timezone

from src.models.collection import SampleBreakdown, SampledReviews
from src.models.review import Review

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class ReviewSampler:
    """Caps analysis volume at recent + five-star + one-star slices."""

    def __init__(self, threshold: int = 300, per_category: int = 100) -> None:
        self.threshold = threshold
        self.per_category = per_category

    def should_sample(self, reviews: list[Review]) -> bool:
        return len(reviews) > self.threshold

    def sample(self, reviews: list[Review]) -> SampledReviews:
        if not self.should_sample(reviews):
            return SampledReviews(
                reviews=list(reviews),
                breakdown=SampleBreakdown(recent=len(reviews)),
                categories={review.id: "recent" for review in reviews},
                sampling_used=False,
                total_original=len(reviews),
            )

        # Undated reviews sort after every dated one; sorted() keeps input order on ties.
        by_date = sorted(reviews, key=lambda review: review.date or _OLDEST, reverse=True)
        categories: dict[str, str] = {}
        recent = self._take(by_date, categories, "recent", lambda review: True)
        fivestar = self._take(reviews, categories, "fivestar", lambda review: review.rating == 5)
        onestar = self._take(reviews, categories, "onestar", lambda review: review.rating == 1)

        return SampledReviews(
            reviews=[*recent, *fivestar, *onestar],
            breakdown=SampleBreakdown(recent=len(recent), fivestar=len(fivestar), onestar=len(onestar)),
            categories=categories,
            sampling_used=True,
            total_original=len(reviews),
        )

    def sampling_report(self, sampled: SampledReviews) -> str:
        if not sampled.sampling_used:
            return (
                f"All {sampled.total_original} reviews were analyzed "
                f"(no sampling required as count ≤ {self.threshold})."
            )

        breakdown = sampled.breakdown
        total = breakdown.recent + breakdown.fivestar + breakdown.onestar
        share = total / sampled.total_original * 100 if sampled.total_original else 0.0
        return (
            f"Intelligent sampling applied to {sampled.total_original} reviews: "
            f"{breakdown.recent} most recent reviews, "
            f"{breakdown.fivestar} five-star reviews (excluding duplicates from the recent set) and "
            f"{breakdown.onestar} one-star reviews (excluding duplicates from the recent and five-star sets). "
            f"Total analyzed: {total} reviews ({share:.1f}% of the original dataset)."
        )

    def _take(self, reviews, categories: dict[str, str], category: str, predicate) -> list[Review]:
        taken: list[Review] = []
        for review in reviews:
            if len(taken) >= self.per_category:
                break
            if review.id in categories or not predicate(review):
                continue
            categories[review.id] = category
            taken.append(review)
        return taken
