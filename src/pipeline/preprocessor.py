import re
import unicodedata
from collections import Counter
from datetime import datetime, timedelta, timezone
from statistics import mean

from src.models.review import Review
from src.utils.review_id import review_id


class ReviewPreprocessor:
    """Single validation boundary between raw DOM bundles and ``Review`` records."""

    _CONTROL_CHARS_REGEX = re.compile(r"[\x00-\x1F\x7F]")
    _NUMBER_REGEX = re.compile(r"(\d+(?:[.,]\d+)?)")
    _OUT_OF_FIVE_REGEX = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:/|of|out of|מתוך|de)\s*5")

    CONFIDENCE_FLOOR = 0.3

    # (terms, seconds per unit, implied amount); dual forms imply their own amount.
    _TIME_UNITS: tuple[tuple[tuple[str, ...], int, int | None], ...] = (
        (("יומיים",), 86400, 2),
        (("שבועיים",), 7 * 86400, 2),
        (("חודשיים",), 30 * 86400, 2),
        (("שנתיים",), 365 * 86400, 2),
        (("minute", "min", "דקה", "דקות", "minuto"), 60, None),
        (("hour", "שעה", "שעות", "hora"), 3600, None),
        (("day", "יום", "ימים", "dia"), 86400, None),
        (("week", "שבוע", "שבועות", "semana"), 7 * 86400, None),
        (("month", "חודש", "חודשים", "mes"), 30 * 86400, None),
        (("year", "שנה", "שנים", "ano"), 365 * 86400, None),
    )
    _JUST_NOW_TERMS = ("just now", "moments ago", "הרגע", "hace un momento")

    def to_review(
        self,
        raw: dict,
        *,
        sort_origin: str,
        original_url: str = "",
        now: datetime | None = None,
    ) -> Review | None:
        author = self._clean_text(raw.get("author"))
        text = self._clean_text(raw.get("text"))
        relative_time = self._clean_text(raw.get("date"))
        rating = self._coerce_rating(raw.get("rating"))
        date = self.parse_relative_date(relative_time, now=now)

        confidence = self.extraction_confidence(author=author, text=text, rating=rating, date=date)
        if rating is None or confidence < self.CONFIDENCE_FLOOR:
            return None

        return Review(
            id=review_id(author, text, rating),
            author=author,
            rating=rating,
            text=text,
            date=date,
            relative_time=relative_time,
            original_url=original_url,
            sort_origin=sort_origin,
            extraction_confidence=confidence,
        )

    def process(
        self,
        raw_reviews: list[dict],
        *,
        sort_origin: str,
        original_url: str = "",
        now: datetime | None = None,
    ) -> tuple[list[Review], int]:
        reviews: list[Review] = []
        rejected = 0
        for raw in raw_reviews:
            review = self.to_review(raw, sort_origin=sort_origin, original_url=original_url, now=now)
            if review is None:
                rejected += 1
                continue
            reviews.append(review)
        return reviews, rejected

    def extraction_confidence(
        self,
        *,
        author: str,
        text: str,
        rating: int | None,
        date: datetime | None,
    ) -> float:
        confidence = 0.5

        if 2 <= len(author) <= 80 and not author.isdigit():
            confidence += 0.15
        else:
            confidence -= 0.1

        if rating is not None:
            confidence += 0.2
        else:
            confidence -= 0.3

        if len(text) >= 2:
            confidence += 0.1
        elif text:
            confidence -= 0.05

        if date is not None:
            confidence += 0.05
        else:
            confidence -= 0.05

        return round(min(1.0, max(0.0, confidence)), 4)

    def compute_stats(self, reviews: list[Review]) -> dict:
        if not reviews:
            return {
                "avg_rating": 0.0,
                "rating_distribution": {str(i): 0 for i in range(1, 6)},
                "total_with_text": 0,
                "total_with_date": 0,
                "by_sort_origin": {},
                "by_age": {},
            }

        rating_distribution = {str(i): 0 for i in range(1, 6)}
        for review in reviews:
            rating_distribution[str(review.rating)] += 1

        return {
            "avg_rating": round(mean(review.rating for review in reviews), 2),
            "rating_distribution": rating_distribution,
            "total_with_text": sum(1 for review in reviews if review.text),
            "total_with_date": sum(1 for review in reviews if review.date is not None),
            "by_sort_origin": dict(Counter(review.sort_origin for review in reviews)),
            "by_age": dict(Counter(self._relative_time_bucket(review.relative_time) for review in reviews)),
        }

    def parse_relative_date(self, relative_time: str, now: datetime | None = None) -> datetime | None:
        if not relative_time:
            return None

        reference = now or datetime.now(timezone.utc)
        value = self._normalize_text(relative_time)

        if any(term in value for term in self._JUST_NOW_TERMS):
            return reference

        number_match = self._NUMBER_REGEX.search(value)
        for terms, seconds, implied_amount in self._TIME_UNITS:
            if not any(term in value for term in terms):
                continue
            if implied_amount is not None:
                amount = implied_amount
            elif number_match:
                amount = int(float(number_match.group(1).replace(",", ".")))
            else:
                amount = 1
            return reference - timedelta(seconds=seconds * amount)

        return None

    def _clean_text(self, text: object) -> str:
        value = str(text or "")
        value = self._CONTROL_CHARS_REGEX.sub(" ", value)
        value = re.sub(r"\s+", " ", value)
        return value.strip()

    def _coerce_rating(self, rating: object) -> int | None:
        if isinstance(rating, bool):
            return None
        if isinstance(rating, (int, float)):
            number = float(rating)
        else:
            rating_str = self._clean_text(rating).lower()
            if not rating_str:
                return None
            match = self._OUT_OF_FIVE_REGEX.search(rating_str) or self._NUMBER_REGEX.search(rating_str)
            if not match:
                return None
            number = float(match.group(1).replace(",", "."))

        star = int(round(number))
        if 1 <= star <= 5:
            return star
        return None

    def _normalize_text(self, value: str) -> str:
        normalized = unicodedata.normalize("NFKD", value or "")
        normalized = "".join(char for char in normalized if not unicodedata.combining(char))
        return re.sub(r"\s+", " ", normalized.lower()).strip()

    def _relative_time_bucket(self, relative_time: str) -> str:
        if not relative_time:
            return "unknown"

        value = self._normalize_text(relative_time)
        if any(term in value for term in self._JUST_NOW_TERMS):
            return "recent"

        now = datetime.now(timezone.utc)
        parsed = self.parse_relative_date(relative_time, now=now)
        if parsed is None:
            return "unknown"
        age = now - parsed
        if age <= timedelta(days=90):
            return "recent"
        if age <= timedelta(days=366):
            return "medium"
        return "old"
