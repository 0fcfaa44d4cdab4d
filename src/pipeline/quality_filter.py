import unicodedata
from dataclasses import dataclass, field

from src.models.review import Review

# Punctuation, symbols (emoji are "So"), separators, joiners and variation selectors.
_NON_WORD_CATEGORIES = ("P", "S", "Z", "Cf", "Mn")


@dataclass
class QualityFilterResult:
    analyzable: list[Review] = field(default_factory=list)
    skipped: list[Review] = field(default_factory=list)
    skipped_empty: int = 0
    skipped_symbol_only: int = 0

    @property
    def stats(self) -> dict[str, int]:
        return {
            "total": len(self.analyzable) + len(self.skipped),
            "sent_to_llm": len(self.analyzable),
            "skipped_empty": self.skipped_empty,
            "skipped_symbol_only": self.skipped_symbol_only,
        }


def is_empty(text: str) -> bool:
    return not (text or "").strip()


def is_symbol_only(text: str) -> bool:
    """True for non-empty text made only of emoji, punctuation and spacing."""
    stripped = (text or "").strip()
    if not stripped:
        return False
    return all(unicodedata.category(char).startswith(_NON_WORD_CATEGORIES) for char in stripped)


class ReviewQualityFilter:
    def split(self, reviews: list[Review]) -> QualityFilterResult:
        result = QualityFilterResult()
        for review in reviews:
            if is_empty(review.text):
                result.skipped.append(review)
                result.skipped_empty += 1
            elif is_symbol_only(review.text):
                result.skipped.append(review)
                result.skipped_symbol_only += 1
            else:
                result.analyzable.append(review)
        return result
