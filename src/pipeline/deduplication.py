from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from src.models.collection import DeduplicationResult, MergeResult
from src.models.review import Review
from src.utils.review_id import normalize_review_field

LOGGER = logging.getLogger(__name__)

_TOKEN_FILTER_REGEX = re.compile(r"[^a-z0-9\u0590-\u05FF\s]")


def tokenize(text: str) -> set[str]:
    cleaned = _TOKEN_FILTER_REGEX.sub(" ", normalize_review_field(text))
    return {token for token in cleaned.split() if len(token) > 1}


def text_similarity(first: str, second: str) -> float:
    """Token-set Jaccard score, penalized when the texts differ a lot in length."""
    first_norm = normalize_review_field(first)
    second_norm = normalize_review_field(second)
    if first_norm == second_norm:
        return 1.0

    first_tokens = tokenize(first_norm)
    second_tokens = tokenize(second_norm)
    union = first_tokens | second_tokens
    if not union:
        return 0.0

    jaccard = len(first_tokens & second_tokens) / len(union)
    longest = max(len(first_norm), len(second_norm))
    length_ratio = min(len(first_norm), len(second_norm)) / longest if longest else 1.0
    if length_ratio < 0.8:
        return jaccard * (0.5 + 0.5 * length_ratio)
    return jaccard


@dataclass
class _Index:
    by_id: dict[str, Review] = field(default_factory=dict)
    by_content: dict[tuple[str, str, int], Review] = field(default_factory=dict)
    by_author_rating: dict[tuple[str, int], list[Review]] = field(default_factory=dict)
    by_long_text: dict[str, Review] = field(default_factory=dict)


class ReviewDeduplicator:
    SIMILARITY_THRESHOLD = 0.85
    MIN_FUZZY_LENGTH = 20
    CROSS_AUTHOR_MIN_LENGTH = 50

    def __init__(self, similarity_threshold: float = SIMILARITY_THRESHOLD) -> None:
        self.similarity_threshold = similarity_threshold

    def deduplicate(self, reviews: list[Review]) -> DeduplicationResult:
        unique, duplicates = self._run((None, review) for review in reviews)
        return DeduplicationResult(
            unique_reviews=[review for _, review in unique],
            duplicate_count=len(duplicates),
            duplicate_ids=[review_id for review_id, _ in duplicates],
            duplicate_details=dict(duplicates),
        )

    def merge_and_deduplicate(self, collections: dict[str, list[Review]]) -> MergeResult:
        """Deduplicate across labeled collections, keeping each survivor's label.

        Collections are walked in insertion order, so an item seen in an earlier
        collection wins over the same item seen later.
        """
        entries = ((label, review) for label, reviews in collections.items() for review in reviews)
        unique, duplicates = self._run(entries)

        survivors: list[Review] = []
        labels: dict[str, str] = {}
        contributions = {label: 0 for label in collections}
        for label, review in unique:
            if label is not None and review.sort_origin != label:
                review = review.model_copy(update={"sort_origin": label})
            survivors.append(review)
            labels[review.id] = label or review.sort_origin
            contributions[labels[review.id]] = contributions.get(labels[review.id], 0) + 1

        if duplicates:
            LOGGER.info("Removed %s duplicate reviews across %s collections", len(duplicates), len(collections))
        return MergeResult(
            unique_reviews=survivors,
            duplicate_count=len(duplicates),
            duplicate_ids=[review_id for review_id, _ in duplicates],
            duplicate_details=dict(duplicates),
            labels=labels,
            contributions=contributions,
        )

    def find_duplicate(self, review: Review, index: _Index) -> tuple[str, Review] | None:
        existing = index.by_id.get(review.id)
        if existing is not None:
            return "id", existing

        existing = index.by_content.get(self._content_key(review))
        if existing is not None:
            return "content", existing

        author = normalize_review_field(review.author)
        text = normalize_review_field(review.text)
        for candidate in index.by_author_rating.get((author, review.rating), []):
            candidate_text = normalize_review_field(candidate.text)
            if len(text) < self.MIN_FUZZY_LENGTH or len(candidate_text) < self.MIN_FUZZY_LENGTH:
                if text == candidate_text:
                    return "near", candidate
                continue
            if text_similarity(text, candidate_text) >= self.similarity_threshold:
                return "near", candidate

        if len(text) > self.CROSS_AUTHOR_MIN_LENGTH:
            existing = index.by_long_text.get(text)
            if existing is not None and normalize_review_field(existing.author) != author:
                return "cross-author", existing

        return None

    def _run(
        self,
        entries: Iterable[tuple[str | None, Review]],
    ) -> tuple[list[tuple[str | None, Review]], list[tuple[str, tuple[str, str]]]]:
        index = _Index()
        unique: list[tuple[str | None, Review]] = []
        duplicates: list[tuple[str, tuple[str, str]]] = []

        for label, review in entries:
            match = self.find_duplicate(review, index)
            if match is not None:
                kind, kept = match
                duplicates.append((review.id, (kind, kept.id)))
                continue

            unique.append((label, review))
            self._register(review, index)

        return unique, duplicates

    def _register(self, review: Review, index: _Index) -> None:
        author = normalize_review_field(review.author)
        text = normalize_review_field(review.text)
        index.by_id[review.id] = review
        index.by_content[self._content_key(review)] = review
        index.by_author_rating.setdefault((author, review.rating), []).append(review)
        if len(text) > self.CROSS_AUTHOR_MIN_LENGTH:
            index.by_long_text.setdefault(text, review)

    def _content_key(self, review: Review) -> tuple[str, str, int]:
        return normalize_review_field(review.author), normalize_review_field(review.text), review.rating
