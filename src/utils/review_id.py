import hashlib
import re
import unicodedata

_WHITESPACE_REGEX = re.compile(r"\s+")


def normalize_review_field(value: object) -> str:
    normalized = unicodedata.normalize("NFKC", str(value or ""))
    normalized = _WHITESPACE_REGEX.sub(" ", normalized)
    return normalized.strip().lower()


def review_id(author: object, text: object, rating: object) -> str:
    """Stable content hash for a review.

    The same (author, text, rating) triple always yields the same id, no matter
    which sort pass or page load produced it.
    """
    payload = "\x1f".join(
        (
            normalize_review_field(author),
            normalize_review_field(text),
            normalize_review_field(rating),
        )
    )
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:20]
