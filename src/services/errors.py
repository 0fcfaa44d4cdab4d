from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from google.genai import errors as genai_errors
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from src.models.session import ErrorCategory, SessionError

USER_MESSAGES: dict[str, str] = {
    "validation": "The link is not a valid Google Maps place URL. Paste the full link of a business page and try again.",
    "no_reviews": "No reviews could be found for this place. It may have no public reviews yet.",
    "browser_launch": "The browser used to read reviews could not be started. Please try again in a moment.",
    "navigation": "The Google Maps page could not be opened or its reviews panel was not reachable.",
    "timeout": "Collecting reviews took too long and was stopped. Retrying usually succeeds.",
    "scraping": "Reviews could not be read from the page. Google Maps may have changed its layout.",
    "api": "The review analysis service is unavailable or rate limited. Please retry shortly.",
    "network": "A network problem interrupted the analysis. Check the connection and retry.",
    "unknown": "An unexpected problem stopped the analysis. Please retry.",
}

FATAL_CATEGORIES: frozenset[str] = frozenset({"validation", "no_reviews"})

_KEYWORD_CATEGORIES: tuple[tuple[tuple[str, ...], ErrorCategory], ...] = (
    (("timeout", "timed out", "deadline"), "timeout"),
    (("browser", "chromium", "executable", "launch"), "browser_launch"),
    (("navigation", "net::err", "page.goto", "consent"), "navigation"),
    (("gemini", "api key", "quota", "rate limit", "resource_exhausted", "429"), "api"),
    (("network", "connection", "dns", "econn", "socket"), "network"),
    (("selector", "extract", "element", "locator"), "scraping"),
)


class AnalysisError(Exception):
    """Error raised by a phase with an explicit category."""

    def __init__(self, category: ErrorCategory, message: str, *, phase: str = "", retryable: bool | None = None):
        super().__init__(message)
        self.category = category
        self.message = message
        self.phase = phase
        self.retryable = category not in FATAL_CATEGORIES if retryable is None else retryable


def category_for(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, AnalysisError):
        return exc.category
    if isinstance(exc, (asyncio.TimeoutError, PlaywrightTimeoutError)):
        return "timeout"
    if isinstance(exc, genai_errors.APIError):
        return "api"
    if isinstance(exc, PlaywrightError):
        return "navigation" if "goto" in str(exc).lower() else "scraping"
    if isinstance(exc, (ConnectionError, OSError)):
        return "network"

    message = str(exc).lower()
    for keywords, category in _KEYWORD_CATEGORIES:
        if any(keyword in message for keyword in keywords):
            return category
    return "unknown"


def classify_error(exc: BaseException, phase: str, created_at: datetime | None = None) -> SessionError:
    category = category_for(exc)
    retryable = exc.retryable if isinstance(exc, AnalysisError) else category not in FATAL_CATEGORIES
    duration_ms = int((datetime.now(timezone.utc) - created_at).total_seconds() * 1000) if created_at else 0
    return SessionError(
        category=category,
        message=str(exc) or exc.__class__.__name__,
        user_message=USER_MESSAGES[category],
        retryable=retryable,
        phase=phase,
        session_duration_ms=max(0, duration_ms),
    )
