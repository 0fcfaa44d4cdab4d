from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Awaitable, Callable, Literal, TypeVar

from google import genai
from google.genai import errors as genai_errors

from src.config import settings
from src.models.analysis import FakeReviewAnalysis, SentimentAnalysis
from src.models.review import Review
from src.pipeline.fallback_classifier import FallbackClassifier
from src.pipeline.quality_filter import ReviewQualityFilter

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
AnalysisKind = Literal["sentiment", "fake"]

_VALID_SENTIMENTS = {"positive", "negative", "neutral"}


class ResponseParseError(ValueError):
    pass


class ReviewLLMAnalyzer:
    """Sentiment and fake-review classification through Gemini.

    Reviews are sent in fixed-size batches, a bounded number of batches at a
    time. Every input review gets exactly one result: batches that keep
    failing, and texts with nothing to analyze, use ``FallbackClassifier``.
    """

    def __init__(
        self,
        model_name: str | None = None,
        *,
        client: Any = None,
        api_key: str | None = None,
        use_fallback: bool | None = None,
        fallback: FallbackClassifier | None = None,
        quality_filter: ReviewQualityFilter | None = None,
        sentiment_batch_size: int | None = None,
        sentiment_concurrency: int | None = None,
        sentiment_delay_ms: int | None = None,
        fake_batch_size: int | None = None,
        fake_concurrency: int | None = None,
        fake_delay_ms: int | None = None,
        max_retries: int | None = None,
        rate_limit_base_ms: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.model_name = model_name or settings.gemini_model
        self.fallback_models = ["gemini-flash-latest", "gemini-2.5-flash"]
        api_key = settings.gemini_api_key if api_key is None else api_key
        self.client = client if client is not None else (genai.Client(api_key=api_key) if api_key else None)
        self.use_fallback = settings.use_fallback_analysis if use_fallback is None else use_fallback

        self.fallback = fallback or FallbackClassifier()
        self.quality_filter = quality_filter or ReviewQualityFilter()
        self.sentiment_batch_size = sentiment_batch_size or settings.analysis_sentiment_batch_size
        self.sentiment_concurrency = sentiment_concurrency or settings.analysis_sentiment_concurrency
        self.sentiment_delay_ms = settings.analysis_sentiment_delay_ms if sentiment_delay_ms is None else sentiment_delay_ms
        self.fake_batch_size = fake_batch_size or settings.analysis_fake_batch_size
        self.fake_concurrency = fake_concurrency or settings.analysis_fake_concurrency
        self.fake_delay_ms = settings.analysis_fake_delay_ms if fake_delay_ms is None else fake_delay_ms
        self.max_retries = max_retries or settings.analysis_max_retries
        self.rate_limit_base_ms = settings.analysis_rate_limit_base_ms if rate_limit_base_ms is None else rate_limit_base_ms
        self._sleep = sleep

    @property
    def llm_enabled(self) -> bool:
        return self.client is not None and not self.use_fallback

    async def analyze_sentiment(self, reviews: list[Review]) -> list[SentimentAnalysis]:
        return await self._analyze(
            reviews,
            kind="sentiment",
            batch_size=self.sentiment_batch_size,
            concurrency=self.sentiment_concurrency,
            delay_ms=self.sentiment_delay_ms,
            fallback=self.fallback.sentiment,
        )

    async def detect_fake(self, reviews: list[Review]) -> list[FakeReviewAnalysis]:
        return await self._analyze(
            reviews,
            kind="fake",
            batch_size=self.fake_batch_size,
            concurrency=self.fake_concurrency,
            delay_ms=self.fake_delay_ms,
            fallback=self.fallback.fake,
        )

    async def _analyze(
        self,
        reviews: list[Review],
        *,
        kind: AnalysisKind,
        batch_size: int,
        concurrency: int,
        delay_ms: int,
        fallback: Callable[[Review], T],
    ) -> list[T]:
        if not reviews:
            return []
        if not self.llm_enabled:
            LOGGER.warning("Gemini disabled or not configured, using fallback %s analysis", kind)
            return [fallback(review) for review in reviews]

        filtered = self.quality_filter.split(reviews)
        results: dict[str, T] = {review.id: fallback(review) for review in filtered.skipped}
        if filtered.skipped:
            LOGGER.info("Skipped %s reviews without analyzable text: %s", len(filtered.skipped), filtered.stats)

        batches = [
            filtered.analyzable[start : start + batch_size]
            for start in range(0, len(filtered.analyzable), max(1, batch_size))
        ]
        wave_size = max(1, concurrency)
        for wave_start in range(0, len(batches), wave_size):
            if wave_start > 0 and delay_ms > 0:
                await self._sleep(delay_ms / 1000)
            wave = batches[wave_start : wave_start + wave_size]
            outputs = await asyncio.gather(*(self._process_batch(batch, kind, fallback) for batch in wave))
            for batch, output in zip(wave, outputs):
                for review, item in zip(batch, output):
                    results[review.id] = item

        return [results.get(review.id) or fallback(review) for review in reviews]

    async def _process_batch(
        self,
        batch: list[Review],
        kind: AnalysisKind,
        fallback: Callable[[Review], T],
    ) -> list[T]:
        prompt = self.build_sentiment_prompt(batch) if kind == "sentiment" else self.build_fake_prompt(batch)

        for attempt in range(1, self.max_retries + 1):
            try:
                response_text = await asyncio.to_thread(self._generate_content, prompt)
            except Exception as exc:  # noqa: BLE001
                if attempt >= self.max_retries:
                    LOGGER.warning("Gemini %s batch failed after %s attempts: %s", kind, attempt, exc)
                    break
                delay_s = self.retry_delay_s(exc, attempt)
                LOGGER.info("Gemini %s batch attempt %s failed, retrying in %.1fs: %s", kind, attempt, delay_s, exc)
                await self._sleep(delay_s)
                continue

            try:
                if kind == "sentiment":
                    return self.parse_sentiment_response(response_text, batch)  # type: ignore[return-value]
                return self.parse_fake_response(response_text, batch)  # type: ignore[return-value]
            except ResponseParseError as exc:
                LOGGER.warning("Unparseable Gemini %s response, using fallback: %s", kind, exc)
                break

        return [fallback(review) for review in batch]

    def retry_delay_s(self, exc: Exception, attempt: int) -> float:
        if self.is_rate_limited(exc):
            return (2**attempt * self.rate_limit_base_ms + random.uniform(0, 5000)) / 1000
        return 2.0

    def is_rate_limited(self, exc: Exception) -> bool:
        if isinstance(exc, genai_errors.ClientError) and exc.code == 429:
            return True
        message = str(exc).lower()
        return "resource_exhausted" in message or "rate limit" in message or "too many requests" in message

    def build_sentiment_prompt(self, batch: list[Review]) -> str:
        payload = [{"index": idx, "rating": review.rating, "text": review.text} for idx, review in enumerate(batch)]
        return (
            "Classify the sentiment of each review and flag reviews whose text contradicts the star rating.\n"
            "Return ONLY a JSON array with one object per review, in the same order:\n"
            '[{"sentiment": "positive|negative|neutral", "confidence": 0.0, "mismatchDetected": false}]\n'
            "Rules: no markdown, no extra keys.\n"
            f"Reviews: {json.dumps(payload, ensure_ascii=False)}"
        )

    def build_fake_prompt(self, batch: list[Review]) -> str:
        payload = [{"index": idx, "rating": review.rating, "text": review.text} for idx, review in enumerate(batch)]
        return (
            "Decide whether each review is likely fake. "
            "Check: generic language, no specifics, promotional tone, unnatural patterns, extreme sentiment.\n"
            "Return ONLY a JSON array with one object per review, in the same order:\n"
            '[{"isFake": false, "confidence": 0.0, "reasons": ["string"]}]\n'
            "Rules: no markdown, no extra keys, at most 5 short reasons.\n"
            f"Reviews: {json.dumps(payload, ensure_ascii=False)}"
        )

    def parse_sentiment_response(self, response_text: str, batch: list[Review]) -> list[SentimentAnalysis]:
        items = self._extract_json_array(response_text)
        results: list[SentimentAnalysis] = []
        for idx, review in enumerate(batch):
            item = items[idx] if idx < len(items) and isinstance(items[idx], dict) else None
            if item is None:
                results.append(self.fallback.sentiment(review))
                continue

            sentiment = str(item.get("sentiment", "neutral")).lower().strip()
            results.append(
                SentimentAnalysis(
                    review_id=review.id,
                    sentiment=sentiment if sentiment in _VALID_SENTIMENTS else "neutral",
                    confidence=self._safe_confidence(item.get("confidence")),
                    mismatch_detected=self._safe_bool(item.get("mismatchDetected", item.get("mismatch_detected"))),
                )
            )
        return results

    def parse_fake_response(self, response_text: str, batch: list[Review]) -> list[FakeReviewAnalysis]:
        items = self._extract_json_array(response_text)
        results: list[FakeReviewAnalysis] = []
        for idx, review in enumerate(batch):
            item = items[idx] if idx < len(items) and isinstance(items[idx], dict) else None
            if item is None:
                results.append(self.fallback.fake(review))
                continue

            results.append(
                FakeReviewAnalysis(
                    review_id=review.id,
                    is_fake=self._safe_bool(item.get("isFake", item.get("is_fake"))),
                    confidence=self._safe_confidence(item.get("confidence")),
                    reasons=self._safe_str_list(item.get("reasons"))[:5],
                )
            )
        return results

    def _generate_content(self, prompt: str) -> str:
        candidates = list(dict.fromkeys([self.model_name, *self.fallback_models]))
        last_error: Exception | None = None

        for model_name in candidates:
            try:
                response = self.client.models.generate_content(
                    model=model_name,
                    contents=prompt,
                )
                return self._extract_text(response) or "[]"
            except genai_errors.ClientError as exc:
                last_error = exc
                if exc.code == 404:
                    continue
                raise

        if last_error:
            raise last_error
        return "[]"

    def _extract_json_array(self, response_text: str) -> list:
        normalized = (response_text or "").strip()
        if normalized.startswith("```"):
            normalized = normalized.strip("`")
            if normalized.lower().startswith("json"):
                normalized = normalized[4:].strip()

        start = normalized.find("[")
        end = normalized.rfind("]")
        if start < 0 or end <= start:
            raise ResponseParseError("No JSON array in response.")
        try:
            data = json.loads(normalized[start : end + 1])
        except json.JSONDecodeError as exc:
            raise ResponseParseError(str(exc)) from exc
        if not isinstance(data, list):
            raise ResponseParseError("Response JSON is not an array.")
        return data

    def _safe_confidence(self, value: object) -> float:
        try:
            confidence = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.5
        if 0.0 <= confidence <= 1.0:
            return confidence
        return 0.5

    def _safe_bool(self, value: object) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return False

    def _safe_str_list(self, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item).strip() for item in value if str(item).strip()]

    def _extract_text(self, response: object) -> str:
        texts: list[str] = []
        candidates = getattr(response, "candidates", None) or []
        for candidate in candidates:
            content = getattr(candidate, "content", None)
            if content is None:
                continue
            for part in getattr(content, "parts", None) or []:
                text = getattr(part, "text", None)
                if text:
                    texts.append(str(text).strip())
        return "\n".join([text for text in texts if text]).strip()
