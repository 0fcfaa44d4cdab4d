from __future__ import annotations

import asyncio
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from time import monotonic
from types import TracebackType
from typing import Any, Awaitable, Callable, Protocol

from src.config import settings
from src.models.analysis import AnalysisResults
from src.models.collection import CollectionResult
from src.models.session import PHASE_ORDER, AnalysisProgress, AnalysisSession
from src.pipeline.citations import ReviewCitationService
from src.pipeline.llm_analyzer import ReviewLLMAnalyzer
from src.pipeline.preprocessor import ReviewPreprocessor
from src.pipeline.sampling import ReviewSampler
from src.pipeline.verdict import ReviewVerdictGenerator
from src.services.errors import AnalysisError, classify_error
from src.services.resource_manager import DiagnosticStore
from src.services.result_store import SessionResultStore
from src.services.retry import execute_with_retry
from src.utils.url_validator import normalize_maps_url, validate_maps_url

LOGGER = logging.getLogger(__name__)

PHASE_MESSAGES: dict[str, tuple[str, str]] = {
    "scraping": ("Collecting reviews from Google Maps.", "Review collection finished."),
    "sampling": ("Selecting reviews to analyze.", "Review sample ready."),
    "sentiment": ("Analyzing review sentiment.", "Sentiment analysis finished."),
    "fake-detection": ("Checking reviews for signs of manipulation.", "Fake review check finished."),
    "verdict": ("Computing the verdict.", "Verdict ready."),
}
TERMINAL_STATUSES = frozenset({"complete", "error"})


class ReviewSource(Protocol):
    async def __aenter__(self) -> ReviewSource: ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...

    async def collect(self, url: str, targets: dict[str, int] | None = None) -> CollectionResult: ...


def _default_source_factory() -> ReviewSource:
    from src.scraper.google_maps import GoogleMapsScraper

    return GoogleMapsScraper.from_settings()


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class SessionOrchestrator:
    """Owns the session table and drives each session through its phases.

    It is the only component that moves a session into ``error`` and the only
    one that emits progress; everything below it returns plain values.
    """

    def __init__(
        self,
        *,
        source_factory: Callable[[], ReviewSource] | None = None,
        analyzer: ReviewLLMAnalyzer | None = None,
        sampler: ReviewSampler | None = None,
        verdict_generator: ReviewVerdictGenerator | None = None,
        citation_service: ReviewCitationService | None = None,
        preprocessor: ReviewPreprocessor | None = None,
        result_store: SessionResultStore | None = None,
        diagnostics: DiagnosticStore | None = None,
        target_counts: dict[str, int] | None = None,
        total_timeout_s: float | None = None,
        scrape_retries: int | None = None,
        analysis_retries: int | None = None,
        retry_base_ms: int | None = None,
        retry_max_ms: int | None = None,
        retry_jitter_ms: int | None = None,
        retention_hours: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source_factory = source_factory or _default_source_factory
        self._analyzer = analyzer
        self.sampler = sampler or ReviewSampler(settings.sampling_threshold, settings.sampling_per_category)
        self.verdict_generator = verdict_generator or ReviewVerdictGenerator()
        self.citation_service = citation_service or ReviewCitationService()
        self.preprocessor = preprocessor or ReviewPreprocessor()
        self.result_store = result_store
        self.diagnostics = diagnostics or DiagnosticStore.from_settings()

        self.target_counts = dict(target_counts or settings.target_counts)
        self.total_timeout_s = settings.scraper_total_timeout_s if total_timeout_s is None else total_timeout_s
        self.scrape_retries = settings.scrape_retries if scrape_retries is None else scrape_retries
        self.analysis_retries = settings.analysis_retries if analysis_retries is None else analysis_retries
        self.retry_base_ms = settings.retry_base_delay_ms if retry_base_ms is None else retry_base_ms
        self.retry_max_ms = settings.retry_max_delay_ms if retry_max_ms is None else retry_max_ms
        self.retry_jitter_ms = settings.retry_jitter_ms if retry_jitter_ms is None else retry_jitter_ms
        self.retention_hours = settings.session_retention_hours if retention_hours is None else retention_hours
        self._sleep = sleep

        self.sessions: dict[str, AnalysisSession] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self._sweeper: asyncio.Task | None = None
        self._phase_handlers: dict[str, Callable[[AnalysisSession], Awaitable[None]]] = {
            "scraping": self._run_scraping,
            "sampling": self._run_sampling,
            "sentiment": self._run_sentiment,
            "fake-detection": self._run_fake_detection,
            "verdict": self._run_verdict,
        }

    @property
    def analyzer(self) -> ReviewLLMAnalyzer:
        # Built lazily so importing the service does not create a Gemini client.
        if self._analyzer is None:
            self._analyzer = ReviewLLMAnalyzer()
        return self._analyzer

    async def start_analysis(self, url: str) -> str:
        session = AnalysisSession(id=new_session_id(), url=(url or "").strip())
        self.sessions[session.id] = session

        is_valid, error = validate_maps_url(session.url)
        if not is_valid:
            LOGGER.warning("Rejected session %s: %s", session.id, error)
            self._fail(session, AnalysisError("validation", error or "Invalid URL.", retryable=False), "pending")
            return session.id

        session.url = normalize_maps_url(session.url)
        LOGGER.info("Starting session %s for %s", session.id, session.url)
        self._launch(session, PHASE_ORDER[0])
        return session.id

    def get_session(self, session_id: str) -> AnalysisSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise LookupError(f"Session '{session_id}' was not found.")
        return session

    def get_status(self, session_id: str) -> dict[str, Any]:
        return self.get_session(session_id).status_payload()

    async def retry(self, session_id: str) -> dict[str, Any]:
        session = self.get_session(session_id)
        if session.status != "error" or session.error is None:
            raise RuntimeError(f"Session '{session_id}' is not in an error state.")
        if not session.error.retryable:
            raise RuntimeError(f"Session '{session_id}' failed with a non-retryable error ({session.error.category}).")

        phase = self.resume_phase(session)
        session.retry_count += 1
        session.error = None
        LOGGER.info("Retrying session %s from phase %s (retry %s)", session_id, phase, session.retry_count)
        self._launch(session, phase)
        return session.status_payload()

    async def wait(self, session_id: str) -> AnalysisSession:
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.shield(task)
        return self.get_session(session_id)

    def subscribe(self, session_id: str) -> asyncio.Queue:
        session = self.get_session(session_id)
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._event(session))
        self._subscribers.setdefault(session_id, []).append(queue)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(session_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(session_id, None)

    def resume_phase(self, session: AnalysisSession) -> str:
        """Phase a retry starts from: the failed one, or earlier when its inputs are gone."""
        failed = session.error.phase if session.error else PHASE_ORDER[0]
        if failed not in PHASE_ORDER:
            return PHASE_ORDER[0]

        phase = failed
        if phase == "verdict" and (session.sentiment is None or session.fake_analysis is None):
            phase = "sentiment" if session.sentiment is None else "fake-detection"
        if phase in {"sentiment", "fake-detection"} and session.sample is None:
            phase = "sampling"
        if phase == "sampling" and not session.reviews:
            phase = "scraping"
        return phase

    def cleanup_old_sessions(self, max_age_hours: float | None = None) -> int:
        hours = self.retention_hours if max_age_hours is None else max_age_hours
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        expired = [
            session_id
            for session_id, session in self.sessions.items()
            if session.updated_at < cutoff and not self._is_running(session_id)
        ]
        for session_id in expired:
            self.sessions.pop(session_id, None)
            self._tasks.pop(session_id, None)
            self._subscribers.pop(session_id, None)
        if expired:
            LOGGER.info("Evicted %s sessions older than %sh", len(expired), hours)
        return len(expired)

    async def run_sweeper(self, interval_s: float | None = None) -> None:
        interval = settings.session_sweep_interval_s if interval_s is None else interval_s
        while True:
            await asyncio.sleep(interval)
            self.cleanup_old_sessions()
            self.diagnostics.remove_expired()

    def start_sweeper(self, interval_s: float | None = None) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self.run_sweeper(interval_s))
        return self._sweeper

    async def shutdown(self) -> None:
        tasks = [task for task in [self._sweeper, *self._tasks.values()] if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._sweeper = None

    def active_session_count(self) -> int:
        return sum(1 for session_id in self.sessions if self._is_running(session_id))

    def _launch(self, session: AnalysisSession, phase: str) -> None:
        self._tasks[session.id] = asyncio.create_task(self._run_pipeline(session, phase))

    def _is_running(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def _run_pipeline(self, session: AnalysisSession, from_phase: str) -> None:
        started = monotonic()
        current = from_phase
        try:
            for phase in PHASE_ORDER[PHASE_ORDER.index(from_phase) :]:
                current = phase
                start_message, done_message = PHASE_MESSAGES[phase]
                session.status = phase  # type: ignore[assignment]
                self._emit(session, phase, 0, start_message)
                await self._phase_handlers[phase](session)
                self._emit(session, phase, 100, done_message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Session %s failed during %s", session.id, current)
            self._fail(session, exc, current)
            return

        session.status = "complete"
        session.completed_at = datetime.now(timezone.utc)
        self._emit(session, "complete", 100, "Analysis complete.")
        LOGGER.info("Session %s complete in %.1fs", session.id, monotonic() - started)
        await self._persist(session)

    async def _run_scraping(self, session: AnalysisSession) -> None:
        targets = dict(self.target_counts)
        session.collection.target_counts = targets
        session.collection.total_timeout_s = self.total_timeout_s
        session.collection.scrape_retries = self.scrape_retries
        session.collection.analysis_retries = self.analysis_retries

        async def collect_once() -> CollectionResult:
            async with self._source_factory() as source:
                # The collector keeps its own deadline; this bound only catches a hung browser.
                return await asyncio.wait_for(source.collect(session.url, targets), timeout=self.total_timeout_s + 60)

        result = await execute_with_retry(
            collect_once,
            retries=self.scrape_retries,
            base_ms=self.retry_base_ms,
            max_ms=self.retry_max_ms,
            jitter_ms=self.retry_jitter_ms,
            label=f"scrape {session.id}",
            sleep=self._sleep,
        )
        if not result.unique_reviews:
            raise AnalysisError("no_reviews", "No reviews were extracted from the page.", phase="scraping", retryable=False)

        session.reviews = result.unique_reviews
        session.collection.reviews_by_order = result.reviews_by_category
        session.collection.phase_results = result.phase_results
        session.collection.duplicates_removed = result.duplicates_removed
        session.collection.collection_time_ms = result.collection_time_ms
        self._emit(session, "scraping", 100, f"Collected {len(result.unique_reviews)} unique reviews.")

    async def _run_sampling(self, session: AnalysisSession) -> None:
        session.sample = self.sampler.sample(session.reviews or [])

    async def _run_sentiment(self, session: AnalysisSession) -> None:
        reviews = session.sample.reviews if session.sample else []
        session.sentiment = await self._with_analysis_retry(
            lambda: self.analyzer.analyze_sentiment(reviews), f"sentiment {session.id}"
        )

    async def _run_fake_detection(self, session: AnalysisSession) -> None:
        reviews = session.sample.reviews if session.sample else []
        session.fake_analysis = await self._with_analysis_retry(
            lambda: self.analyzer.detect_fake(reviews), f"fake-detection {session.id}"
        )

    async def _run_verdict(self, session: AnalysisSession) -> None:
        sample = session.sample
        if sample is None or session.sentiment is None or session.fake_analysis is None:
            raise RuntimeError("Verdict requires the sample and both analysis results.")

        verdict, metrics = self.verdict_generator.generate(sample.reviews, session.sentiment, session.fake_analysis)
        citations = self.citation_service.build_citations(sample.reviews, session.sentiment, session.fake_analysis)
        methodology = self.sampler.sampling_report(sample)
        report = self.citation_service.transparency_report(
            sample, methodology, session.sentiment, session.fake_analysis, citations
        )
        session.results = AnalysisResults(
            verdict=verdict,
            metrics=metrics,
            sampling=report.sampling_breakdown,
            citations=citations,
            transparency_report=report,
            collection=self._collection_summary(session),
            stats=self.preprocessor.compute_stats(sample.reviews),
        )

    async def _with_analysis_retry(self, operation: Callable[[], Awaitable[Any]], label: str) -> Any:
        return await execute_with_retry(
            operation,
            retries=self.analysis_retries,
            base_ms=self.retry_base_ms,
            max_ms=self.retry_max_ms,
            jitter_ms=self.retry_jitter_ms,
            label=label,
            sleep=self._sleep,
        )

    def _collection_summary(self, session: AnalysisSession) -> dict[str, Any]:
        collection = session.collection
        return {
            "targets": collection.target_counts,
            "total_timeout_s": collection.total_timeout_s,
            "retry_limits": {"scraping": collection.scrape_retries, "analysis": collection.analysis_retries},
            "collected_by_order": {order: len(reviews) for order, reviews in collection.reviews_by_order.items()},
            "unique_reviews": len(session.reviews or []),
            "duplicates_removed": collection.duplicates_removed,
            "collection_time_ms": collection.collection_time_ms,
            "phases": [phase.model_dump(mode="json") for phase in collection.phase_results],
        }

    def _fail(self, session: AnalysisSession, exc: BaseException, phase: str) -> None:
        session.error = classify_error(exc, phase, session.created_at)
        session.status = "error"
        self.diagnostics.put(
            f"{session.id}:{phase}:{session.retry_count}",
            session.url,
            {"phase": phase, "error": session.error.model_dump(mode="json")},
            priority="medium" if session.error.category == "validation" else "high",
        )
        self._emit(session, phase, session.progress.percent, session.error.user_message)

    def _emit(self, session: AnalysisSession, phase: str, percent: int, message: str) -> None:
        session.progress = AnalysisProgress(phase=phase, percent=percent, message=message)
        session.updated_at = session.progress.updated_at
        event = self._event(session)
        for queue in self._subscribers.get(session.id, []):
            queue.put_nowait(event)

    def _event(self, session: AnalysisSession) -> dict[str, Any]:
        event = {
            "session_id": session.id,
            "status": session.status,
            "phase": session.progress.phase,
            "percent": session.progress.percent,
            "message": session.progress.message,
        }
        if session.error is not None:
            event["error"] = session.error.model_dump(mode="json")
        return event

    async def _persist(self, session: AnalysisSession) -> None:
        if self.result_store is None:
            return
        try:
            await self.result_store.save(session)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Could not persist session %s: %s", session.id, exc)


_orchestrator: SessionOrchestrator | None = None


def get_orchestrator() -> SessionOrchestrator:
    global _orchestrator

    if _orchestrator is None:
        _orchestrator = SessionOrchestrator(
            result_store=SessionResultStore() if settings.persist_results else None,
        )
    return _orchestrator
