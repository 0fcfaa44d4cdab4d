from __future__ import annotations

import asyncio
import gc
import json
import logging
import time
from dataclasses import dataclass, field
from time import monotonic
from typing import Any, Awaitable, Callable, Literal

import psutil

from src.config import settings

LOGGER = logging.getLogger(__name__)

Priority = Literal["low", "medium", "high", "critical"]
MemoryLevel = Literal["ok", "warning", "critical"]
CleanupCallback = Callable[[], Awaitable[None] | None]

_MB = 1024 * 1024
_PRIORITY_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}
DEFAULT_RETENTION_S: dict[str, float] = {
    "critical": 24 * 3600,
    "high": 12 * 3600,
    "medium": 6 * 3600,
    "low": 3600,
}


@dataclass(frozen=True)
class MemorySample:
    rss_mb: float
    vms_mb: float
    timestamp: float


@dataclass
class CleanupReport:
    before: MemorySample
    after: MemorySample
    freed_mb: float
    actions: list[str] = field(default_factory=list)
    success: bool = True


class MemoryMonitor:
    """Samples process memory and runs cleanup when it crosses a critical line.

    RSS is compared with the process thresholds; VMS stands in for the heap
    figures a managed runtime would report.
    """

    HISTORY_SIZE = 100
    HISTORY_AFTER_CLEANUP = 10

    def __init__(
        self,
        *,
        warning_mb: float = 1024,
        critical_mb: float = 2048,
        heap_warning_mb: float = 512,
        heap_critical_mb: float = 1024,
        cooldown_s: float = 30.0,
        process: psutil.Process | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.warning_mb = warning_mb
        self.critical_mb = critical_mb
        self.heap_warning_mb = heap_warning_mb
        self.heap_critical_mb = heap_critical_mb
        self.cooldown_s = cooldown_s
        self._process = process or psutil.Process()
        self._clock = clock
        self._callbacks: list[CleanupCallback] = []
        self._last_cleanup: float | None = None
        self._task: asyncio.Task | None = None
        self.history: list[MemorySample] = []

    @classmethod
    def from_settings(cls) -> MemoryMonitor:
        return cls(
            warning_mb=settings.memory_warning_mb,
            critical_mb=settings.memory_critical_mb,
            heap_warning_mb=settings.heap_warning_mb,
            heap_critical_mb=settings.heap_critical_mb,
            cooldown_s=settings.memory_cleanup_cooldown_s,
        )

    def sample(self) -> MemorySample:
        info = self._process.memory_info()
        current = MemorySample(rss_mb=info.rss / _MB, vms_mb=info.vms / _MB, timestamp=time.time())
        self.history.append(current)
        if len(self.history) > self.HISTORY_SIZE:
            del self.history[: len(self.history) - self.HISTORY_SIZE]
        return current

    def current_rss_mb(self) -> float:
        return round(self._process.memory_info().rss / _MB, 2)

    def level(self, current: MemorySample) -> MemoryLevel:
        if current.rss_mb >= self.critical_mb or current.vms_mb >= self.heap_critical_mb:
            return "critical"
        if current.rss_mb >= self.warning_mb or current.vms_mb >= self.heap_warning_mb:
            return "warning"
        return "ok"

    def register_cleanup(self, callback: CleanupCallback) -> None:
        self._callbacks.append(callback)

    async def check(self) -> MemoryLevel:
        current = self.sample()
        level = self.level(current)
        if level == "warning":
            LOGGER.warning("Memory usage high rss=%.1fMB vms=%.1fMB", current.rss_mb, current.vms_mb)
        elif level == "critical":
            LOGGER.error("Memory usage critical rss=%.1fMB vms=%.1fMB", current.rss_mb, current.vms_mb)
            await self.cleanup()
        return level

    async def cleanup(self, *, force: bool = False) -> CleanupReport | None:
        now = self._clock()
        if not force and self._last_cleanup is not None and now - self._last_cleanup < self.cooldown_s:
            LOGGER.debug("Skipping memory cleanup, cooldown active")
            return None
        self._last_cleanup = now

        before = self.sample()
        actions: list[str] = []
        success = True
        for callback in list(self._callbacks):
            try:
                maybe_awaitable = callback()
                if asyncio.iscoroutine(maybe_awaitable):
                    await maybe_awaitable
                actions.append(f"callback:{getattr(callback, '__name__', 'cleanup')}")
            except Exception as exc:  # noqa: BLE001
                success = False
                LOGGER.warning("Cleanup callback failed: %s", exc)

        collected = gc.collect()
        actions.append(f"gc:{collected}")
        del self.history[: max(0, len(self.history) - self.HISTORY_AFTER_CLEANUP)]
        actions.append("history-trimmed")

        after = self.sample()
        report = CleanupReport(
            before=before,
            after=after,
            freed_mb=round(before.rss_mb - after.rss_mb, 2),
            actions=actions,
            success=success,
        )
        LOGGER.info("Memory cleanup freed %.1fMB (%s)", report.freed_mb, ", ".join(actions))
        return report

    def start_monitoring(self, interval_s: float | None = None) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        interval = settings.memory_monitor_interval_s if interval_s is None else interval_s
        self._task = asyncio.create_task(self._monitor_loop(interval))
        return self._task

    async def stop_monitoring(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def stats(self) -> dict[str, Any]:
        latest = self.history[-1] if self.history else self.sample()
        return {
            "rss_mb": round(latest.rss_mb, 2),
            "vms_mb": round(latest.vms_mb, 2),
            "level": self.level(latest),
            "samples": len(self.history),
            "peak_rss_mb": round(max(sample.rss_mb for sample in self.history), 2) if self.history else 0.0,
        }

    async def _monitor_loop(self, interval_s: float) -> None:
        while True:
            try:
                await self.check()
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Memory check failed: %s", exc)
            await asyncio.sleep(interval_s)


@dataclass
class DiagnosticEntry:
    id: str
    url: str
    data: Any
    priority: Priority
    size_bytes: int
    created_at: float
    last_accessed: float


def normalize_priority(priority: str | None) -> Priority:
    value = (priority or "").strip().lower()
    if value in _PRIORITY_RANK:
        return value  # type: ignore[return-value]
    return "medium"


class DiagnosticStore:
    """Bounded store for page snapshots and selector traces kept for failure analysis."""

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        max_mb: float = 100,
        retention_s: dict[str, float] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = max_entries
        self.max_bytes = int(max_mb * _MB)
        self.retention_s = {**DEFAULT_RETENTION_S, **(retention_s or {})}
        self._clock = clock
        self._entries: dict[str, DiagnosticEntry] = {}
        self._bytes = 0
        self.evictions = 0

    @classmethod
    def from_settings(cls) -> DiagnosticStore:
        return cls(max_entries=settings.diagnostics_max_entries, max_mb=settings.diagnostics_max_mb)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size_bytes(self) -> int:
        return self._bytes

    def put(self, entry_id: str, url: str, data: Any, priority: str = "medium") -> DiagnosticEntry:
        size = len(json.dumps(data, default=str, ensure_ascii=False).encode("utf-8"))
        if size > self.max_bytes:
            raise ValueError(f"Diagnostic entry '{entry_id}' is larger than the store capacity.")

        self._remove(entry_id)
        self._ensure_capacity(size)

        now = self._clock()
        entry = DiagnosticEntry(
            id=entry_id,
            url=url,
            data=data,
            priority=normalize_priority(priority),
            size_bytes=size,
            created_at=now,
            last_accessed=now,
        )
        self._entries[entry_id] = entry
        self._bytes += size
        return entry

    def get(self, entry_id: str) -> DiagnosticEntry | None:
        entry = self._entries.get(entry_id)
        if entry is None:
            return None
        if self._is_expired(entry):
            self._remove(entry_id)
            return None
        entry.last_accessed = self._clock()
        return entry

    def by_priority(self, priority: str) -> list[DiagnosticEntry]:
        wanted = normalize_priority(priority)
        return [entry for entry in self._entries.values() if entry.priority == wanted and not self._is_expired(entry)]

    def remove_expired(self) -> int:
        expired = [entry_id for entry_id, entry in self._entries.items() if self._is_expired(entry)]
        for entry_id in expired:
            self._remove(entry_id)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._bytes = 0

    def stats(self) -> dict[str, Any]:
        by_priority = {priority: 0 for priority in _PRIORITY_RANK}
        for entry in self._entries.values():
            by_priority[entry.priority] += 1
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "size_bytes": self._bytes,
            "max_bytes": self.max_bytes,
            "utilization": round(len(self._entries) / self.max_entries, 4) if self.max_entries else 0.0,
            "by_priority": by_priority,
            "evictions": self.evictions,
        }

    def _ensure_capacity(self, incoming_bytes: int) -> None:
        self.remove_expired()
        if self._fits(incoming_bytes):
            return

        # Lowest priority first, least recently used within a priority.
        ordered = sorted(
            self._entries.values(),
            key=lambda entry: (_PRIORITY_RANK[entry.priority], entry.last_accessed),
        )
        regular = [entry for entry in ordered if entry.priority != "critical"]
        critical = [entry for entry in ordered if entry.priority == "critical"]
        evicted = 0
        for entry in [*regular, *critical]:
            if self._fits(incoming_bytes):
                break
            self._remove(entry.id)
            evicted += 1

        self.evictions += evicted
        LOGGER.debug("Evicted %s diagnostic entries to fit %s bytes", evicted, incoming_bytes)

    def _fits(self, incoming_bytes: int) -> bool:
        return len(self._entries) < self.max_entries and self._bytes + incoming_bytes <= self.max_bytes

    def _is_expired(self, entry: DiagnosticEntry) -> bool:
        return self._clock() - entry.created_at > self.retention_s[entry.priority]

    def _remove(self, entry_id: str) -> None:
        entry = self._entries.pop(entry_id, None)
        if entry is not None:
            self._bytes -= entry.size_bytes
