import asyncio
from types import SimpleNamespace

import pytest

from src.services.resource_manager import DiagnosticStore, MemoryMonitor, normalize_priority
from tests.fakes import FakeClock

MB = 1024 * 1024
PLACEHOLDER_URL = "https://www.google.com/maps/place/Cafe+Test"


class FakeProcess:
    def __init__(self, rss_mb: float, vms_mb: float = 0) -> None:
        self.rss_mb = rss_mb
        self.vms_mb = vms_mb

    def memory_info(self) -> SimpleNamespace:
        return SimpleNamespace(rss=int(self.rss_mb * MB), vms=int(self.vms_mb * MB))


def _monitor(process: FakeProcess, clock: FakeClock | None = None) -> MemoryMonitor:
    return MemoryMonitor(
        warning_mb=100,
        critical_mb=200,
        heap_warning_mb=1000,
        heap_critical_mb=2000,
        process=process,
        clock=clock or FakeClock(),
    )


def test_memory_levels_follow_thresholds() -> None:
    process = FakeProcess(50)
    monitor = _monitor(process)

    assert monitor.level(monitor.sample()) == "ok"
    process.rss_mb = 150
    assert monitor.level(monitor.sample()) == "warning"
    process.rss_mb, process.vms_mb = 50, 1500
    assert monitor.level(monitor.sample()) == "warning"
    process.rss_mb = 250
    assert monitor.level(monitor.sample()) == "critical"


@pytest.mark.asyncio
async def test_critical_check_runs_sync_and_async_callbacks() -> None:
    monitor = _monitor(FakeProcess(300))
    calls: list[str] = []

    def drop_cache() -> None:
        calls.append("sync")

    async def close_idle() -> None:
        calls.append("async")

    monitor.register_cleanup(drop_cache)
    monitor.register_cleanup(close_idle)

    assert await monitor.check() == "critical"
    assert calls == ["sync", "async"]


@pytest.mark.asyncio
async def test_cleanup_respects_cooldown() -> None:
    clock = FakeClock()
    monitor = _monitor(FakeProcess(50), clock)

    assert await monitor.cleanup() is not None
    assert await monitor.cleanup() is None
    assert await monitor.cleanup(force=True) is not None
    clock.advance(30)
    assert await monitor.cleanup() is not None


@pytest.mark.asyncio
async def test_cleanup_reports_failures_and_trims_history() -> None:
    monitor = _monitor(FakeProcess(50))
    for _ in range(50):
        monitor.sample()

    def broken() -> None:
        raise RuntimeError("nope")

    monitor.register_cleanup(broken)
    report = await monitor.cleanup()

    assert report is not None
    assert report.success is False
    assert "history-trimmed" in report.actions
    assert len(monitor.history) == MemoryMonitor.HISTORY_AFTER_CLEANUP + 1


def test_history_is_bounded() -> None:
    monitor = _monitor(FakeProcess(50))
    for _ in range(MemoryMonitor.HISTORY_SIZE + 20):
        monitor.sample()

    assert len(monitor.history) == MemoryMonitor.HISTORY_SIZE
    assert monitor.stats()["samples"] == MemoryMonitor.HISTORY_SIZE


@pytest.mark.asyncio
async def test_background_monitoring_samples_until_stopped() -> None:
    monitor = _monitor(FakeProcess(50))

    monitor.start_monitoring(interval_s=0.01)
    await asyncio.sleep(0.05)
    await monitor.stop_monitoring()

    assert monitor.history
    assert monitor.stats()["level"] == "ok"


def test_priority_normalization() -> None:
    assert normalize_priority("HIGH") == "high"
    assert normalize_priority(" critical ") == "critical"
    assert normalize_priority("urgent") == "medium"
    assert normalize_priority(None) == "medium"


def test_store_evicts_lowest_priority_first() -> None:
    store = DiagnosticStore(max_entries=3, clock=FakeClock(step=1))
    store.put("low", PLACEHOLDER_URL, {"html": "x"}, priority="low")
    store.put("critical", PLACEHOLDER_URL, {"html": "x"}, priority="critical")
    store.put("medium", PLACEHOLDER_URL, {"html": "x"}, priority="medium")

    store.put("high", PLACEHOLDER_URL, {"html": "x"}, priority="high")
    assert store.get("low") is None

    store.put("another", PLACEHOLDER_URL, {"html": "x"}, priority="low")
    assert store.get("medium") is None
    assert store.get("critical") is not None
    assert store.evictions == 2


def test_critical_entries_go_last_and_oldest_first() -> None:
    store = DiagnosticStore(max_entries=2, clock=FakeClock(step=1))
    store.put("first", PLACEHOLDER_URL, "a", priority="critical")
    store.put("second", PLACEHOLDER_URL, "b", priority="critical")

    store.put("third", PLACEHOLDER_URL, "c", priority="low")

    assert store.get("first") is None
    assert store.get("second") is not None
    assert len(store) == 2


def test_entries_expire_by_priority() -> None:
    clock = FakeClock()
    store = DiagnosticStore(clock=clock)
    store.put("low", PLACEHOLDER_URL, "a", priority="low")
    store.put("critical", PLACEHOLDER_URL, "b", priority="critical")

    clock.advance(3601)

    assert store.by_priority("low") == []
    assert store.remove_expired() == 1
    assert store.get("critical") is not None


def test_store_tracks_size_and_rejects_oversized_entries() -> None:
    store = DiagnosticStore(max_mb=0.0001)
    store.put("trace", PLACEHOLDER_URL, "short")
    store.put("trace", PLACEHOLDER_URL, "shorter")

    assert len(store) == 1
    assert store.size_bytes == len('"shorter"')
    with pytest.raises(ValueError):
        store.put("page", PLACEHOLDER_URL, "x" * 500)

    stats = store.stats()
    assert stats["by_priority"]["medium"] == 1
    store.clear()
    assert store.size_bytes == 0

