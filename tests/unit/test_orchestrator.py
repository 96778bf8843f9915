from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from threading import Event, Lock

import pytest

from scanvault.engine import RuleEngineAdapter
from scanvault.errors import EngineFailure, EngineTimeout, ScanWaitTimeout
from scanvault.keys import composite_key, derive_key
from scanvault.memory_cache import CacheStore
from scanvault.models import Highlight, ScanEntry
from scanvault.orchestrator import ScanOrchestrator


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class CountingEngine:
    """Flags the first character and records each call."""

    def __init__(self, *, gate: Event | None = None, delay: float = 0.0) -> None:
        self.calls: list[tuple[str, str]] = []
        self.gate = gate
        self.delay = delay
        self._lock = Lock()

    def scan(self, text: str, ruleset_version: str) -> list[Highlight]:
        with self._lock:
            self.calls.append((text, ruleset_version))
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if not text:
            return []
        return [Highlight(0, 1, f"rule-v{ruleset_version}", "First char")]


class FlakyEngine(CountingEngine):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    def scan(self, text: str, ruleset_version: str) -> list[Highlight]:
        result = super().scan(text, ruleset_version)
        if len(self.calls) <= self.failures:
            raise RuntimeError("engine exploded")
        return result


class RecordingDurable:
    def __init__(self, *, ok: bool = True, raises: bool = False) -> None:
        self.ok = ok
        self.raises = raises
        self.entries: list[ScanEntry] = []
        self._lock = Lock()

    def persist(self, entry: ScanEntry) -> bool:
        if self.raises:
            raise OSError("disk full")
        with self._lock:
            self.entries.append(entry)
        return self.ok

    def load(self, composite):
        for entry in reversed(self.entries):
            if (entry.key, entry.ruleset_version) == tuple(composite):
                return entry
        return None


def _make(
    engine=None,
    *,
    capacity: int = 100,
    ttl: float = 3600,
    fill_timeout_ms: int = 2000,
    durable=None,
    read_through: bool = False,
    clock: FakeClock | None = None,
    version: str = "1",
):
    engine = engine or CountingEngine()
    clock = clock or FakeClock()
    adapter = RuleEngineAdapter(engine, version)
    store = CacheStore(capacity, clock=clock)
    orchestrator = ScanOrchestrator(
        adapter,
        store,
        durable,
        ttl_seconds=ttl,
        fill_timeout_ms=fill_timeout_ms,
        durable_read_through=read_through,
        clock=clock,
    )
    return orchestrator, engine, clock


def test_second_scan_is_served_from_cache() -> None:
    orchestrator, engine, _ = _make()
    with orchestrator:
        first = orchestrator.get_or_scan("Hello world.")
        second = orchestrator.get_or_scan("Hello world.")

    assert len(engine.calls) == 1
    assert first.served_from_cache is False
    assert second.served_from_cache is True
    assert second.highlights == first.highlights
    assert second.ruleset_version == "1"
    assert second.key == derive_key("Hello world.")


def test_whitespace_variants_share_an_entry() -> None:
    orchestrator, engine, _ = _make()
    with orchestrator:
        orchestrator.get_or_scan("Hello world.")
        result = orchestrator.get_or_scan("  Hello   world.\n")

    assert result.served_from_cache is True
    assert len(engine.calls) == 1
    # offsets stay tied to the text that was actually scanned
    assert result.text_length == len("Hello world.")


def test_version_bump_triggers_exactly_one_rescan() -> None:
    orchestrator, engine, _ = _make()
    with orchestrator:
        old = orchestrator.get_or_scan("Hello world.")
        orchestrator.reload_ruleset("2")
        new = orchestrator.get_or_scan("Hello world.")
        again = orchestrator.get_or_scan("Hello world.")

    assert engine.calls == [("Hello world.", "1"), ("Hello world.", "2")]
    assert new.served_from_cache is False
    assert new.ruleset_version == "2"
    assert new.highlights != old.highlights
    assert new.highlights[0].rule_id == "rule-v2"
    assert again.served_from_cache is True


def test_concurrent_misses_share_one_engine_call() -> None:
    gate = Event()
    orchestrator, engine, _ = _make(CountingEngine(gate=gate))
    callers = 16
    with orchestrator, ThreadPoolExecutor(max_workers=callers) as pool:
        futures = [pool.submit(orchestrator.get_or_scan, "Hot text.") for _ in range(callers)]
        deadline = time.monotonic() + 5
        while orchestrator.stats().misses < callers and time.monotonic() < deadline:
            time.sleep(0.005)
        gate.set()
        results = [future.result(timeout=5) for future in futures]

    assert len(engine.calls) == 1
    assert {result.highlights for result in results} == {results[0].highlights}
    stats = orchestrator.stats()
    assert stats.joined == callers - 1
    assert orchestrator.in_flight() == 0


def test_distinct_keys_fill_independently() -> None:
    orchestrator, engine, _ = _make()
    with orchestrator:
        results = orchestrator.scan_many(["a text", "b text", "a text", "c text"])

    assert [result.key for result in results] == [
        derive_key("a text"),
        derive_key("b text"),
        derive_key("a text"),
        derive_key("c text"),
    ]
    assert sorted(text for text, _ in engine.calls) == ["a text", "b text", "c text"]


def test_expired_entry_triggers_fresh_scan() -> None:
    orchestrator, engine, clock = _make(ttl=10)
    with orchestrator:
        orchestrator.get_or_scan("Hello world.")
        clock.advance(9)
        assert orchestrator.get_or_scan("Hello world.").served_from_cache is True
        clock.advance(1)
        result = orchestrator.get_or_scan("Hello world.")

    assert result.served_from_cache is False
    assert len(engine.calls) == 2


def test_capacity_two_walkthrough() -> None:
    orchestrator, engine, _ = _make(capacity=2, ttl=3600)
    with orchestrator:
        assert orchestrator.get_or_scan("Hello world.").served_from_cache is False
        assert orchestrator.get_or_scan("Hello   world.").served_from_cache is True
        assert orchestrator.get_or_scan("Goodbye.").served_from_cache is False
        assert len(orchestrator.store) == 2
        assert orchestrator.get_or_scan("New text.").served_from_cache is False
        assert len(orchestrator.store) == 2
        assert orchestrator.get_or_scan("Hello world.").served_from_cache is False

    assert [text for text, _ in engine.calls] == [
        "Hello world.",
        "Goodbye.",
        "New text.",
        "Hello world.",
    ]


def test_engine_failure_reaches_caller_and_allows_retry() -> None:
    orchestrator, engine, _ = _make(FlakyEngine(failures=1))
    with orchestrator:
        with pytest.raises(EngineFailure) as excinfo:
            orchestrator.get_or_scan("Hello world.")
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert orchestrator.in_flight() == 0
        assert len(orchestrator.store) == 0

        result = orchestrator.get_or_scan("Hello world.")

    assert result.served_from_cache is False
    assert len(engine.calls) == 2
    assert orchestrator.stats().engine_failures == 1


def test_engine_failure_is_shared_by_all_waiters() -> None:
    gate = Event()

    class GatedBroken(CountingEngine):
        def scan(self, text: str, ruleset_version: str):
            super().scan(text, ruleset_version)
            raise RuntimeError("nope")

    orchestrator, engine, _ = _make(GatedBroken(gate=gate))
    with orchestrator, ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(orchestrator.get_or_scan, "x") for _ in range(4)]
        deadline = time.monotonic() + 5
        while orchestrator.stats().misses < 4 and time.monotonic() < deadline:
            time.sleep(0.005)
        gate.set()
        for future in futures:
            with pytest.raises(EngineFailure):
                future.result(timeout=5)

    assert len(engine.calls) == 1


def test_slow_engine_times_out_and_clears_marker() -> None:
    gate = Event()
    orchestrator, engine, _ = _make(CountingEngine(gate=gate), fill_timeout_ms=50)
    try:
        with pytest.raises(EngineTimeout):
            orchestrator.get_or_scan("Slow text.")
        assert orchestrator.in_flight() == 0
        gate.set()
        result = orchestrator.get_or_scan("Slow text.")
        assert result.served_from_cache is False
        assert len(engine.calls) == 2
    finally:
        gate.set()
        orchestrator.close()


def test_abandoned_waiter_does_not_cancel_fill() -> None:
    gate = Event()
    orchestrator, engine, _ = _make(CountingEngine(gate=gate))
    with orchestrator:
        with pytest.raises(ScanWaitTimeout):
            orchestrator.get_or_scan("Text.", timeout=0.05)
        gate.set()
        deadline = time.monotonic() + 5
        while orchestrator.in_flight() and time.monotonic() < deadline:
            time.sleep(0.005)

        result = orchestrator.get_or_scan("Text.")

    assert result.served_from_cache is True
    assert len(engine.calls) == 1


def test_entries_are_written_through_to_durable_store() -> None:
    durable = RecordingDurable()
    orchestrator, _, clock = _make(durable=durable, ttl=60)
    with orchestrator:
        orchestrator.get_or_scan("Hello world.")
        orchestrator.get_or_scan("Hello world.")
        assert orchestrator.flush(timeout=5) is True

    assert len(durable.entries) == 1
    entry = durable.entries[0]
    assert entry.key == derive_key("Hello world.")
    assert entry.ruleset_version == "1"
    assert entry.scanned_at == clock()
    assert entry.expires_at == clock() + timedelta(seconds=60)
    assert entry.text_length == len("Hello world.")


@pytest.mark.parametrize("durable", [RecordingDurable(ok=False), RecordingDurable(raises=True)])
def test_durable_failures_are_invisible_to_callers(durable, caplog) -> None:
    orchestrator, engine, _ = _make(durable=durable)
    with caplog.at_level(logging.WARNING, logger="scanvault"):
        with orchestrator:
            first = orchestrator.get_or_scan("Hello world.")
            orchestrator.flush(timeout=5)
            second = orchestrator.get_or_scan("Hello world.")

    assert first.served_from_cache is False
    assert second.served_from_cache is True
    assert len(engine.calls) == 1
    assert orchestrator.stats().durable_failures == 1
    assert "Durable write-through failed" in caplog.text


def test_read_through_promotes_durable_entry() -> None:
    durable = RecordingDurable()
    first, first_engine, clock = _make(durable=durable)
    with first:
        first.get_or_scan("Hello world.")
        first.flush(timeout=5)

    second, second_engine, _ = _make(durable=durable, read_through=True, clock=clock)
    with second:
        restored = second.get_or_scan("Hello world.")
        cached = second.get_or_scan("Hello world.")

    assert len(first_engine.calls) == 1
    assert second_engine.calls == []
    assert restored.served_from_cache is True
    assert cached.served_from_cache is True
    assert second.stats().durable_promotions == 1


def test_read_through_skips_expired_durable_entry() -> None:
    durable = RecordingDurable()
    first, _, clock = _make(durable=durable, ttl=10)
    with first:
        first.get_or_scan("Hello world.")
        first.flush(timeout=5)
    clock.advance(11)

    second, second_engine, _ = _make(durable=durable, read_through=True, clock=clock)
    with second:
        result = second.get_or_scan("Hello world.")

    assert result.served_from_cache is False
    assert len(second_engine.calls) == 1


def test_version_change_mid_fill_keeps_captured_version() -> None:
    gate = Event()
    orchestrator, engine, _ = _make(CountingEngine(gate=gate))
    with orchestrator, ThreadPoolExecutor(max_workers=1) as pool:
        pending = pool.submit(orchestrator.get_or_scan, "Racing text.")
        deadline = time.monotonic() + 5
        while not engine.calls and time.monotonic() < deadline:
            time.sleep(0.005)
        orchestrator.reload_ruleset("2")
        gate.set()
        result = pending.result(timeout=5)

        assert result.ruleset_version == "1"
        old_key = composite_key(derive_key("Racing text."), "1")
        assert orchestrator.store.get(old_key) is not None
        fresh = orchestrator.get_or_scan("Racing text.")

    assert fresh.ruleset_version == "2"
    assert fresh.served_from_cache is False


def test_empty_text_is_scanned_and_cached() -> None:
    orchestrator, engine, _ = _make()
    with orchestrator:
        first = orchestrator.get_or_scan("")
        second = orchestrator.get_or_scan("   ")

    assert first.highlights == ()
    assert second.served_from_cache is True
    assert len(engine.calls) == 1


def test_stats_track_hits_and_misses() -> None:
    orchestrator, _, _ = _make()
    with orchestrator:
        orchestrator.get_or_scan("a")
        orchestrator.get_or_scan("a")
        orchestrator.get_or_scan("b")
        stats = orchestrator.stats()

    assert stats.requests == 3
    assert stats.hits == 1
    assert stats.misses == 2
    assert stats.fills == 2
    assert stats.hit_rate == round(1 / 3, 3)
    assert stats.by_severity["low"] == 2


def test_closed_orchestrator_reports_failure() -> None:
    orchestrator, _, _ = _make()
    orchestrator.close()

    with pytest.raises(EngineFailure):
        orchestrator.get_or_scan("after close")
    assert orchestrator.in_flight() == 0


def test_rejects_invalid_settings() -> None:
    adapter = RuleEngineAdapter(CountingEngine(), "1")
    with pytest.raises(ValueError):
        ScanOrchestrator(adapter, CacheStore(1), ttl_seconds=0)
    with pytest.raises(ValueError):
        ScanOrchestrator(adapter, CacheStore(1), fill_timeout_ms=0)


def test_cache_hit_does_not_wait_on_stats_lock() -> None:
    orchestrator, engine, _ = _make()
    with orchestrator:
        orchestrator.get_or_scan("hot text")
        with ThreadPoolExecutor(max_workers=1) as pool:
            with orchestrator._stats_lock:
                result = pool.submit(orchestrator.get_or_scan, "hot text").result(timeout=2)

    assert result.served_from_cache is True
    assert len(engine.calls) == 1
    assert orchestrator.stats().hits == 1
