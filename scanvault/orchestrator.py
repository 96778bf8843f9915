"""Write-through scan orchestration with per-key fill deduplication.

Every request is resolved against ``(derive_key(text), current ruleset
version)``. A hit is answered straight from the :class:`CacheStore`. A miss
either joins the fill already running for that composite key or installs a
new shared :class:`~concurrent.futures.Future` and starts one, so the rule
engine runs at most once per composite key at any time.

A ruleset reload changes the version half of the key; entries made under the
old version are simply never looked up again and age out through TTL/LRU.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from dataclasses import dataclass, replace
from threading import Lock
from typing import Iterable

from .durable import DurableStore, NullDurableStore
from .engine import RuleEngine, RuleEngineAdapter
from .errors import DurablePersistFailure, EngineFailure, EngineTimeout, ScanWaitTimeout
from .keys import CompositeKey, composite_key, derive_key
from .memory_cache import CacheStore, Clock, utc_now
from .models import ScanEntry, ScanResult, ScanStats
from .text import Messages

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_FILL_TIMEOUT_MS = 5000
DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True, slots=True)
class _FillOutcome:
    entry: ScanEntry
    from_durable: bool = False


class ScanOrchestrator:
    def __init__(
        self,
        engine: RuleEngineAdapter,
        store: CacheStore,
        durable: DurableStore | None = None,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        fill_timeout_ms: int = DEFAULT_FILL_TIMEOUT_MS,
        max_workers: int = DEFAULT_MAX_WORKERS,
        durable_read_through: bool = False,
        clock: Clock | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if fill_timeout_ms <= 0:
            raise ValueError("fill_timeout_ms must be positive")
        self.engine = engine
        self.store = store
        self.durable: DurableStore = durable if durable is not None else NullDurableStore()
        self.ttl_seconds = ttl_seconds
        self.fill_timeout_ms = fill_timeout_ms
        self.durable_read_through = durable_read_through
        self._clock = clock or utc_now
        self._inflight: dict[CompositeKey, Future[_FillOutcome]] = {}
        self._inflight_lock = Lock()
        self._stats = ScanStats()
        self._stats_lock = Lock()
        self._pending_writes: set[Future[None]] = set()
        self._writes_lock = Lock()
        workers = max(1, int(max_workers))
        self._max_workers = workers
        self._fill_pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="scanvault-fill"
        )
        self._engine_pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="scanvault-engine"
        )
        # one writer keeps SQLite writes serialized
        self._durable_pool = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="scanvault-durable"
        )

    def __enter__(self) -> "ScanOrchestrator":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()

    @property
    def fill_timeout(self) -> float:
        return self.fill_timeout_ms / 1000.0

    def get_or_scan(self, text: str, *, timeout: float | None = None) -> ScanResult:
        """Return highlights for *text* under the active ruleset.

        *timeout* bounds how long this caller waits on a fill. Giving up
        raises :class:`ScanWaitTimeout` for this caller only; the fill keeps
        running and still populates the cache.
        """

        clean_text = text or ""
        base = derive_key(clean_text)
        snapshot = self.engine.snapshot()
        version = snapshot.version
        composite = composite_key(base, version)

        # hits are counted by the store under its shard lock
        entry = self.store.get(composite)
        if entry is not None:
            return ScanResult(entry.highlights, version, True, base, entry.text_length)

        with self._inflight_lock:
            # a fill may have landed between the lookup above and taking the lock
            entry = self.store.get(composite, record=False)
            if entry is not None:
                pending = None
                leader = False
            else:
                pending = self._inflight.get(composite)
                leader = pending is None
                if leader:
                    pending = Future()
                    self._inflight[composite] = pending
        if pending is None:
            self._record_late_hit()
            return ScanResult(entry.highlights, version, True, base, entry.text_length)

        if leader:
            self._record_miss(joined=False)
            self._start_fill(composite, clean_text, snapshot.payload, pending)
        else:
            self._record_miss(joined=True)

        try:
            outcome = pending.result(timeout=timeout)
        except FutureTimeoutError as exc:
            raise ScanWaitTimeout(
                Messages.ERROR_WAIT_TIMEOUT.format(key=composite, timeout=timeout)
            ) from exc
        return ScanResult(
            outcome.entry.highlights,
            version,
            outcome.from_durable,
            base,
            outcome.entry.text_length,
        )

    def scan_many(
        self,
        texts: Iterable[str],
        *,
        timeout: float | None = None,
    ) -> list[ScanResult]:
        """Scan a batch concurrently; results keep the input order."""

        items = list(texts)
        if not items:
            return []
        if len(items) == 1:
            return [self.get_or_scan(items[0], timeout=timeout)]
        workers = min(self._max_workers, len(items))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="scanvault-batch"
        ) as executor:
            return list(
                executor.map(lambda item: self.get_or_scan(item, timeout=timeout), items)
            )

    def reload_ruleset(
        self,
        version: str,
        *,
        engine: RuleEngine | None = None,
        allow_downgrade: bool = False,
    ) -> str:
        """Activate a new ruleset version; returns the version it replaced."""

        return self.engine.reload(version, engine=engine, allow_downgrade=allow_downgrade)

    def in_flight(self) -> int:
        with self._inflight_lock:
            return len(self._inflight)

    def stats(self) -> ScanStats:
        """Counters for this orchestrator.

        Fast-path hits live in the store's per-shard counters so the hit path
        never takes ``_stats_lock``; they are folded in here.
        """

        store_hits = self.store.stats().hits
        with self._stats_lock:
            snapshot = replace(self._stats, by_severity=dict(self._stats.by_severity))
        snapshot.hits += store_hits
        snapshot.requests = snapshot.hits + snapshot.misses
        return snapshot

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued durable writes; True when none are left pending."""

        with self._writes_lock:
            pending = list(self._pending_writes)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        self._fill_pool.shutdown(wait=True)
        self._durable_pool.shutdown(wait=True)
        # a hung engine call must not block shutdown
        self._engine_pool.shutdown(wait=False)

    def _start_fill(
        self,
        composite: CompositeKey,
        text: str,
        engine: RuleEngine,
        pending: Future[_FillOutcome],
    ) -> None:
        try:
            self._fill_pool.submit(self._fill, composite, text, engine, pending)
        except RuntimeError as exc:
            failure = EngineFailure(Messages.ERROR_ORCHESTRATOR_CLOSED)
            failure.__cause__ = exc
            self._finish_fill(composite, pending, error=failure)

    def _fill(
        self,
        composite: CompositeKey,
        text: str,
        engine: RuleEngine,
        pending: Future[_FillOutcome],
    ) -> None:
        logger.debug("Fill started for %s", composite)
        try:
            outcome = self._produce(composite, text, engine)
        except Exception as exc:
            if isinstance(exc, EngineFailure):
                failure = exc
            else:
                failure = EngineFailure(
                    Messages.ERROR_ENGINE_FAILED.format(key=composite, reason=exc)
                )
                failure.__cause__ = exc
            with self._stats_lock:
                self._stats.engine_failures += 1
            logger.warning("Fill failed for %s: %s", composite, failure)
            self._finish_fill(composite, pending, error=failure)
            return
        logger.debug(
            "Fill finished for %s with %d highlights",
            composite,
            len(outcome.entry.highlights),
        )
        self._finish_fill(composite, pending, outcome=outcome)

    def _produce(
        self,
        composite: CompositeKey,
        text: str,
        engine: RuleEngine,
    ) -> _FillOutcome:
        if self.durable_read_through:
            restored = self._load_durable(composite)
            if restored is not None:
                self.store.put(composite, restored)
                with self._stats_lock:
                    self._stats.durable_promotions += 1
                return _FillOutcome(restored, from_durable=True)

        highlights = self._call_engine(composite, text, engine)
        entry = ScanEntry.create(
            key=composite.key,
            ruleset_version=composite.ruleset_version,
            highlights=highlights,
            ttl_seconds=self.ttl_seconds,
            text_length=len(text),
            now=self._clock(),
        )
        self.store.put(composite, entry)
        with self._stats_lock:
            self._stats.fills += 1
            for item in entry.highlights:
                self._stats.by_severity[item.severity] = (
                    self._stats.by_severity.get(item.severity, 0) + 1
                )
        self._persist_async(entry)
        return _FillOutcome(entry)

    def _call_engine(self, composite: CompositeKey, text: str, engine: RuleEngine):
        engine_future = self._engine_pool.submit(
            self.engine.scan, text, composite.ruleset_version, engine=engine
        )
        try:
            return engine_future.result(timeout=self.fill_timeout)
        except FutureTimeoutError as exc:
            engine_future.cancel()
            raise EngineTimeout(
                Messages.ERROR_ENGINE_TIMEOUT.format(
                    key=composite, timeout_ms=self.fill_timeout_ms
                )
            ) from exc
        except Exception as exc:
            raise EngineFailure(
                Messages.ERROR_ENGINE_FAILED.format(key=composite, reason=exc)
            ) from exc

    def _load_durable(self, composite: CompositeKey) -> ScanEntry | None:
        loader = getattr(self.durable, "load", None)
        if loader is None:
            return None
        try:
            entry = loader(composite)
        except Exception as exc:
            logger.warning("Durable lookup failed for %s: %s", composite, exc)
            return None
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    def _finish_fill(
        self,
        composite: CompositeKey,
        pending: Future[_FillOutcome],
        *,
        outcome: _FillOutcome | None = None,
        error: BaseException | None = None,
    ) -> None:
        # the store write (if any) already happened, so clearing the marker
        # cannot open a window where a new caller sees neither
        with self._inflight_lock:
            if self._inflight.get(composite) is pending:
                del self._inflight[composite]
        if error is not None:
            pending.set_exception(error)
        else:
            pending.set_result(outcome)

    def _persist_async(self, entry: ScanEntry) -> None:
        try:
            future = self._durable_pool.submit(self._persist, entry)
        except RuntimeError as exc:
            self._on_persist_failure(entry.key, exc)
            return
        with self._writes_lock:
            self._pending_writes.add(future)
        future.add_done_callback(self._on_persist_done)

    def _persist(self, entry: ScanEntry) -> None:
        # failures are recorded here so flush() observes them once it returns
        try:
            ok = self.durable.persist(entry)
        except Exception as exc:
            failure = DurablePersistFailure(
                Messages.ERROR_DURABLE_FAILED.format(key=entry.key, reason=exc)
            )
            failure.__cause__ = exc
            self._on_persist_failure(entry.key, failure)
            return
        if not ok:
            self._on_persist_failure(
                entry.key,
                DurablePersistFailure(
                    Messages.ERROR_DURABLE_FAILED.format(key=entry.key, reason="rejected")
                ),
            )

    def _on_persist_done(self, future: Future[None]) -> None:
        with self._writes_lock:
            self._pending_writes.discard(future)

    def _on_persist_failure(self, key: str, exc: BaseException) -> None:
        with self._stats_lock:
            self._stats.durable_failures += 1
        logger.warning("Durable write-through failed for %s: %s", key, exc)

    def _record_late_hit(self) -> None:
        with self._stats_lock:
            self._stats.hits += 1

    def _record_miss(self, *, joined: bool) -> None:
        with self._stats_lock:
            self._stats.misses += 1
            if joined:
                self._stats.joined += 1
