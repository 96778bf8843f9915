"""Public Python API for scanvault."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Iterable

from .config import (
    Config,
    config_dir_context,
    config_from_json,
    durable_db_path,
    load_config,
    set_ruleset_version,
)
from .durable import DurableStore, NullDurableStore, SQLiteDurableStore
from .engine import RuleEngine, RuleEngineAdapter
from .keys import is_content_key
from .memory_cache import CacheStore, Clock
from .models import ScanResult
from .orchestrator import ScanOrchestrator
from .rules import KeywordRuleEngine
from .text import Messages


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    cache_capacity: int
    ttl_seconds: int
    fill_timeout_ms: int
    cache_shards: int
    max_fill_workers: int
    ruleset_version: str
    durable_enabled: bool
    durable_read_through: bool
    durable_max_entries: int
    db_path: Path

    @classmethod
    def from_config(cls, config: Config, *, db_path: Path | None = None) -> "RuntimeSettings":
        return cls(
            cache_capacity=config.cache_capacity,
            ttl_seconds=config.ttl_seconds,
            fill_timeout_ms=config.fill_timeout_ms,
            cache_shards=config.cache_shards,
            max_fill_workers=config.max_fill_workers,
            ruleset_version=config.ruleset_version,
            durable_enabled=config.durable_enabled,
            durable_read_through=config.durable_read_through,
            durable_max_entries=config.durable_max_entries,
            db_path=db_path or durable_db_path(),
        )


def build_orchestrator(
    settings: RuntimeSettings,
    *,
    engine: RuleEngine | None = None,
    durable: DurableStore | None = None,
    clock: Clock | None = None,
) -> ScanOrchestrator:
    """Wire engine adapter, cache store and durable store from *settings*."""

    adapter = RuleEngineAdapter(engine or KeywordRuleEngine(), settings.ruleset_version)
    store = CacheStore(
        settings.cache_capacity,
        shards=settings.cache_shards,
        clock=clock,
    )
    if durable is None:
        if settings.durable_enabled:
            durable = SQLiteDurableStore(
                settings.db_path, max_entries=settings.durable_max_entries
            )
        else:
            durable = NullDurableStore()
    return ScanOrchestrator(
        adapter,
        store,
        durable,
        ttl_seconds=settings.ttl_seconds,
        fill_timeout_ms=settings.fill_timeout_ms,
        max_workers=settings.max_fill_workers,
        durable_read_through=settings.durable_read_through,
        clock=clock,
    )


class ScanVaultClient:
    """Session-style wrapper owning one orchestrator and its executors."""

    def __init__(
        self,
        *,
        config: Config | Mapping[str, object] | str | None = None,
        config_dir: Path | str | None = None,
        engine: RuleEngine | None = None,
        durable: DurableStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config_dir = config_dir
        self._engine = engine
        self._durable = durable
        self._clock = clock
        self._config = self._resolve_config(config)
        self._orchestrator: ScanOrchestrator | None = None
        self._lock = Lock()

    def __enter__(self) -> "ScanVaultClient":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()

    def _resolve_config(self, config: Config | Mapping[str, object] | str | None) -> Config:
        if isinstance(config, Config):
            return config
        with config_dir_context(self.config_dir):
            base = load_config()
        if config is None:
            return base
        return config_from_json(config, base=base)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def orchestrator(self) -> ScanOrchestrator:
        with self._lock:
            if self._orchestrator is None:
                with config_dir_context(self.config_dir):
                    settings = RuntimeSettings.from_config(self._config)
                self._orchestrator = build_orchestrator(
                    settings,
                    engine=self._engine,
                    durable=self._durable,
                    clock=self._clock,
                )
            return self._orchestrator

    def get_or_scan(self, text: str, *, timeout: float | None = None) -> ScanResult:
        return self.orchestrator.get_or_scan(text, timeout=timeout)

    def scan_many(
        self, texts: Iterable[str], *, timeout: float | None = None
    ) -> list[ScanResult]:
        return self.orchestrator.scan_many(texts, timeout=timeout)

    def current_version(self) -> str:
        return self.orchestrator.engine.current_version()

    def reload_ruleset(
        self,
        version: str,
        *,
        engine: RuleEngine | None = None,
        force: bool = False,
        persist: bool = False,
    ) -> str:
        """Switch to *version*; with *persist* the choice is written to config."""

        previous = self.orchestrator.reload_ruleset(
            version, engine=engine, allow_downgrade=force
        )
        self._config.ruleset_version = self.orchestrator.engine.current_version()
        if persist:
            with config_dir_context(self.config_dir):
                set_ruleset_version(self._config.ruleset_version)
        return previous

    def stats(self) -> dict[str, object]:
        orchestrator = self.orchestrator
        data = orchestrator.stats().to_dict()
        data["store"] = orchestrator.store.stats().to_dict()
        data["entries"] = len(orchestrator.store)
        data["capacity"] = orchestrator.store.capacity
        data["in_flight"] = orchestrator.in_flight()
        data["ruleset_version"] = orchestrator.engine.current_version()
        return data

    def feedback_store(self) -> SQLiteDurableStore:
        """The SQLite file feedback goes to; the durable store when it is one."""

        if isinstance(self._durable, SQLiteDurableStore):
            return self._durable
        with config_dir_context(self.config_dir):
            return SQLiteDurableStore(
                durable_db_path(), max_entries=self._config.durable_max_entries
            )

    def record_feedback(
        self,
        target: ScanResult | str,
        verdict: str,
        *,
        rule_id: str | None = None,
        note: str | None = None,
        ruleset_version: str | None = None,
    ) -> int:
        """Record an accepted/rejected verdict for a scan result or content key.

        A :class:`ScanResult` carries its own ruleset version; a bare key is
        filed under *ruleset_version* or the active version.
        """

        if isinstance(target, ScanResult):
            key = target.key
            version = ruleset_version or target.ruleset_version
        else:
            key = (target or "").strip().lower()
            version = ruleset_version or self._config.ruleset_version
        if not is_content_key(key):
            raise ValueError(Messages.ERROR_FEEDBACK_KEY)
        return self.feedback_store().record_feedback(
            key, version, verdict, rule_id=rule_id, note=note
        )

    def list_feedback(
        self, limit: int = 50, *, key: str | None = None
    ) -> list[dict[str, object]]:
        return self.feedback_store().list_feedback(limit, key=key)

    def flush(self, timeout: float | None = None) -> bool:
        if self._orchestrator is None:
            return True
        return self._orchestrator.flush(timeout)

    def close(self) -> None:
        with self._lock:
            orchestrator = self._orchestrator
            self._orchestrator = None
        if orchestrator is not None:
            orchestrator.close()


_DEFAULT_CLIENT: ScanVaultClient | None = None
_DEFAULT_LOCK = Lock()


def _default_client() -> ScanVaultClient:
    global _DEFAULT_CLIENT
    with _DEFAULT_LOCK:
        if _DEFAULT_CLIENT is None:
            _DEFAULT_CLIENT = ScanVaultClient()
        return _DEFAULT_CLIENT


def get_or_scan(text: str, *, timeout: float | None = None) -> ScanResult:
    """Scan *text* through the process-wide default client."""

    return _default_client().get_or_scan(text, timeout=timeout)


def reload_ruleset(version: str, *, force: bool = False) -> str:
    return _default_client().reload_ruleset(version, force=force)


def stats() -> dict[str, object]:
    return _default_client().stats()


def shutdown() -> None:
    """Close the default client; a later call builds a fresh one."""

    global _DEFAULT_CLIENT
    with _DEFAULT_LOCK:
        client = _DEFAULT_CLIENT
        _DEFAULT_CLIENT = None
    if client is not None:
        client.close()
