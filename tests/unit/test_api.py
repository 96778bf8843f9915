from __future__ import annotations

import json

import pytest

import scanvault
from scanvault import api as api_module
from scanvault import config as config_module
from scanvault.api import RuntimeSettings, ScanVaultClient, build_orchestrator
from scanvault.durable import NullDurableStore, SQLiteDurableStore
from scanvault.errors import RulesetVersionError, ScanVaultConfigError
from scanvault.keys import derive_key
from scanvault.models import Highlight
from scanvault.rules import KeywordRuleEngine


class EchoEngine:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def scan(self, text: str, ruleset_version: str) -> list[Highlight]:
        self.calls.append((text, ruleset_version))
        return [Highlight(0, 1, f"echo-{ruleset_version}", "Echo")] if text else []


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    path = tmp_path / "config"
    monkeypatch.setattr(config_module, "CONFIG_DIR", path)
    monkeypatch.setattr(config_module, "CONFIG_FILE", path / "config.json")
    monkeypatch.delenv(config_module.ENV_CACHE_CAPACITY, raising=False)
    return path


def test_client_scans_and_caches(config_dir):
    engine = EchoEngine()
    with ScanVaultClient(engine=engine, durable=NullDurableStore()) as client:
        first = client.get_or_scan("Hello world.")
        second = client.get_or_scan("Hello world.")

    assert first.served_from_cache is False
    assert second.served_from_cache is True
    assert len(engine.calls) == 1


def test_client_accepts_mapping_config(config_dir):
    client = ScanVaultClient(
        config={"cache_capacity": 2, "ruleset_version": "9"},
        engine=EchoEngine(),
        durable=NullDurableStore(),
    )
    try:
        assert client.config.cache_capacity == 2
        assert client.current_version() == "9"
        assert client.orchestrator.store.capacity == 2
    finally:
        client.close()


def test_client_rejects_invalid_config(config_dir):
    with pytest.raises(ScanVaultConfigError):
        ScanVaultClient(config='{"ttl_seconds": -1}')


def test_client_reload_persists_version(config_dir):
    engine = EchoEngine()
    with ScanVaultClient(engine=engine, durable=NullDurableStore()) as client:
        client.get_or_scan("abc")
        previous = client.reload_ruleset("2", persist=True)
        result = client.get_or_scan("abc")

    assert previous == "1"
    assert result.ruleset_version == "2"
    assert result.served_from_cache is False
    stored = json.loads((config_dir / "config.json").read_text())
    assert stored["ruleset_version"] == "2"


def test_client_reload_requires_force_for_downgrade(config_dir):
    with ScanVaultClient(
        config={"ruleset_version": "5"}, engine=EchoEngine(), durable=NullDurableStore()
    ) as client:
        with pytest.raises(RulesetVersionError):
            client.reload_ruleset("4")
        assert client.reload_ruleset("4", force=True) == "5"
        assert client.config.ruleset_version == "4"


def test_client_stats_include_store_details(config_dir):
    with ScanVaultClient(engine=EchoEngine(), durable=NullDurableStore()) as client:
        client.scan_many(["a", "b", "a"])
        data = client.stats()

    assert data["requests"] == 3
    assert data["fills"] == 2
    assert data["entries"] == 2
    assert data["capacity"] == config_module.DEFAULT_CACHE_CAPACITY
    assert data["in_flight"] == 0
    assert data["ruleset_version"] == "1"
    assert set(data["store"]) == {"hits", "misses", "evictions", "expirations"}


def test_client_writes_through_to_sqlite(config_dir):
    with ScanVaultClient(engine=EchoEngine()) as client:
        client.get_or_scan("persist me")
        assert client.flush(timeout=5) is True

    store = SQLiteDurableStore(config_dir / "scans.db")
    assert store.count() == 1


def test_build_orchestrator_respects_durable_toggle(tmp_path):
    settings = RuntimeSettings.from_config(
        config_module.Config(durable_enabled=False, cache_shards=2),
        db_path=tmp_path / "scans.db",
    )

    with build_orchestrator(settings) as orchestrator:
        assert isinstance(orchestrator.durable, NullDurableStore)
        assert isinstance(orchestrator.engine.engine, KeywordRuleEngine)
        assert orchestrator.store.shard_count == 2


def test_module_level_client_lifecycle(config_dir, monkeypatch):
    monkeypatch.setattr(api_module, "_DEFAULT_CLIENT", None)
    try:
        result = scanvault.get_or_scan("We leverage synergy.")
        assert [item.rule_id for item in result.highlights] == ["leverage"]
        assert scanvault.reload_ruleset("2") == "1"
        assert scanvault.stats()["ruleset_version"] == "2"
    finally:
        scanvault.shutdown()
    assert api_module._DEFAULT_CLIENT is None


def test_client_records_feedback_for_a_result(config_dir):
    with ScanVaultClient(engine=EchoEngine(), durable=NullDurableStore()) as client:
        result = client.get_or_scan("flag me")
        client.reload_ruleset("2")
        feedback_id = client.record_feedback(
            result, "rejected", rule_id="echo-1", note="not jargon"
        )
        by_key = client.record_feedback(result.key.upper(), "accepted")
        rows = client.list_feedback(key=result.key)

    assert by_key > feedback_id
    assert {(row["ruleset_version"], row["verdict"]) for row in rows} == {
        ("1", "rejected"),
        ("2", "accepted"),
    }
    # feedback lands in the configured SQLite file even without write-through
    assert len(SQLiteDurableStore(config_dir / "scans.db").list_feedback()) == 2


def test_client_feedback_uses_sqlite_durable_store(tmp_path, config_dir):
    durable = SQLiteDurableStore(tmp_path / "elsewhere.db")
    client = ScanVaultClient(engine=EchoEngine(), durable=durable)

    client.record_feedback(derive_key("x"), "accepted", ruleset_version="7")

    assert client.feedback_store() is durable
    assert durable.list_feedback()[0]["ruleset_version"] == "7"
    assert not (config_dir / "scans.db").exists()


def test_client_feedback_rejects_bad_key(config_dir):
    client = ScanVaultClient(engine=EchoEngine(), durable=NullDurableStore())

    with pytest.raises(ValueError):
        client.record_feedback("not-a-key", "accepted")
