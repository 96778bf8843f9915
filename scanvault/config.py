"""Global configuration management for scanvault."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from .errors import ScanVaultConfigError
from .text import Messages

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".scanvault"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
_CONFIG_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "scanvault_config_dir_override",
    default=None,
)
DB_FILENAME = "scans.db"
LOG_FILENAME = "scanvault.log"

DEFAULT_CACHE_CAPACITY = 10_000
DEFAULT_TTL_SECONDS = 3600
DEFAULT_FILL_TIMEOUT_MS = 5000
DEFAULT_CACHE_SHARDS = 1
DEFAULT_MAX_FILL_WORKERS = 8
DEFAULT_RULESET_VERSION = "1"
DEFAULT_DURABLE_MAX_ENTRIES = 50_000
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_LOG_MAX_BYTES = 1_048_576
DEFAULT_LOG_BACKUP_COUNT = 3
SUPPORTED_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

ENV_CACHE_CAPACITY = "SCANVAULT_CACHE_CAPACITY"
ENV_TTL_SECONDS = "SCANVAULT_TTL_SECONDS"
ENV_FILL_TIMEOUT_MS = "SCANVAULT_FILL_TIMEOUT_MS"
ENV_LOG_LEVEL = "SCANVAULT_LOG_LEVEL"


@dataclass
class Config:
    cache_capacity: int = DEFAULT_CACHE_CAPACITY
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    fill_timeout_ms: int = DEFAULT_FILL_TIMEOUT_MS
    cache_shards: int = DEFAULT_CACHE_SHARDS
    max_fill_workers: int = DEFAULT_MAX_FILL_WORKERS
    ruleset_version: str = DEFAULT_RULESET_VERSION
    durable_enabled: bool = True
    durable_read_through: bool = False
    durable_max_entries: int = DEFAULT_DURABLE_MAX_ENTRIES
    log_level: str = DEFAULT_LOG_LEVEL
    log_max_bytes: int = DEFAULT_LOG_MAX_BYTES
    log_backup_count: int = DEFAULT_LOG_BACKUP_COUNT


def _resolve_config_dir() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    return override if override is not None else CONFIG_DIR


def _resolve_config_file() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    if override is not None:
        return override / "config.json"
    return CONFIG_FILE


@contextmanager
def config_dir_context(path: Path | str | None):
    """Temporarily override the config directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CONFIG_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CONFIG_DIR_OVERRIDE.reset(token)


def data_dir() -> Path:
    return _resolve_config_dir()


def durable_db_path() -> Path:
    """Return the SQLite file that receives write-through scan entries."""

    return _resolve_config_dir() / DB_FILENAME


def log_file_path() -> Path:
    return _resolve_config_dir() / LOG_FILENAME


def load_config(*, apply_env: bool = True) -> Config:
    config_file = _resolve_config_file()
    config = Config()
    if config_file.exists():
        raw = json.loads(config_file.read_text(encoding="utf-8"))
        if isinstance(raw, Mapping):
            _apply_config_payload(config, raw, strict=False)
    if apply_env:
        apply_env_overrides(config)
    return config


def save_config(config: Config) -> None:
    config_dir = _resolve_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {
        "cache_capacity": config.cache_capacity,
        "ttl_seconds": config.ttl_seconds,
        "fill_timeout_ms": config.fill_timeout_ms,
        "cache_shards": config.cache_shards,
        "max_fill_workers": config.max_fill_workers,
        "ruleset_version": config.ruleset_version,
        "durable_enabled": bool(config.durable_enabled),
        "durable_read_through": bool(config.durable_read_through),
        "durable_max_entries": config.durable_max_entries,
        "log_level": config.log_level,
    }
    if config.log_max_bytes != DEFAULT_LOG_MAX_BYTES:
        data["log_max_bytes"] = config.log_max_bytes
    if config.log_backup_count != DEFAULT_LOG_BACKUP_COUNT:
        data["log_backup_count"] = config.log_backup_count
    config_file = _resolve_config_file()
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def apply_env_overrides(config: Config) -> Config:
    """Overlay SCANVAULT_* environment variables (and a local .env) onto *config*."""

    load_dotenv()
    env_capacity = os.getenv(ENV_CACHE_CAPACITY)
    if env_capacity:
        config.cache_capacity = _coerce_positive_int(
            env_capacity, "cache_capacity", DEFAULT_CACHE_CAPACITY
        )
    env_ttl = os.getenv(ENV_TTL_SECONDS)
    if env_ttl:
        config.ttl_seconds = _coerce_positive_int(env_ttl, "ttl_seconds", DEFAULT_TTL_SECONDS)
    env_timeout = os.getenv(ENV_FILL_TIMEOUT_MS)
    if env_timeout:
        config.fill_timeout_ms = _coerce_positive_int(
            env_timeout, "fill_timeout_ms", DEFAULT_FILL_TIMEOUT_MS
        )
    env_level = os.getenv(ENV_LOG_LEVEL)
    if env_level:
        config.log_level = _normalize_log_level(env_level)
    return config


def config_from_json(
    payload: str | Mapping[str, object], *, base: Config | None = None
) -> Config:
    """Return a Config from a JSON string or mapping without saving it."""
    data = _coerce_config_payload(payload)
    config = Config() if base is None else replace(base)
    _apply_config_payload(config, data, strict=True)
    return config


def set_cache_capacity(value: int) -> None:
    config = load_config(apply_env=False)
    config.cache_capacity = _coerce_positive_int(value, "cache_capacity", DEFAULT_CACHE_CAPACITY)
    save_config(config)


def set_ttl_seconds(value: int) -> None:
    config = load_config(apply_env=False)
    config.ttl_seconds = _coerce_positive_int(value, "ttl_seconds", DEFAULT_TTL_SECONDS)
    save_config(config)


def set_fill_timeout_ms(value: int) -> None:
    config = load_config(apply_env=False)
    config.fill_timeout_ms = _coerce_positive_int(
        value, "fill_timeout_ms", DEFAULT_FILL_TIMEOUT_MS
    )
    save_config(config)


def set_cache_shards(value: int) -> None:
    config = load_config(apply_env=False)
    config.cache_shards = _coerce_positive_int(value, "cache_shards", DEFAULT_CACHE_SHARDS)
    save_config(config)


def set_ruleset_version(value: str) -> None:
    config = load_config(apply_env=False)
    config.ruleset_version = _coerce_required_str(
        value, "ruleset_version", DEFAULT_RULESET_VERSION
    )
    save_config(config)


def set_durable_enabled(value: bool) -> None:
    config = load_config(apply_env=False)
    config.durable_enabled = bool(value)
    save_config(config)


def set_durable_read_through(value: bool) -> None:
    config = load_config(apply_env=False)
    config.durable_read_through = bool(value)
    save_config(config)


def set_log_level(value: str) -> None:
    config = load_config(apply_env=False)
    config.log_level = _normalize_log_level(value)
    save_config(config)


def config_as_dict(config: Config) -> dict[str, object]:
    return {item.name: getattr(config, item.name) for item in fields(config)}


def _coerce_config_payload(payload: str | Mapping[str, object]) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ScanVaultConfigError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise ScanVaultConfigError(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise ScanVaultConfigError(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


_INT_FIELDS: dict[str, int] = {
    "cache_capacity": DEFAULT_CACHE_CAPACITY,
    "ttl_seconds": DEFAULT_TTL_SECONDS,
    "fill_timeout_ms": DEFAULT_FILL_TIMEOUT_MS,
    "cache_shards": DEFAULT_CACHE_SHARDS,
    "max_fill_workers": DEFAULT_MAX_FILL_WORKERS,
    "durable_max_entries": DEFAULT_DURABLE_MAX_ENTRIES,
    "log_max_bytes": DEFAULT_LOG_MAX_BYTES,
    "log_backup_count": DEFAULT_LOG_BACKUP_COUNT,
}
_BOOL_FIELDS: tuple[str, ...] = ("durable_enabled", "durable_read_through")


def _apply_config_payload(
    config: Config,
    payload: Mapping[str, object],
    *,
    strict: bool,
) -> None:
    # strict=False is used for the on-disk file: bad values fall back to defaults
    for field_name, default in _INT_FIELDS.items():
        if field_name not in payload:
            continue
        try:
            if field_name in {"durable_max_entries", "log_backup_count"}:
                value = _coerce_non_negative_int(payload[field_name], field_name, default)
            else:
                value = _coerce_positive_int(payload[field_name], field_name, default)
        except ScanVaultConfigError:
            if strict:
                raise
            value = default
        setattr(config, field_name, value)
    for field_name in _BOOL_FIELDS:
        if field_name not in payload:
            continue
        try:
            setattr(config, field_name, _coerce_bool(payload[field_name], field_name))
        except ScanVaultConfigError:
            if strict:
                raise
    if "ruleset_version" in payload:
        try:
            config.ruleset_version = _coerce_required_str(
                payload["ruleset_version"], "ruleset_version", DEFAULT_RULESET_VERSION
            )
        except ScanVaultConfigError:
            if strict:
                raise
            config.ruleset_version = DEFAULT_RULESET_VERSION
    if "log_level" in payload:
        try:
            config.log_level = _normalize_log_level(payload["log_level"])
        except ScanVaultConfigError:
            if strict:
                raise
            config.log_level = DEFAULT_LOG_LEVEL


def _coerce_required_str(value: object, field: str, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or default
    raise ScanVaultConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ScanVaultConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ScanVaultConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            return int(cleaned)
        except ValueError as exc:
            raise ScanVaultConfigError(
                Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)
            ) from exc
    raise ScanVaultConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_positive_int(value: object, field: str, default: int) -> int:
    number = _coerce_int(value, field, default)
    if number < 1:
        raise ScanVaultConfigError(Messages.ERROR_CONFIG_POSITIVE.format(field=field))
    return number


def _coerce_non_negative_int(value: object, field: str, default: int) -> int:
    number = _coerce_int(value, field, default)
    if number < 0:
        raise ScanVaultConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    return number


def _coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes", "on"}:
            return True
        if cleaned in {"false", "0", "no", "off"}:
            return False
    raise ScanVaultConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _normalize_log_level(value: object) -> str:
    if isinstance(value, str):
        normalized = value.strip().upper() or DEFAULT_LOG_LEVEL
        if normalized in SUPPORTED_LOG_LEVELS:
            return normalized
    raise ScanVaultConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="log_level"))
