"""scanvault package initialization."""

from __future__ import annotations

from .api import (
    ScanVaultClient,
    build_orchestrator,
    get_or_scan,
    reload_ruleset,
    shutdown,
    stats,
)
from .errors import (
    DurablePersistFailure,
    DurableStoreError,
    EngineFailure,
    EngineTimeout,
    RulesetVersionError,
    ScanVaultError,
    ScanWaitTimeout,
)
from .keys import derive_key, normalize_text
from .models import Highlight, ScanEntry, ScanResult

__all__ = [
    "__version__",
    "DurablePersistFailure",
    "DurableStoreError",
    "EngineFailure",
    "EngineTimeout",
    "Highlight",
    "RulesetVersionError",
    "ScanEntry",
    "ScanResult",
    "ScanVaultClient",
    "ScanVaultError",
    "ScanWaitTimeout",
    "build_orchestrator",
    "derive_key",
    "get_or_scan",
    "get_version",
    "normalize_text",
    "reload_ruleset",
    "shutdown",
    "stats",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
