"""Exception types raised by scanvault."""

from __future__ import annotations


class ScanVaultError(RuntimeError):
    """Base class for scan-layer failures surfaced to callers."""


class EngineFailure(ScanVaultError):
    """The rule engine raised or did not answer in time."""


class EngineTimeout(EngineFailure):
    """The rule engine call exceeded the configured fill timeout."""


class ScanWaitTimeout(ScanVaultError):
    """A caller gave up waiting on a fill; the fill itself keeps running."""


class DurableStoreError(ScanVaultError):
    """The durable store could not be opened, read or changed."""


class DurablePersistFailure(DurableStoreError):
    """Write-through to the durable store failed. Logged, never raised to callers."""


class RulesetVersionError(ScanVaultError):
    """A ruleset reload was rejected."""


class ScanVaultConfigError(ValueError):
    """Configuration values could not be parsed."""
