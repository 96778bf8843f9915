"""Value types shared by the cache, the orchestrator and the stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

SEVERITY_LEVELS: tuple[str, ...] = ("low", "medium", "high")


@dataclass(frozen=True, slots=True)
class Highlight:
    start_offset: int
    end_offset: int
    rule_id: str
    label: str
    suggested_rewrite: str | None = None
    severity: str = "low"

    def __post_init__(self) -> None:
        if self.start_offset < 0 or self.start_offset >= self.end_offset:
            raise ValueError(
                f"Invalid highlight span [{self.start_offset}, {self.end_offset})"
            )
        if self.severity not in SEVERITY_LEVELS:
            raise ValueError(f"Unknown severity: {self.severity}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "rule_id": self.rule_id,
            "label": self.label,
            "suggested_rewrite": self.suggested_rewrite,
            "severity": self.severity,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Highlight":
        return cls(
            start_offset=int(data["start_offset"]),
            end_offset=int(data["end_offset"]),
            rule_id=str(data["rule_id"]),
            label=str(data["label"]),
            suggested_rewrite=data.get("suggested_rewrite") or None,
            severity=str(data.get("severity") or "low"),
        )


@dataclass(frozen=True, slots=True)
class ScanEntry:
    """One cached scan result. Never mutated after construction."""

    key: str
    ruleset_version: str
    highlights: tuple[Highlight, ...]
    scanned_at: datetime
    expires_at: datetime
    text_length: int = 0

    @classmethod
    def create(
        cls,
        *,
        key: str,
        ruleset_version: str,
        highlights: Sequence[Highlight],
        ttl_seconds: float,
        text_length: int = 0,
        now: datetime | None = None,
    ) -> "ScanEntry":
        scanned_at = now or datetime.now(timezone.utc)
        return cls(
            key=key,
            ruleset_version=str(ruleset_version),
            highlights=tuple(highlights),
            scanned_at=scanned_at,
            expires_at=scanned_at + timedelta(seconds=ttl_seconds),
            text_length=text_length,
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class ScanResult:
    highlights: tuple[Highlight, ...]
    ruleset_version: str
    served_from_cache: bool
    key: str = ""
    # length of the text these offsets were computed on
    text_length: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "ruleset_version": self.ruleset_version,
            "served_from_cache": self.served_from_cache,
            "highlights": [item.to_dict() for item in self.highlights],
        }


@dataclass(slots=True)
class ScanStats:
    requests: int = 0
    hits: int = 0
    misses: int = 0
    fills: int = 0
    joined: int = 0
    engine_failures: int = 0
    durable_failures: int = 0
    durable_promotions: int = 0
    by_severity: dict[str, int] = field(
        default_factory=lambda: {level: 0 for level in SEVERITY_LEVELS}
    )

    @property
    def hit_rate(self) -> float:
        if self.requests == 0:
            return 0.0
        return round(self.hits / self.requests, 3)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "hits": self.hits,
            "misses": self.misses,
            "fills": self.fills,
            "joined": self.joined,
            "engine_failures": self.engine_failures,
            "durable_failures": self.durable_failures,
            "durable_promotions": self.durable_promotions,
            "hit_rate": self.hit_rate,
            "by_severity": dict(self.by_severity),
        }
