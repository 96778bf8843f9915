"""Content-addressed cache keys for scanned text."""

from __future__ import annotations

import hashlib
import re
from typing import NamedTuple

_WHITESPACE_RUN = re.compile(r"\s+")
_KEY_PATTERN = re.compile(r"[0-9a-f]{64}")


class CompositeKey(NamedTuple):
    """Cache store key: the content key folded together with a ruleset version."""

    key: str
    ruleset_version: str

    def __str__(self) -> str:
        return f"{self.key}@{self.ruleset_version}"


def normalize_text(text: str | None) -> str:
    """Collapse whitespace runs to a single space and strip both ends."""

    clean_text = text or ""
    return _WHITESPACE_RUN.sub(" ", clean_text).strip()


def derive_key(text: str | None) -> str:
    """Return the stable SHA-256 hex digest for the normalized form of *text*."""

    normalized = normalize_text(text)
    return hashlib.sha256(normalized.encode("utf-8", "surrogatepass")).hexdigest()


def is_content_key(value: str | None) -> bool:
    return bool(value) and _KEY_PATTERN.fullmatch(value) is not None


def composite_key(key: str, ruleset_version: str) -> CompositeKey:
    return CompositeKey(key, str(ruleset_version))


def shard_index(key: str, shards: int) -> int:
    """Pick a shard for *key*; stable across processes."""

    if shards <= 1:
        return 0
    return int(key[:8], 16) % shards
