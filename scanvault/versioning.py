"""Process-wide ruleset version held in a single-writer, many-reader cell."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Generic, TypeVar

from .errors import RulesetVersionError
from .text import Messages

T = TypeVar("T")

_NUMERIC = re.compile(r"^[0-9]+$")
_DOTTED = re.compile(r"^v?[0-9]+(?:\.[0-9]+)*$")


def _version_sort_key(value: str) -> tuple:
    clean = value.strip()
    if _NUMERIC.fullmatch(clean):
        return (0, (int(clean),), "")
    if _DOTTED.fullmatch(clean):
        parts = tuple(int(part) for part in clean.lstrip("v").split("."))
        return (0, parts, "")
    return (1, (), clean)


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 comparing two ruleset versions.

    Integer and dotted numeric versions compare numerically ("10" > "9",
    "1.10" > "1.9"); anything else compares as plain text after them.
    """

    left_key = _version_sort_key(left)
    right_key = _version_sort_key(right)
    if left_key == right_key:
        return 0
    return -1 if left_key < right_key else 1


def validate_version(value: object) -> str:
    if value is None:
        raise RulesetVersionError(Messages.ERROR_VERSION_EMPTY)
    clean = str(value).strip()
    if not clean:
        raise RulesetVersionError(Messages.ERROR_VERSION_EMPTY)
    return clean


@dataclass(frozen=True, slots=True)
class VersionSnapshot(Generic[T]):
    version: str
    payload: T
    loaded_at: datetime


class VersionCell(Generic[T]):
    """Holds the active version together with whatever it versions.

    Readers get one immutable snapshot reference, so they never observe a
    version paired with the wrong payload. Writers serialize on a lock.
    """

    def __init__(self, version: str, payload: T) -> None:
        self._snapshot: VersionSnapshot[T] = VersionSnapshot(
            validate_version(version),
            payload,
            datetime.now(timezone.utc),
        )
        self._write_lock = Lock()

    def read(self) -> VersionSnapshot[T]:
        return self._snapshot

    @property
    def version(self) -> str:
        return self._snapshot.version

    def swap(
        self,
        version: str,
        payload: T,
        *,
        allow_downgrade: bool = False,
    ) -> VersionSnapshot[T]:
        """Install *version*/*payload* atomically and return the previous snapshot."""

        clean = validate_version(version)
        with self._write_lock:
            previous = self._snapshot
            if not allow_downgrade and compare_versions(clean, previous.version) <= 0:
                raise RulesetVersionError(
                    Messages.ERROR_VERSION_NOT_NEWER.format(
                        new=clean, current=previous.version
                    )
                )
            self._snapshot = VersionSnapshot(clean, payload, datetime.now(timezone.utc))
            return previous
