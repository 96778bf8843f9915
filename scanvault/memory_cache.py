"""In-memory TTL + LRU store for scan entries."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable

from .keys import CompositeKey, shard_index
from .models import ScanEntry

DEFAULT_CAPACITY = 10_000

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CacheStoreStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
        }


class _Shard:
    __slots__ = ("capacity", "entries", "written", "lock", "stats")

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        # insertion order == recency order, oldest first
        self.entries: "OrderedDict[CompositeKey, ScanEntry]" = OrderedDict()
        # write order, oldest first; with one TTL this is also expiry order
        self.written: "OrderedDict[CompositeKey, None]" = OrderedDict()
        self.lock = Lock()
        self.stats = CacheStoreStats()

    def insert(self, composite: CompositeKey, entry: ScanEntry) -> None:
        self.entries.pop(composite, None)
        self.written.pop(composite, None)
        self.entries[composite] = entry
        self.written[composite] = None

    def remove(self, composite: CompositeKey) -> ScanEntry | None:
        self.written.pop(composite, None)
        return self.entries.pop(composite, None)

    def reap_oldest(self, now: datetime) -> int:
        """Drop expired entries from the front of the write order.

        Stops at the first live entry, so the cost is proportional to what
        is removed rather than to the shard size.
        """
        removed = 0
        while self.written:
            composite = next(iter(self.written))
            if not self.entries[composite].is_expired(now):
                break
            self.remove(composite)
            removed += 1
        self.stats.expirations += removed
        return removed

    def evict_lru(self) -> None:
        composite, _ = self.entries.popitem(last=False)
        del self.written[composite]
        self.stats.evictions += 1

    def purge_expired(self, now: datetime) -> int:
        expired = [key for key, entry in self.entries.items() if entry.is_expired(now)]
        for key in expired:
            self.remove(key)
        self.stats.expirations += len(expired)
        return len(expired)


class CacheStore:
    """Bounded store keyed by ``(content key, ruleset version)``.

    Capacity is split across ``shards`` independent LRU shards, each behind
    its own lock, so lookups on keys in different shards never contend. With a
    single shard the LRU order is exact across the whole store.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        shards: int = 1,
        clock: Clock | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if shards < 1:
            raise ValueError("shards must be at least 1")
        shards = min(shards, capacity)
        self.capacity = capacity
        self._clock = clock or utc_now
        base, remainder = divmod(capacity, shards)
        self._shards = [
            _Shard(base + (1 if idx < remainder else 0)) for idx in range(shards)
        ]

    @property
    def shard_count(self) -> int:
        return len(self._shards)

    def _shard_for(self, composite: CompositeKey) -> _Shard:
        return self._shards[shard_index(composite.key, len(self._shards))]

    def get(self, composite: CompositeKey, *, record: bool = True) -> ScanEntry | None:
        """Return the live entry for *composite* and mark it most recently used.

        Hits and misses are counted under the shard lock already held here;
        pass ``record=False`` for a re-check that should not count twice.
        """

        shard = self._shard_for(composite)
        now = self._clock()
        with shard.lock:
            entry = shard.entries.get(composite)
            if entry is not None and entry.is_expired(now):
                shard.remove(composite)
                shard.stats.expirations += 1
                entry = None
            if entry is None:
                if record:
                    shard.stats.misses += 1
                return None
            shard.entries.move_to_end(composite)
            if record:
                shard.stats.hits += 1
            return entry

    def put(self, composite: CompositeKey, entry: ScanEntry) -> None:
        shard = self._shard_for(composite)
        now = self._clock()
        with shard.lock:
            shard.insert(composite, entry)
            if len(shard.entries) <= shard.capacity:
                return
            shard.reap_oldest(now)
            while len(shard.entries) > shard.capacity:
                shard.evict_lru()

    def invalidate(self, composite: CompositeKey) -> bool:
        shard = self._shard_for(composite)
        with shard.lock:
            return shard.remove(composite) is not None

    def clear(self) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                removed += len(shard.entries)
                shard.entries.clear()
                shard.written.clear()
        return removed

    def purge_expired(self) -> int:
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                removed += shard.purge_expired(now)
        return removed

    def live_count(self) -> int:
        now = self._clock()
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += sum(
                    1 for entry in shard.entries.values() if not entry.is_expired(now)
                )
        return total

    def keys(self) -> list[CompositeKey]:
        """Snapshot of stored keys, least recently used first within each shard."""

        snapshot: list[CompositeKey] = []
        for shard in self._shards:
            with shard.lock:
                snapshot.extend(shard.entries.keys())
        return snapshot

    def stats(self) -> CacheStoreStats:
        total = CacheStoreStats()
        for shard in self._shards:
            with shard.lock:
                total.hits += shard.stats.hits
                total.misses += shard.stats.misses
                total.evictions += shard.stats.evictions
                total.expirations += shard.stats.expirations
        return total

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
