# src/kcal/resilience/cache.py
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Generic, Hashable, List, Optional, TypeVar

from pydantic import BaseModel

from kcal.core.config import CacheConfig

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_cache_key(kind: str, year: int, month: int, day: int, is_leap_month: bool = False) -> str:
    """
    Composite key for calendar lookups.

    >>> make_cache_key("solar", 2024, 1, 1)
    'solar_2024_1_1'
    >>> make_cache_key("lunar", 2024, 1, 1, True)
    'lunar_2024_1_1_leap'
    """
    key = f"{kind}_{int(year)}_{int(month)}_{int(day)}"
    return f"{key}_leap" if is_leap_month else key


@dataclass
class CacheEntry(Generic[K, V]):
    key: K
    value: V
    inserted_at: datetime
    expires_at: datetime
    hits: int = 0

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


class CacheStats(BaseModel):
    size: int
    capacity: int
    hits: int
    misses: int
    hit_rate: float
    oldest_inserted_at: Optional[datetime] = None
    newest_inserted_at: Optional[datetime] = None


class TieredCache(Generic[K, V]):
    """
    Capacity-bounded LRU map with per-entry TTL.

    - get() on a live entry refreshes its recency; an expired entry counts as
      a miss and is dropped.
    - set() purges expired entries first, then evicts least-recently-used
      entries until the new one fits.
    All mutation happens under one RLock.
    """

    def __init__(self, config: CacheConfig = CacheConfig(), *, name: str = "cache", clock: Clock = utcnow) -> None:
        self.config = config
        self.name = name
        self._clock = clock
        self._ttl = timedelta(seconds=config.ttl_seconds)
        self._entries: "OrderedDict[K, CacheEntry[K, V]]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    @property
    def capacity(self) -> int:
        return self.config.capacity

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                log.debug("%s miss key=%s", self.name, key)
                return None
            if not entry.is_live(self._clock()):
                del self._entries[key]
                self._misses += 1
                log.debug("%s expired key=%s", self.name, key)
                return None
            entry.hits += 1
            self._entries.move_to_end(key)
            self._hits += 1
            log.debug("%s hit key=%s", self.name, key)
            return entry.value

    def set(self, key: K, value: V) -> None:
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            else:
                self._purge_expired(now)
                while len(self._entries) >= self.capacity:
                    evicted, _ = self._entries.popitem(last=False)
                    log.debug("%s evicted key=%s", self.name, evicted)
            self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now, expires_at=now + self._ttl)

    def delete(self, key: K) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def cleanup(self) -> int:
        """Drop expired entries; return how many were removed."""
        with self._lock:
            return self._purge_expired(self._clock())

    def _purge_expired(self, now: datetime) -> int:
        dead: List[K] = [k for k, e in self._entries.items() if not e.is_live(now)]
        for k in dead:
            del self._entries[k]
        return len(dead)

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            inserted = [e.inserted_at for e in self._entries.values()]
            return CacheStats(
                size=len(self._entries),
                capacity=self.capacity,
                hits=self._hits,
                misses=self._misses,
                hit_rate=(self._hits / total) if total else 0.0,
                oldest_inserted_at=min(inserted) if inserted else None,
                newest_inserted_at=max(inserted) if inserted else None,
            )

    def report(self) -> str:
        s = self.stats()
        return (
            f"{self.name}: {s.size}/{s.capacity} entries, "
            f"hits={s.hits} misses={s.misses} hit_rate={s.hit_rate * 100:.1f}%"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and entry.is_live(self._clock())
