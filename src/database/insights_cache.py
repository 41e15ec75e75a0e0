"""
Insights Cache - in-process TTL cache dla insightów AI.

- Klucz: CacheKey (metric, start_date, end_date, granularity)
- Wpis: CacheEntry (payload, created_at, ttl), nadpisywany w całości przy set()
- Wygaszanie leniwe: wygasły wpis usuwany przy get()/has(), bez sweepera
- Thread-safe: mutacje mapy pod threading.Lock
- Brak persystencji (restart procesu = pusty cache)
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union, Any

from src.insights.models import CacheKey, InsightPayload, Metric
from src.utils.logger import get_logger

LOGGER = get_logger("insights_cache")

DEFAULT_TTL = 5 * 60  # seconds


@dataclass(frozen=True)
class CacheEntry:
    data: InsightPayload
    created_at: float
    ttl: float


class InsightsCache:
    """Cache insightów z TTL per wpis."""

    def __init__(self, default_ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = float(default_ttl)
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at > entry.ttl

    def _live_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        """Zwraca żywy wpis albo usuwa wygasły. Wołać pod lockiem."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._entries[key]
            LOGGER.debug(f"Cache EXPIRED: {key.fingerprint}")
            return None
        return entry

    def get(self, key: CacheKey) -> Optional[InsightPayload]:
        """Payload dla klucza albo None (brak lub wygasł)."""
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self._misses += 1
                LOGGER.debug(f"Cache MISS: {key.fingerprint}")
                return None
            self._hits += 1
        LOGGER.debug(f"Cache HIT: {key.fingerprint}")
        return entry.data

    def set(self, key: CacheKey, payload: InsightPayload, ttl: Optional[float] = None) -> None:
        """Bezwarunkowo nadpisuje wpis; TTL liczony od teraz."""
        entry = CacheEntry(
            data=payload,
            created_at=self._clock(),
            ttl=self.default_ttl if ttl is None else float(ttl),
        )
        with self._lock:
            self._entries[key] = entry
        LOGGER.debug(f"Cache SET: {key.fingerprint} (ttl={entry.ttl:.0f}s)")

    def has(self, key: CacheKey) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_by_metric(self, metric: Union[str, Metric]) -> None:
        """Usuwa wszystkie wpisy danej metryki (każdy zakres i granulacja)."""
        target = Metric.parse(metric)
        with self._lock:
            doomed = [k for k in self._entries if k.metric == target]
            for k in doomed:
                del self._entries[k]
        LOGGER.info(f"Invalidated {len(doomed)} cached insight(s) for metric '{target.value}'")

    def invalidate_by_date_range(self, start_date: str, end_date: str) -> None:
        """Usuwa wszystkie wpisy dla zakresu dat (każda metryka i granulacja)."""
        with self._lock:
            doomed = [k for k in self._entries if k.start_date == start_date and k.end_date == end_date]
            for k in doomed:
                del self._entries[k]
        LOGGER.info(f"Invalidated {len(doomed)} cached insight(s) for {start_date}..{end_date}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        LOGGER.info("Insights cache cleared")

    def size(self) -> int:
        """Liczba wpisów w mapie (również jeszcze nie usuniętych wygasłych)."""
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "default_ttl": self.default_ttl,
                "hits": self._hits,
                "misses": self._misses,
            }
