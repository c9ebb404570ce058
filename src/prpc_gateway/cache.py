"""
In-memory TTL cache for upstream responses.

Entries expire lazily: an expired entry is dropped when it is read, and a read
past expiry is reported as a miss. The entry count is capped with LRU eviction.
"""

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from .logging import EventType, get_logger
from .metrics import MetricNames, MetricsCollector, get_metrics


class _Miss:
    def __repr__(self):
        return "MISS"

    def __bool__(self):
        return False


# Sentinel for cache misses; None and other falsy JSON values are cacheable
MISS = _Miss()


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float


def make_key(method: str, params: Sequence[Any]) -> str:
    """Cache key: method name followed by canonical JSON of the params."""
    return method + json.dumps(list(params), sort_keys=True, separators=(",", ":"), default=str)


class ResponseCache:
    """Thread-safe TTL cache with an LRU entry cap."""

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._metrics = metrics or get_metrics()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self.logger = get_logger("prpc_gateway.cache")

    make_key = staticmethod(make_key)

    def get(self, key: str) -> Any:
        """Return the cached value, or MISS when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._record_miss(key)
                return MISS

            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._record_miss(key, expired=True)
                return MISS

            self._entries.move_to_end(key)
            self._metrics.increment_counter(MetricNames.CACHE_HITS)
            self.logger.log_cache_event(EventType.CACHE_HIT, key)
            return entry.value

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value under key, replacing any previous entry."""
        ttl = self.ttl_seconds if ttl is None else ttl
        if ttl <= 0:
            return

        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
            self._entries.move_to_end(key)
            self._metrics.increment_counter(MetricNames.CACHE_STORES)
            self.logger.log_cache_event(EventType.CACHE_STORE, key, metadata={"ttl_seconds": ttl})

            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._metrics.increment_counter(MetricNames.CACHE_EVICTIONS)
                self.logger.log_cache_event(EventType.CACHE_EVICT, evicted_key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
            }

    def _record_miss(self, key: str, expired: bool = False):
        self._metrics.increment_counter(MetricNames.CACHE_MISSES)
        self.logger.log_cache_event(EventType.CACHE_MISS, key, metadata={"expired": expired})
