"""
Metrics Collection for the pRPC Gateway

In-process counters, timers and histograms. Upstream metrics are scoped per
host so operators can see which pRPC node is closest to healthy.
"""

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional


@dataclass
class MetricValue:
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CounterValue(MetricValue):
    count: int = 0


@dataclass
class TimerValue(MetricValue):
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count > 0 else 0.0

    def record(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict:
        return {
            "count": self.count,
            "total_ms": self.total_ms,
            "avg_ms": self.avg_ms,
            "min_ms": self.min_ms if self.min_ms != float("inf") else 0,
            "max_ms": self.max_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class HistogramValue(MetricValue):
    """Histogram over the most recent samples."""

    values: List[float] = field(default_factory=list)
    max_samples: int = 1000

    def add_value(self, value: float):
        self.values.append(value)
        if len(self.values) > self.max_samples:
            self.values.pop(0)

    def get_percentile(self, percentile: float) -> float:
        """Get percentile value (0-100), interpolating between samples."""
        if not self.values:
            return 0.0

        sorted_values = sorted(self.values)
        index = (percentile / 100.0) * (len(sorted_values) - 1)
        lower_index = int(index)
        if index == lower_index:
            return sorted_values[lower_index]

        upper_index = min(lower_index + 1, len(sorted_values) - 1)
        weight = index - lower_index
        return sorted_values[lower_index] * (1 - weight) + sorted_values[upper_index] * weight


class MetricsCollector:
    """Thread-safe metrics collector."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[str, CounterValue] = {}
        self._timers: Dict[str, TimerValue] = {}
        self._histograms: Dict[str, HistogramValue] = {}

        # Per upstream host
        self._host_counters: Dict[str, Dict[str, CounterValue]] = defaultdict(dict)
        self._host_timers: Dict[str, Dict[str, TimerValue]] = defaultdict(dict)

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        host: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ):
        with self._lock:
            key = self._build_key(name, labels)
            counters = self._host_counters[host] if host else self._counters
            counter = counters.setdefault(key, CounterValue())
            counter.count += value
            counter.timestamp = datetime.now(timezone.utc)

    def record_timer(
        self,
        name: str,
        duration_ms: float,
        host: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ):
        with self._lock:
            key = self._build_key(name, labels)
            timers = self._host_timers[host] if host else self._timers
            timers.setdefault(key, TimerValue()).record(duration_ms)

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        with self._lock:
            key = self._build_key(name, labels)
            histogram = self._histograms.setdefault(key, HistogramValue())
            histogram.add_value(value)
            histogram.timestamp = datetime.now(timezone.utc)

    def get_counter(
        self, name: str, host: Optional[str] = None, labels: Optional[Dict[str, str]] = None
    ) -> Optional[CounterValue]:
        with self._lock:
            key = self._build_key(name, labels)
            if host:
                return self._host_counters.get(host, {}).get(key)
            return self._counters.get(key)

    def get_timer(
        self, name: str, host: Optional[str] = None, labels: Optional[Dict[str, str]] = None
    ) -> Optional[TimerValue]:
        with self._lock:
            key = self._build_key(name, labels)
            if host:
                return self._host_timers.get(host, {}).get(key)
            return self._timers.get(key)

    def get_histogram(
        self, name: str, labels: Optional[Dict[str, str]] = None
    ) -> Optional[HistogramValue]:
        with self._lock:
            return self._histograms.get(self._build_key(name, labels))

    def get_all_metrics(self) -> Dict[str, Dict]:
        """Snapshot of every metric as plain JSON-serialisable data."""
        with self._lock:
            hosts = set(self._host_counters) | set(self._host_timers)
            return {
                "counters": {
                    k: {"count": v.count, "timestamp": v.timestamp.isoformat()}
                    for k, v in self._counters.items()
                },
                "timers": {k: v.to_dict() for k, v in self._timers.items()},
                "histograms": {
                    k: {
                        "count": len(v.values),
                        "p50": v.get_percentile(50),
                        "p95": v.get_percentile(95),
                        "p99": v.get_percentile(99),
                        "timestamp": v.timestamp.isoformat(),
                    }
                    for k, v in self._histograms.items()
                },
                "hosts": {
                    host: {
                        "counters": {
                            k: {"count": v.count, "timestamp": v.timestamp.isoformat()}
                            for k, v in self._host_counters.get(host, {}).items()
                        },
                        "timers": {
                            k: v.to_dict() for k, v in self._host_timers.get(host, {}).items()
                        },
                    }
                    for host in sorted(hosts)
                },
            }

    def reset_metrics(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._timers.clear()
            self._histograms.clear()
            self._host_counters.clear()
            self._host_timers.clear()

    def _build_key(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name

        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}[{label_str}]"


class Timer:
    """Context manager for timing operations."""

    def __init__(
        self,
        metrics: MetricsCollector,
        name: str,
        host: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ):
        self.metrics = metrics
        self.name = name
        self.host = host
        self.labels = labels
        self.start_time = None
        self.duration_ms = 0.0

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.duration_ms = (time.monotonic() - self.start_time) * 1000
            self.metrics.record_timer(self.name, self.duration_ms, self.host, self.labels)


# Global metrics collector instance
metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    return metrics


class MetricNames:
    """Common metric names for consistency."""

    # Inbound requests
    REQUESTS_TOTAL = "requests_total"
    REQUEST_DURATION = "request_duration_ms"
    RESPONSE_SIZE = "response_size_bytes"
    REQUEST_ERRORS = "requests_errors_total"

    # Upstream calls
    UPSTREAM_REQUESTS = "upstream_requests_total"
    UPSTREAM_FAILURES = "upstream_failures_total"
    UPSTREAM_DURATION = "upstream_duration_ms"
    FAILOVERS = "failovers_total"
    ALL_HOSTS_FAILED = "all_hosts_failed_total"

    # Cache
    CACHE_HITS = "cache_hits_total"
    CACHE_MISSES = "cache_misses_total"
    CACHE_STORES = "cache_stores_total"
    CACHE_EVICTIONS = "cache_evictions_total"

    # Health / auth
    HEALTH_CHECKS = "health_checks_total"
    HEALTH_CHECK_FAILURES = "health_check_failures_total"
    HEALTH_CHECK_DURATION = "health_check_duration_ms"
    AUTH_FAILURES = "auth_failures_total"
