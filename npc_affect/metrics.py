"""
In-process metrics for the NPC runtime.

Tracks:
- Latency histograms per pipeline stage and per operation
- Counters (tasks handled, interactions processed, triggers matched)
- Error counts by subsystem
- Exploit detections by pattern
"""
from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class LatencyStats:
    """Statistics for a latency measurement."""
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    # Recent samples for approximate percentiles
    _samples: List[float] = field(default_factory=list)
    _max_samples: int = 1000

    def record(self, ms: float) -> None:
        self.count += 1
        self.total_ms += ms
        self.min_ms = min(self.min_ms, ms)
        self.max_ms = max(self.max_ms, ms)

        self._samples.append(ms)
        if len(self._samples) > self._max_samples:
            self._samples = self._samples[-self._max_samples:]

    @property
    def avg_ms(self) -> float:
        return self.total_ms / max(1, self.count)

    def percentile(self, p: float) -> float:
        """Get percentile (0-100)."""
        if not self._samples:
            return 0.0
        ordered = sorted(self._samples)
        idx = min(int(len(ordered) * p / 100), len(ordered) - 1)
        return ordered[idx]

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self.min_ms, 2) if self.count > 0 else 0,
            "max_ms": round(self.max_ms, 2),
            "p50_ms": round(self.percentile(50), 2),
            "p95_ms": round(self.percentile(95), 2),
            "p99_ms": round(self.percentile(99), 2),
        }


class Counter:
    """Thread-safe counter."""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, n: int = 1) -> int:
        with self._lock:
            self._value += n
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class MetricsCollector:
    """
    Central metrics collection.

    One collector is shared by the emotion engine, the analytics engine and
    the task orchestrator of a runtime.

    Example:
        >>> metrics = MetricsCollector()
        >>> with metrics.time_operation("stage.perceive"):
        ...     observe()
        >>> metrics.increment("tasks.completed")
        >>> metrics.summary()["counters"]["tasks.completed"]
        1
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._start_time = time.time()
        self._latencies: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._errors: Dict[str, Counter] = defaultdict(Counter)
        self._detections: Dict[str, Counter] = defaultdict(Counter)

    def record_latency(self, operation: str, ms: float) -> None:
        with self._lock:
            self._latencies[operation].record(ms)

    def time_operation(self, operation: str) -> "LatencyContext":
        """Context manager for timing an operation (usable inside coroutines)."""
        return LatencyContext(self, operation)

    def increment(self, counter: str, n: int = 1, subsystem: Optional[str] = None) -> int:
        key = f"{subsystem}.{counter}" if subsystem else counter
        with self._lock:
            c = self._counters[key]
        return c.inc(n)

    def record_error(self, subsystem: str, error_type: str = "unknown") -> None:
        with self._lock:
            c = self._errors[f"{subsystem}.{error_type}"]
        c.inc()

    def record_detection(self, pattern: str) -> None:
        with self._lock:
            c = self._detections[pattern]
        c.inc()

    def get_latency_stats(self, operation: str) -> LatencyStats:
        with self._lock:
            return self._latencies[operation]

    def get_counter(self, counter: str) -> int:
        with self._lock:
            c = self._counters.get(counter)
        return c.value if c is not None else 0

    def get_error_count(self, key: str) -> int:
        with self._lock:
            c = self._errors.get(key)
        return c.value if c is not None else 0

    def get_total_errors(self) -> int:
        with self._lock:
            counters = list(self._errors.values())
        return sum(c.value for c in counters)

    def summary(self) -> Dict:
        """Full metrics summary."""
        with self._lock:
            latencies = {op: stats.to_dict() for op, stats in self._latencies.items()}
            counters = {name: c.value for name, c in self._counters.items()}
            errors = {name: c.value for name, c in self._errors.items()}
            detections = {name: c.value for name, c in self._detections.items()}

        return {
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "latencies": latencies,
            "counters": counters,
            "errors": errors,
            "detections": detections,
            "totals": {
                "errors": sum(errors.values()),
                "detections": sum(detections.values()),
            },
        }

    def reset(self) -> None:
        with self._lock:
            self._latencies.clear()
            self._counters.clear()
            self._errors.clear()
            self._detections.clear()
            self._start_time = time.time()


class LatencyContext:
    """Context manager for timing operations."""

    def __init__(self, collector: MetricsCollector, operation: str):
        self.collector = collector
        self.operation = operation
        self.start_time: Optional[float] = None
        self.elapsed_ms: float = 0.0

    def __enter__(self) -> "LatencyContext":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self.start_time is not None:
            self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
            self.collector.record_latency(self.operation, self.elapsed_ms)
