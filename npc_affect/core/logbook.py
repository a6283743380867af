"""
Bounded, time-aware append logs.

Prevents unbounded memory growth in long-running services by:
- Limiting the number of entries (oldest dropped on overflow)
- Sweeping entries older than a retention horizon
- Counting drops and sweeps for metrics
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, Generic, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetentionLog(Generic[T]):
    """
    Thread-safe ring buffer with a retention horizon.

    Entries are appended in time order. ``sweep()`` removes every entry
    whose timestamp is older than ``now - retention_ms``.

    Example:
        >>> log = RetentionLog(capacity=3, timestamp_of=lambda e: e["ts"])
        >>> for ts in (1, 2, 3, 4):
        ...     log.append({"ts": ts})
        >>> [e["ts"] for e in log.snapshot()]
        [2, 3, 4]
    """

    def __init__(
        self,
        capacity: int,
        timestamp_of: Callable[[T], int],
        retention_ms: Optional[int] = None,
        name: str = "log",
    ):
        """
        Args:
            capacity: Maximum entries held
            timestamp_of: Extracts an epoch-ms timestamp from an entry
            retention_ms: Horizon for ``sweep()``; None keeps entries until
                capacity evicts them
            name: Name for logging/metrics
        """
        self.capacity = capacity
        self.retention_ms = retention_ms
        self.name = name
        self._timestamp_of = timestamp_of
        self._entries: Deque[T] = deque(maxlen=capacity)
        self._lock = threading.Lock()

        self._append_count = 0
        self._drop_count = 0
        self._swept_count = 0

    def append(self, entry: T) -> None:
        with self._lock:
            if len(self._entries) >= self.capacity:
                self._drop_count += 1
            self._entries.append(entry)
            self._append_count += 1

    def extend(self, entries: Iterable[T]) -> None:
        for entry in entries:
            self.append(entry)

    def snapshot(self, predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        """Oldest-first copy of the entries, optionally filtered."""
        with self._lock:
            entries = list(self._entries)
        if predicate is not None:
            entries = [e for e in entries if predicate(e)]
        return entries

    def since(self, start_ms: int, end_ms: Optional[int] = None) -> List[T]:
        """Entries with ``start_ms <= ts`` (and ``ts <= end_ms`` when given)."""
        def in_range(entry: T) -> bool:
            ts = self._timestamp_of(entry)
            return ts >= start_ms and (end_ms is None or ts <= end_ms)
        return self.snapshot(in_range)

    def sweep(self, now_ms: int) -> int:
        """
        Remove entries older than the retention horizon.

        Returns:
            Number of entries removed
        """
        if self.retention_ms is None:
            return 0
        cutoff = now_ms - self.retention_ms
        with self._lock:
            kept = [e for e in self._entries if self._timestamp_of(e) >= cutoff]
            removed = len(self._entries) - len(kept)
            if removed:
                self._entries = deque(kept, maxlen=self.capacity)
                self._swept_count += removed
        if removed:
            logger.info(f"Swept {removed} entries older than {cutoff} from {self.name}")
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "size": len(self._entries),
                "capacity": self.capacity,
                "appended": self._append_count,
                "dropped": self._drop_count,
                "swept": self._swept_count,
            }
