"""In-process metrics counters.

Thread-safe named counters. The rate limiter only needs ``increment``;
anything exposing that method (a statsd client, for instance) can be
passed wherever a ``MetricsSink`` is expected.
"""

from __future__ import annotations

import threading
from typing import Protocol

RATE_LIMITED = "http.rate_limited"
RATE_LIMIT_DEGRADED = "http.rate_limit_degraded"


class MetricsSink(Protocol):
    def increment(self, name: str, value: int = 1) -> None: ...


class MetricsCollector:
    """Thread-safe in-memory counter registry.

    Safe to call from any thread or asyncio task. Use snapshot() to get a
    copy of current values.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def reset(self) -> None:
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


_global_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get or create the process-wide metrics collector."""
    global _global_metrics  # noqa: PLW0603
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics
