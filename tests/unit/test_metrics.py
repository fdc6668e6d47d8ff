"""Tests for the in-process metrics collector."""

from __future__ import annotations

import threading

from src.observe.metrics import MetricsCollector, get_metrics


def test_increment_and_get() -> None:
    metrics = MetricsCollector()
    metrics.increment("http.rate_limited")
    metrics.increment("http.rate_limited", 2)
    assert metrics.get("http.rate_limited") == 3
    assert metrics.get("never.seen") == 0


def test_snapshot_is_a_copy() -> None:
    metrics = MetricsCollector()
    metrics.increment("a")
    snap = metrics.snapshot()
    metrics.increment("a")
    assert snap == {"a": 1}


def test_reset() -> None:
    metrics = MetricsCollector()
    metrics.increment("a")
    metrics.reset()
    assert metrics.snapshot() == {}


def test_thread_safe_increments() -> None:
    metrics = MetricsCollector()

    def worker() -> None:
        for _ in range(1000):
            metrics.increment("hits")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert metrics.get("hits") == 8000


def test_global_collector_is_singleton() -> None:
    assert get_metrics() is get_metrics()
