"""Tests for the admission gate: trusted bypass, limiting and fail-open."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models import AdmissionReason, CIDRBlock, Verdict
from src.observe.metrics import RATE_LIMIT_DEGRADED, RATE_LIMITED, MetricsCollector
from src.ratelimit.cidr import parse_cidr
from src.ratelimit.errors import StoreUnavailableError
from src.ratelimit.gate import AdmissionGate
from src.ratelimit.store import CounterStore, InMemoryCounterStore
from tests.conftest import SlowCounterStore

UNTRUSTED_IP = "203.0.113.9"


def _gate(
    store: CounterStore,
    metrics: MetricsCollector,
    ranges: tuple[CIDRBlock, ...] = (),
    max_requests: int = 100,
    store_timeout: float = 0.5,
) -> AdmissionGate:
    return AdmissionGate(
        ranges,
        store,
        max_requests=max_requests,
        window_seconds=60,
        store_timeout=store_timeout,
        metrics=metrics,
    )


class TestTrustedBypass:
    @pytest.mark.asyncio
    async def test_trusted_ip_allowed_even_when_counter_exceeded(
        self, memory_store: InMemoryCounterStore, metrics: MetricsCollector,
    ) -> None:
        for _ in range(101):
            await memory_store.increment_and_check("192.30.252.1", limit=100, window=60, timeout=1)
        gate = _gate(memory_store, metrics, ranges=(parse_cidr("192.30.252.0/22"),))

        assert await gate.admit("192.30.252.1") == Verdict.ALLOW
        decision = await gate.evaluate("192.30.252.1")
        assert decision.reason == AdmissionReason.TRUSTED
        assert metrics.get(RATE_LIMITED) == 0

    @pytest.mark.asyncio
    async def test_trusted_ip_never_touches_store(self, metrics: MetricsCollector) -> None:
        store = MagicMock(spec=CounterStore)
        store.increment_and_check = AsyncMock()
        gate = _gate(store, metrics, ranges=(parse_cidr("140.82.112.0/20"),))

        for _ in range(5):
            assert await gate.admit("140.82.115.4") == Verdict.ALLOW
        store.increment_and_check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_trusted_set_limits_everyone(
        self, memory_store: InMemoryCounterStore, metrics: MetricsCollector,
    ) -> None:
        gate = _gate(memory_store, metrics, max_requests=1)
        assert await gate.admit("192.30.252.1") == Verdict.ALLOW
        assert await gate.admit("192.30.252.1") == Verdict.DENY


class TestLimiting:
    @pytest.mark.asyncio
    async def test_request_over_limit_denied_once(
        self,
        memory_store: InMemoryCounterStore,
        metrics: MetricsCollector,
        github_ranges: tuple[CIDRBlock, ...],
    ) -> None:
        gate = _gate(memory_store, metrics, ranges=github_ranges)

        verdicts = [await gate.admit(UNTRUSTED_IP) for _ in range(101)]

        assert verdicts[:100] == [Verdict.ALLOW] * 100
        assert verdicts[100] == Verdict.DENY
        assert metrics.get(RATE_LIMITED) == 1
        assert metrics.get(RATE_LIMIT_DEGRADED) == 0

    @pytest.mark.asyncio
    async def test_decision_carries_count(
        self, memory_store: InMemoryCounterStore, metrics: MetricsCollector,
    ) -> None:
        gate = _gate(memory_store, metrics, max_requests=2)
        first = await gate.evaluate(UNTRUSTED_IP)
        await gate.evaluate(UNTRUSTED_IP)
        third = await gate.evaluate(UNTRUSTED_IP)
        assert (first.reason, first.count) == (AdmissionReason.WITHIN_LIMIT, 1)
        assert (third.reason, third.count) == (AdmissionReason.LIMITED, 3)

    @pytest.mark.asyncio
    async def test_every_denied_request_counted(
        self, memory_store: InMemoryCounterStore, metrics: MetricsCollector,
    ) -> None:
        gate = _gate(memory_store, metrics, max_requests=1)
        for _ in range(4):
            await gate.admit(UNTRUSTED_IP)
        assert metrics.get(RATE_LIMITED) == 3

    @pytest.mark.asyncio
    async def test_clients_limited_independently(
        self, memory_store: InMemoryCounterStore, metrics: MetricsCollector,
    ) -> None:
        gate = _gate(memory_store, metrics, max_requests=1)
        assert await gate.admit("198.51.100.1") == Verdict.ALLOW
        assert await gate.admit("198.51.100.2") == Verdict.ALLOW
        assert await gate.admit("198.51.100.1") == Verdict.DENY

    @pytest.mark.asyncio
    async def test_malformed_address_counted_by_raw_key(
        self, memory_store: InMemoryCounterStore, metrics: MetricsCollector,
    ) -> None:
        everything = (parse_cidr("0.0.0.0/0"),)
        gate = _gate(memory_store, metrics, ranges=everything, max_requests=1)
        assert await gate.admit("not-an-ip") == Verdict.ALLOW
        assert await gate.admit("not-an-ip") == Verdict.DENY
        assert memory_store._windows["not-an-ip"][0] == 2


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_store_timeout_allows_with_degraded_signal(
        self, metrics: MetricsCollector,
    ) -> None:
        store = SlowCounterStore(delay=0.2)
        gate = _gate(store, metrics, max_requests=0, store_timeout=0.01)

        decision = await gate.evaluate(UNTRUSTED_IP)

        assert decision.verdict == Verdict.ALLOW
        assert decision.reason == AdmissionReason.DEGRADED
        assert metrics.get(RATE_LIMIT_DEGRADED) == 1
        assert metrics.get(RATE_LIMITED) == 0
        await store.aclose()

    @pytest.mark.asyncio
    async def test_store_error_allows(self, metrics: MetricsCollector) -> None:
        store = MagicMock(spec=CounterStore)
        store.increment_and_check = AsyncMock(side_effect=StoreUnavailableError("down"))
        gate = _gate(store, metrics)

        assert await gate.admit(UNTRUSTED_IP) == Verdict.ALLOW
        assert metrics.get(RATE_LIMIT_DEGRADED) == 1

    @pytest.mark.asyncio
    async def test_degraded_allow_logged(
        self, metrics: MetricsCollector, caplog: pytest.LogCaptureFixture,
    ) -> None:
        store = MagicMock(spec=CounterStore)
        store.increment_and_check = AsyncMock(side_effect=StoreUnavailableError("down"))
        gate = _gate(store, metrics)

        with caplog.at_level("WARNING", logger="src.ratelimit.gate"):
            await gate.admit(UNTRUSTED_IP)
        assert "degraded" in caplog.text

    @pytest.mark.asyncio
    async def test_store_called_with_configured_limits(self, metrics: MetricsCollector) -> None:
        store = MagicMock(spec=CounterStore)
        store.increment_and_check = AsyncMock(side_effect=StoreUnavailableError("down"))
        gate = AdmissionGate(
            (), store, max_requests=7, window_seconds=30, store_timeout=0.25, metrics=metrics,
        )
        await gate.admit(UNTRUSTED_IP)
        store.increment_and_check.assert_awaited_once_with(UNTRUSTED_IP, 7, 30, 0.25)


def test_defaults_use_process_metrics(memory_store: InMemoryCounterStore) -> None:
    from src.observe.metrics import get_metrics

    gate = AdmissionGate((), memory_store)
    assert gate._metrics is get_metrics()
    assert gate._max_requests == 100
    assert gate.trusted_ranges == ()
    assert gate.store is memory_store
