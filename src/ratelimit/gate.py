"""Admission gate: trusted-range bypass in front of a shared request counter."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from src.models import AdmissionDecision, AdmissionReason, CIDRBlock, Verdict
from src.observe.metrics import RATE_LIMIT_DEGRADED, RATE_LIMITED, MetricsSink, get_metrics
from src.ratelimit.cidr import is_trusted
from src.ratelimit.errors import StoreUnavailableError
from src.ratelimit.store import CounterStore

logger = logging.getLogger(__name__)


class AdmissionGate:
    """Decides per client address whether a request may proceed.

    Addresses inside the trusted ranges always pass without touching the
    counter. Everyone else is counted per fixed window; when the shared
    store is unavailable the request is allowed (fail-open).
    """

    def __init__(
        self,
        trusted_ranges: Iterable[CIDRBlock],
        store: CounterStore,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        store_timeout: float = 0.5,
        metrics: MetricsSink | None = None,
    ) -> None:
        self._trusted_ranges = tuple(trusted_ranges)
        self._store = store
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._store_timeout = store_timeout
        self._metrics = metrics if metrics is not None else get_metrics()

    @property
    def trusted_ranges(self) -> tuple[CIDRBlock, ...]:
        return self._trusted_ranges

    @property
    def store(self) -> CounterStore:
        return self._store

    async def admit(self, client_ip: str) -> Verdict:
        return (await self.evaluate(client_ip)).verdict

    async def evaluate(self, client_ip: str) -> AdmissionDecision:
        if is_trusted(client_ip, self._trusted_ranges):
            return AdmissionDecision(
                verdict=Verdict.ALLOW, reason=AdmissionReason.TRUSTED, client_ip=client_ip,
            )

        try:
            result = await self._store.increment_and_check(
                client_ip, self._max_requests, self._window_seconds, self._store_timeout,
            )
        except StoreUnavailableError as exc:
            logger.warning("Rate limiter degraded, allowing %s: %s", client_ip, exc)
            self._metrics.increment(RATE_LIMIT_DEGRADED)
            return AdmissionDecision(
                verdict=Verdict.ALLOW, reason=AdmissionReason.DEGRADED, client_ip=client_ip,
            )

        if result.exceeded:
            # Path is left out of the metric; scanners generate too many of them.
            self._metrics.increment(RATE_LIMITED)
            return AdmissionDecision(
                verdict=Verdict.DENY,
                reason=AdmissionReason.LIMITED,
                client_ip=client_ip,
                count=result.count,
            )
        return AdmissionDecision(
            verdict=Verdict.ALLOW,
            reason=AdmissionReason.WITHIN_LIMIT,
            client_ip=client_ip,
            count=result.count,
        )
