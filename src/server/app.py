"""FastAPI application wiring for the rate-limited webhook receiver."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI

from src.config import RateLimitConfig
from src.models import BootstrapFailurePolicy, CIDRBlock
from src.observe.metrics import MetricsSink
from src.ratelimit.bootstrap import TrustedRangeBootstrapper
from src.ratelimit.errors import BootstrapError
from src.ratelimit.gate import AdmissionGate
from src.ratelimit.middleware import RateLimitMiddleware
from src.ratelimit.store import CounterStore, RedisCounterStore

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    return create_app(RateLimitConfig.from_env())


async def build_admission_gate(
    config: RateLimitConfig,
    store: CounterStore | None = None,
    metrics: MetricsSink | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AdmissionGate | None:
    """Fetch the trusted ranges and build the gate.

    A failed bootstrap is handled by ``config.bootstrap_failure``: ``abort``
    re-raises, ``empty`` limits every client, ``disable`` returns None.
    """
    trusted: tuple[CIDRBlock, ...]
    try:
        bootstrapper = TrustedRangeBootstrapper(
            config.app_credentials(),
            api_url=config.github_api_url,
            transport=transport,
        )
        trusted = await bootstrapper.fetch_trusted_ranges()
    except BootstrapError as exc:
        logger.error("Trusted range bootstrap failed: %s", exc)
        if config.bootstrap_failure == BootstrapFailurePolicy.ABORT:
            raise
        if config.bootstrap_failure == BootstrapFailurePolicy.DISABLE:
            logger.warning("Rate limiting disabled for this process")
            return None
        logger.warning("Rate limiting all clients; no trusted ranges available")
        trusted = ()

    if store is None:
        store = RedisCounterStore.from_url(
            config.redis_url, connection_name=config.redis_connection_name,
        )
    return AdmissionGate(
        trusted,
        store,
        max_requests=config.max_requests,
        window_seconds=config.window_seconds,
        store_timeout=config.store_timeout,
        metrics=metrics,
    )


def create_app(
    config: RateLimitConfig,
    gate: AdmissionGate | None = None,
    store: CounterStore | None = None,
    metrics: MetricsSink | None = None,
    routers: Sequence[APIRouter] = (),
) -> FastAPI:
    """Create the app with the rate limiter in front of every route.

    When rate limiting is enabled and no gate is given, the gate is built
    during lifespan startup, before the server accepts requests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.admission_gate is None and config.enabled:
            app.state.admission_gate = await build_admission_gate(config, store, metrics)
        try:
            yield
        finally:
            installed: AdmissionGate | None = app.state.admission_gate
            if installed is not None:
                await installed.store.aclose()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.admission_gate = gate

    @app.get("/ping")
    async def ping() -> dict[str, str]:
        return {"status": "ok"}

    for router in routers:
        app.include_router(router)

    app.add_middleware(RateLimitMiddleware, exempt_paths=config.exempt_paths)

    return app
