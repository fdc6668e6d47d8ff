"""Fixed-window request counters shared across service instances.

Each key holds an integer counter that is created by the first increment
with an expiry equal to the window and is removed only by that expiry.
``RedisCounterStore`` is the production backend; ``InMemoryCounterStore``
gives the same semantics inside a single process.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.models import CounterResult
from src.ratelimit.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "rl:"

# INCR and the expiry of a new key happen in one server-side step. A key
# left without a TTL gets one here too, so it can never count forever.
_INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""

_PRUNE_THRESHOLD = 10_000


class CounterStore(ABC):
    """Atomic increment-with-expiry counter, called once per limited request."""

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[tuple[int, float | None]]] = set()

    async def increment_and_check(
        self,
        key: str,
        limit: int,
        window: float,
        timeout: float,
    ) -> CounterResult:
        """Increment ``key`` and report whether the count is above ``limit``.

        The store call runs in its own task: if the caller times out or is
        cancelled, the increment still completes and its result is dropped.

        Raises StoreUnavailableError when the store fails or does not answer
        within ``timeout`` seconds.
        """
        task = asyncio.ensure_future(self._increment(key, window))
        self._pending.add(task)
        task.add_done_callback(self._forget)
        try:
            count, ttl = await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            raise StoreUnavailableError(
                f"Counter store did not answer within {timeout}s"
            ) from None
        return CounterResult(count=count, exceeded=count > limit, reset_after=ttl)

    def _forget(self, task: asyncio.Task[tuple[int, float | None]]) -> None:
        self._pending.discard(task)
        # Results of abandoned calls are dropped; mark failures as retrieved.
        if not task.cancelled():
            task.exception()

    @abstractmethod
    async def _increment(self, key: str, window: float) -> tuple[int, float | None]:
        """Return the post-increment count and the seconds left in the window."""

    async def aclose(self) -> None:
        """Wait for abandoned increments to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


class RedisCounterStore(CounterStore):
    """Counter store backed by a shared Redis server."""

    def __init__(self, client: Redis, prefix: str = DEFAULT_KEY_PREFIX) -> None:
        super().__init__()
        self._client = client
        self._prefix = prefix
        self._script = client.register_script(_INCREMENT_SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        connection_name: str = "rate-limiter",
        socket_timeout: float = 1.0,
        prefix: str = DEFAULT_KEY_PREFIX,
    ) -> RedisCounterStore:
        client = Redis.from_url(
            url,
            client_name=connection_name,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, prefix=prefix)

    async def _increment(self, key: str, window: float) -> tuple[int, float | None]:
        window_ms = max(1, int(window * 1000))
        try:
            count, ttl_ms = await self._script(
                keys=[f"{self._prefix}{key}"], args=[window_ms],
            )
        except (RedisError, OSError) as exc:
            raise StoreUnavailableError(f"Redis counter store error: {exc}") from exc
        ttl = int(ttl_ms) / 1000 if int(ttl_ms) >= 0 else None
        return int(count), ttl

    async def aclose(self) -> None:
        await super().aclose()
        await self._client.aclose()


class InMemoryCounterStore(CounterStore):
    """Single-process counter store with the same fixed-window semantics."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, float]] = {}

    async def _increment(self, key: str, window: float) -> tuple[int, float | None]:
        now = time.monotonic()
        with self._lock:
            if len(self._windows) > _PRUNE_THRESHOLD:
                self._prune(now)
            count, expires_at = self._windows.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + window
            count += 1
            self._windows[key] = (count, expires_at)
        return count, expires_at - now

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._windows.items() if expires_at <= now]
        for k in expired:
            del self._windows[k]
        logger.debug("Pruned %d expired rate limit windows", len(expired))
