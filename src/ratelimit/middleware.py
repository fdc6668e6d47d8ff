"""ASGI middleware that applies the admission gate before any route runs."""

from __future__ import annotations

from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from src.models import Verdict
from src.ratelimit.gate import AdmissionGate

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."

# Key used when the server reports no peer address
UNKNOWN_CLIENT = "unknown"


class RateLimitMiddleware:
    """ASGI middleware answering 429 when the admission gate denies a request.

    The gate is taken from the constructor or, when none was given, from
    ``app.state.admission_gate`` so it can be installed during lifespan
    startup. Without a gate every request passes through.
    """

    def __init__(
        self,
        app: ASGIApp,
        gate: AdmissionGate | None = None,
        exempt_paths: frozenset[str] = frozenset(),
    ) -> None:
        self.app = app
        self._gate = gate
        self._exempt_paths = exempt_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self._exempt_paths:
            await self.app(scope, receive, send)
            return

        gate = self._resolve_gate(scope)
        if gate is None:
            await self.app(scope, receive, send)
            return

        if await gate.admit(client_address(scope)) == Verdict.DENY:
            response = PlainTextResponse(RATE_LIMIT_MESSAGE, status_code=429)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)

    def _resolve_gate(self, scope: Scope) -> AdmissionGate | None:
        if self._gate is not None:
            return self._gate
        app = scope.get("app")
        state = getattr(app, "state", None)
        return getattr(state, "admission_gate", None)


def client_address(scope: Scope) -> str:
    """Direct peer address of the connection. Proxy headers are not consulted.

    Connections the server reports without a peer (some unix-socket setups)
    all map to ``UNKNOWN_CLIENT`` and share the single ``rl:unknown``
    counter, so one busy peerless client can exhaust the limit for the rest.
    """
    client = scope.get("client")
    if client and client[0]:
        return str(client[0])
    return UNKNOWN_CLIENT
