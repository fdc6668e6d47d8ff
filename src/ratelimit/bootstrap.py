"""Trusted range bootstrap: fetch GitHub's webhook CIDRs from the /meta endpoint.

/meta has a very small rate limit for anonymous callers and refuses
app-level (JWT) authentication; it only answers an installation of the app.
So the bootstrapper authenticates as the app, picks its first installation,
exchanges the app JWT for an installation token and queries /meta with that.
It runs once at startup; there is no retry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import httpx

from src.models import CIDRBlock
from src.ratelimit.cidr import parse_cidr
from src.ratelimit.credentials import AppCredentials, create_app_jwt
from src.ratelimit.errors import (
    BootstrapCredentialError,
    BootstrapError,
    MalformedRangeError,
    NoInstallationError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
HOOKS_FIELD = "hooks"

_GITHUB_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}


class TrustedRangeBootstrapper:
    """Fetches the list of CIDRs GitHub delivers webhooks from."""

    def __init__(
        self,
        credentials: AppCredentials,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def fetch_trusted_ranges(self) -> tuple[CIDRBlock, ...]:
        """Run the installation-impersonation chain and return the hook CIDRs.

        Raises BootstrapCredentialError when the app credentials are rejected,
        NoInstallationError when the app is not installed anywhere, and
        BootstrapError for any other failed step.
        """
        app_jwt = create_app_jwt(self._credentials)
        async with self._client(app_jwt) as client:
            installation_id = await self._first_installation(client)
            token = await self._installation_token(client, installation_id)

        async with self._client(token) as client:
            hooks = await self._hook_ranges(client)

        ranges = parse_ranges(hooks)
        logger.info(
            "CIDRs that can skip rate limiting: %s",
            ", ".join(str(block) for block in ranges),
        )
        return ranges

    def _client(self, bearer: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._api_url,
            headers={**_GITHUB_HEADERS, "Authorization": f"Bearer {bearer}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _first_installation(self, client: httpx.AsyncClient) -> int:
        data = await _request_json(
            client, "GET", "/app/installations", "list installations",
            credential_step=True, params={"per_page": 1},
        )
        if not isinstance(data, list):
            raise BootstrapError("list installations returned an unexpected body")
        if not data:
            raise NoInstallationError(
                "The app has no installations; cannot authenticate to /meta"
            )
        try:
            return int(data[0]["id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise BootstrapError("list installations returned an entry without an id") from exc

    async def _installation_token(
        self, client: httpx.AsyncClient, installation_id: int,
    ) -> str:
        data = await _request_json(
            client, "POST", f"/app/installations/{installation_id}/access_tokens",
            "installation token exchange", credential_step=True,
        )
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise BootstrapError("installation token exchange returned no token")
        return token

    async def _hook_ranges(self, client: httpx.AsyncClient) -> list[Any]:
        data = await _request_json(client, "GET", "/meta", "meta lookup")
        hooks = data.get(HOOKS_FIELD) if isinstance(data, dict) else None
        if not isinstance(hooks, list):
            raise BootstrapError(f"meta lookup returned no {HOOKS_FIELD!r} list")
        return hooks


async def _request_json(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    step: str,
    credential_step: bool = False,
    **kwargs: Any,
) -> Any:
    try:
        resp = await client.request(method, path, **kwargs)
    except httpx.HTTPError as exc:
        raise BootstrapError(f"{step} failed: {exc}") from exc

    if credential_step and resp.status_code in (401, 403):
        raise BootstrapCredentialError(
            f"{step} rejected the app credentials (HTTP {resp.status_code})"
        )
    if resp.status_code >= 400:
        raise BootstrapError(f"{step} failed with HTTP {resp.status_code}")

    try:
        return resp.json()
    except ValueError as exc:
        raise BootstrapError(f"{step} returned a non-JSON body") from exc


def parse_ranges(entries: Iterable[Any]) -> tuple[CIDRBlock, ...]:
    """Parse CIDR strings, skipping (and warning about) malformed entries."""
    ranges: list[CIDRBlock] = []
    for entry in entries:
        try:
            if not isinstance(entry, str):
                raise MalformedRangeError(repr(entry))
            ranges.append(parse_cidr(entry))
        except MalformedRangeError as exc:
            logger.warning("Skipping trusted range: %s", exc)
    return tuple(ranges)
