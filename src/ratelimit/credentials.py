"""GitHub App credential material and app-level JWT signing."""

from __future__ import annotations

import base64
import binascii
import os
import time
from collections.abc import Mapping
from pathlib import Path

from jose import jwt
from jose.exceptions import JOSEError
from pydantic import BaseModel, ConfigDict, Field

from src.ratelimit.errors import BootstrapCredentialError

_PEM_MARKER = "-----BEGIN"

# GitHub rejects app JWTs living longer than 10 minutes; iat is backdated
# to absorb clock drift.
_JWT_BACKDATE_SECONDS = 60
_JWT_LIFETIME_SECONDS = 540


class AppCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_id: str = Field(min_length=1)
    private_key: str = Field(min_length=1, repr=False)
    client_id: str | None = None
    client_secret: str | None = Field(default=None, repr=False)


def find_private_key(environ: Mapping[str, str] | None = None) -> str | None:
    """Locate the app's PEM private key.

    ``PRIVATE_KEY`` may hold the PEM itself, the PEM with literal ``\\n``
    escapes, or the PEM base64-encoded. Otherwise ``PRIVATE_KEY_PATH``
    names a file holding it. Returns None when neither is set.
    """
    env = os.environ if environ is None else environ
    raw = env.get("PRIVATE_KEY", "").strip()
    if raw:
        return _normalize_key(raw)

    path = env.get("PRIVATE_KEY_PATH", "").strip()
    if path:
        try:
            return Path(path).read_text()
        except OSError as exc:
            raise BootstrapCredentialError(
                f"Cannot read private key from {path}"
            ) from exc
    return None


def _normalize_key(raw: str) -> str:
    if _PEM_MARKER in raw:
        return raw.replace("\\n", "\n")
    try:
        decoded = base64.b64decode(raw, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError):
        decoded = ""
    if _PEM_MARKER not in decoded:
        raise BootstrapCredentialError(
            "PRIVATE_KEY is neither a PEM key nor a base64-encoded PEM key"
        )
    return decoded


def create_app_jwt(credentials: AppCredentials, now: float | None = None) -> str:
    """Sign a short-lived RS256 JWT identifying the app itself."""
    issued_at = int(time.time() if now is None else now)
    issuer: int | str = int(credentials.app_id) if credentials.app_id.isdigit() else credentials.app_id
    claims = {
        "iat": issued_at - _JWT_BACKDATE_SECONDS,
        "exp": issued_at + _JWT_LIFETIME_SECONDS,
        "iss": issuer,
    }
    try:
        return jwt.encode(claims, credentials.private_key, algorithm="RS256")
    except (JOSEError, ValueError, TypeError) as exc:
        raise BootstrapCredentialError(
            "Could not sign the app JWT with the configured private key"
        ) from exc
