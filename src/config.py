"""Rate limiter configuration, read from environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from src.models import BootstrapFailurePolicy
from src.ratelimit.bootstrap import DEFAULT_API_URL
from src.ratelimit.credentials import AppCredentials, find_private_key
from src.ratelimit.errors import BootstrapCredentialError


class RateLimitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    max_requests: int = Field(default=100, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    store_timeout: float = Field(default=0.5, gt=0)
    bootstrap_failure: BootstrapFailurePolicy = BootstrapFailurePolicy.ABORT
    exempt_paths: frozenset[str] = frozenset()
    redis_url: str = "redis://127.0.0.1:6379"
    redis_connection_name: str = "rate-limiter"
    github_api_url: str = DEFAULT_API_URL
    app_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = Field(default=None, repr=False)
    # Raw key settings; decoded by app_credentials() during bootstrap
    private_key: str | None = Field(default=None, repr=False)
    private_key_path: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RateLimitConfig:
        """Create a config from environment variables.

        Only ``USE_RATE_LIMITING=true`` enables rate limiting.
        """
        env = os.environ if environ is None else environ
        exempt = env.get("RATE_LIMIT_EXEMPT_PATHS", "")
        values: dict[str, object] = {
            "enabled": env.get("USE_RATE_LIMITING") == "true",
            "exempt_paths": frozenset(p.strip() for p in exempt.split(",") if p.strip()),
            "app_id": env.get("APP_ID") or None,
            "client_id": env.get("GITHUB_CLIENT_ID") or None,
            "client_secret": env.get("GITHUB_CLIENT_SECRET") or None,
            "private_key": env.get("PRIVATE_KEY") or None,
            "private_key_path": env.get("PRIVATE_KEY_PATH") or None,
        }
        optional = {
            "max_requests": "RATE_LIMIT_MAX",
            "window_seconds": "RATE_LIMIT_WINDOW_SECONDS",
            "store_timeout": "RATE_LIMIT_STORE_TIMEOUT",
            "bootstrap_failure": "RATE_LIMIT_BOOTSTRAP_FAILURE",
            "redis_url": "REDIS_URL",
            "github_api_url": "GITHUB_API_URL",
        }
        for field_name, var in optional.items():
            if env.get(var):
                values[field_name] = env[var]
        return cls.model_validate(values)

    def app_credentials(self) -> AppCredentials:
        """Credential material for the trusted range bootstrap.

        Raises BootstrapCredentialError when the app id or key is missing,
        or the key cannot be read or decoded.
        """
        key_settings = {
            "PRIVATE_KEY": self.private_key or "",
            "PRIVATE_KEY_PATH": self.private_key_path or "",
        }
        private_key = find_private_key(key_settings)
        if not self.app_id or not private_key:
            raise BootstrapCredentialError(
                "APP_ID and a private key are required to fetch trusted ranges"
            )
        return AppCredentials(
            app_id=self.app_id,
            private_key=private_key,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
