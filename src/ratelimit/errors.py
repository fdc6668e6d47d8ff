"""Exception taxonomy for the rate-limiting subsystem."""

from __future__ import annotations


class RateLimiterError(Exception):
    """Base class for all rate limiter errors."""


class BootstrapError(RateLimiterError):
    """Fetching the trusted range list from the upstream API failed."""


class BootstrapCredentialError(BootstrapError):
    """Application-level authentication against the upstream API failed."""


class NoInstallationError(BootstrapError):
    """The application has no installations to authenticate as."""


class MalformedRangeError(RateLimiterError, ValueError):
    """A CIDR string could not be parsed as an IPv4 network."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Malformed IPv4 CIDR range: {value!r}")
        self.value = value


class MalformedClientAddressError(RateLimiterError, ValueError):
    """A client address could not be parsed as an IPv4 address."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Malformed client address: {value!r}")
        self.value = value


class StoreUnavailableError(RateLimiterError):
    """The shared counter store could not be reached in time."""
