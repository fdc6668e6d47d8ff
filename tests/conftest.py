"""Shared test fixtures for hookgate."""

from __future__ import annotations

import asyncio

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from src.models import CIDRBlock
from src.observe.metrics import MetricsCollector
from src.ratelimit.cidr import parse_cidr
from src.ratelimit.credentials import AppCredentials
from src.ratelimit.store import CounterStore, InMemoryCounterStore

GITHUB_HOOK_RANGES = ["192.30.252.0/22", "185.199.108.0/22", "140.82.112.0/20"]


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    return rsa_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def public_key_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    return rsa_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


@pytest.fixture
def app_credentials(private_key_pem: str) -> AppCredentials:
    return AppCredentials(app_id="12345", private_key=private_key_pem)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def memory_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def github_ranges() -> tuple[CIDRBlock, ...]:
    return tuple(parse_cidr(r) for r in GITHUB_HOOK_RANGES)


class SlowCounterStore(CounterStore):
    """Counter store whose increments take ``delay`` seconds to complete."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.completed = 0

    async def _increment(self, key: str, window: float) -> tuple[int, float | None]:
        await asyncio.sleep(self.delay)
        self.completed += 1
        return self.completed, window
