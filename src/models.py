"""Shared Pydantic data models for hookgate."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

_FULL_MASK = 0xFFFFFFFF


def _int_to_dotted(value: int) -> str:
    return ".".join(str((value >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def _prefix_mask(prefix_len: int) -> int:
    if prefix_len == 0:
        return 0
    return (_FULL_MASK << (32 - prefix_len)) & _FULL_MASK


# --- Enums ---


class Verdict(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class AdmissionReason(str, Enum):
    TRUSTED = "trusted"
    WITHIN_LIMIT = "within_limit"
    LIMITED = "limited"
    DEGRADED = "degraded"


class BootstrapFailurePolicy(str, Enum):
    ABORT = "abort"
    EMPTY = "empty"
    DISABLE = "disable"


# --- Network Models ---


class CIDRBlock(BaseModel):
    """An IPv4 network prefix. The base is masked to the prefix on construction."""

    model_config = ConfigDict(frozen=True)

    base: int = Field(ge=0, le=_FULL_MASK)
    prefix_len: int = Field(ge=0, le=32)

    @model_validator(mode="before")
    @classmethod
    def _mask_base(cls, data: Any) -> Any:
        if isinstance(data, dict):
            base, prefix_len = data.get("base"), data.get("prefix_len")
            if (
                isinstance(base, int) and isinstance(prefix_len, int)
                and 0 <= base <= _FULL_MASK and 0 <= prefix_len <= 32
            ):
                data = {**data, "base": base & _prefix_mask(prefix_len)}
        return data

    @property
    def mask(self) -> int:
        return _prefix_mask(self.prefix_len)

    def contains(self, address: int) -> bool:
        return (address & self.mask) == self.base

    def __str__(self) -> str:
        return f"{_int_to_dotted(self.base)}/{self.prefix_len}"


# --- Counter Models ---


class CounterResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = Field(ge=0)
    exceeded: bool
    reset_after: float | None = None  # seconds until the window expires


class AdmissionDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    reason: AdmissionReason
    client_ip: str
    count: int | None = None

    @property
    def allowed(self) -> bool:
        return self.verdict == Verdict.ALLOW
