"""IPv4 CIDR matching used to let trusted upstream traffic skip rate limiting."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable

from src.models import CIDRBlock
from src.ratelimit.errors import MalformedClientAddressError, MalformedRangeError


def parse_ipv4(value: str) -> int:
    """Parse a dotted-decimal IPv4 address into a 32-bit integer.

    IPv4-mapped IPv6 literals (``::ffff:192.0.2.1``), as reported by
    dual-stack listeners, are unwrapped to the embedded IPv4 address.
    """
    text = value.strip()
    try:
        return int(ipaddress.IPv4Address(text))
    except ValueError:
        pass
    try:
        mapped = ipaddress.IPv6Address(text).ipv4_mapped
    except ValueError:
        mapped = None
    if mapped is None:
        raise MalformedClientAddressError(value)
    return int(mapped)


def parse_cidr(value: str) -> CIDRBlock:
    """Parse ``a.b.c.d/n`` into a CIDRBlock. A bare address is a /32."""
    text = value.strip()
    address, slash, prefix = text.partition("/")
    try:
        base = int(ipaddress.IPv4Address(address))
    except ValueError:
        raise MalformedRangeError(value) from None
    if not slash:
        return CIDRBlock(base=base, prefix_len=32)
    if not (prefix.isascii() and prefix.isdigit()) or int(prefix) > 32:
        raise MalformedRangeError(value)
    return CIDRBlock(base=base, prefix_len=int(prefix))


def is_trusted(ip: str, ranges: Iterable[CIDRBlock]) -> bool:
    """Return True if ``ip`` falls inside any of ``ranges``.

    Never raises: an unparseable address is untrusted.
    """
    try:
        address = parse_ipv4(ip)
    except MalformedClientAddressError:
        return False
    return any(block.contains(address) for block in ranges)
