#!/usr/bin/env python3
"""
acl_fields.py - Decoders that turn command-line text into ACL match values.

Every decoder takes the raw text plus a human readable field description
(used in error messages) and either returns a typed value or raises
ParseError.
"""

from __future__ import annotations

import ipaddress
import re
import struct
from typing import Callable, List, Optional, Tuple

U8_MAX = 0xFF
U16_MAX = 0xFFFF
U32_MAX = 0xFFFFFFFF

MAC_LEN = 6
ZERO_MAC = bytes(MAC_LEN)
EXACT_MAC_MASK = b"\xff" * MAC_LEN

IPV4_EXACT_MASK = U32_MAX
IPV6_EXACT_MASK = (1 << 128) - 1

_UINT_RE = re.compile(r"^(0[xX][0-9a-fA-F]+|[0-9]+)$")


class ParseError(ValueError):
    """Malformed or out-of-range text for a single field."""

    def __init__(self, field: str, text: Optional[str], reason: str = "") -> None:
        self.field = field
        self.text = text
        self.reason = reason
        msg = f'Invalid {field} "{text}"'
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Integers
# ---------------------------------------------------------------------------

def parse_uint(text: str, field: str, maximum: int = U32_MAX) -> int:
    """Parse a decimal or 0x-prefixed hex unsigned integer no larger than maximum."""
    if text is None:
        raise ParseError(field, text)
    s = text.strip()
    if not _UINT_RE.match(s):
        raise ParseError(field, text)
    value = int(s, 16) if s[:2].lower() == "0x" else int(s, 10)
    if value > maximum:
        raise ParseError(field, text, f"maximum is {maximum}")
    return value


def parse_below(text: str, field: str, limit: int) -> int:
    """Like parse_uint, but the value must be strictly less than limit."""
    return parse_uint(text, field, limit - 1)


def parse_interface(text: str, field: str = "interface number") -> Tuple[int, int]:
    """
    Return (port, mask) for an ingress interface.

    'all' matches every port: (0, 0). Anything else is an exact match.
    """
    if text is not None and text.strip().lower() == "all":
        return 0, 0
    return parse_uint(text, field), U32_MAX


# ---------------------------------------------------------------------------
# MAC addresses
# ---------------------------------------------------------------------------

_HEX2 = r"([0-9a-fA-F]{1,2})"
_HEX4 = r"([0-9a-fA-F]{1,4})"
_MAC_COLON_RE = re.compile(r"^\s*" + ":".join([_HEX2] * 6) + r"\s*$")
_MAC_DASH_RE = re.compile(r"^\s*" + "-".join([_HEX2] * 6) + r"\s*$")
_MAC_DOT_RE = re.compile(r"^\s*" + r"\.".join([_HEX4] * 3) + r"\s*$")


def _mac_from_octets(regex: re.Pattern) -> Callable[[str], Optional[bytes]]:
    def _parse(text: str) -> Optional[bytes]:
        m = regex.match(text)
        if m is None:
            return None
        return bytes(int(g, 16) for g in m.groups())
    return _parse


def _mac_from_groups(text: str) -> Optional[bytes]:
    # Cisco style xxxx.xxxx.xxxx, each 16-bit group in network byte order
    m = _MAC_DOT_RE.match(text)
    if m is None:
        return None
    return struct.pack("!3H", *(int(g, 16) for g in m.groups()))


MAC_PARSERS: List[Callable[[str], Optional[bytes]]] = [
    _mac_from_octets(_MAC_COLON_RE),
    _mac_from_octets(_MAC_DASH_RE),
    _mac_from_groups,
]


def parse_mac(text: str, field: str = "MAC address") -> bytes:
    """
    Accept 01:02:03:04:05:06, 01-02-03-04-05-06 or 0102.0304.0506.

    The layouts are tried in that order; the first one that matches wins.
    """
    if text is not None:
        for parser in MAC_PARSERS:
            mac = parser(text)
            if mac is not None:
                return mac
    raise ParseError(field, text)


def increment_mac(mac: bytes) -> bytes:
    """
    Return the address following mac, treating its 6 bytes as a big-endian
    counter. ff:ff:ff:ff:ff:ff wraps to 00:00:00:00:00:00.
    """
    out = bytearray(mac)
    for i in range(len(out) - 1, -1, -1):
        out[i] = (out[i] + 1) & 0xFF
        if out[i] != 0:
            break
    return bytes(out)


def format_mac(mac: bytes) -> str:
    return ":".join(f"{b:02x}" for b in mac)


def format_mac_dotted(mac: bytes) -> str:
    return ".".join(mac[i:i + 2].hex() for i in range(0, len(mac), 2))


# ---------------------------------------------------------------------------
# IP addresses and prefixes
# ---------------------------------------------------------------------------

def parse_ipv4(text: str, field: str = "IPv4 address") -> int:
    """Dotted quad first, then a raw 32-bit integer literal. Host-order int."""
    if text is None:
        raise ParseError(field, text)
    try:
        return int(ipaddress.IPv4Address(text.strip()))
    except ValueError:
        pass
    return parse_uint(text, field, U32_MAX)


def parse_ipv6(text: str, field: str = "IPv6 address") -> int:
    if text is None:
        raise ParseError(field, text)
    try:
        return int(ipaddress.IPv6Address(text.strip()))
    except ValueError:
        raise ParseError(field, text) from None


def ipv4_prefix_mask(prefix: int) -> int:
    """Top `prefix` bits set of a 32-bit mask. 0 gives 0, 32 gives 0xFFFFFFFF."""
    if not 0 <= prefix <= 32:
        raise ValueError(f"IPv4 prefix length out of range: {prefix}")
    if prefix == 0:
        return 0
    return (U32_MAX << (32 - prefix)) & U32_MAX


def ipv6_prefix_mask(prefix: int) -> int:
    """
    128-bit mask for an IPv6 prefix length, built as four 32-bit words.

    Words fully covered by the prefix are all ones, the word holding the
    boundary gets a partial top-aligned mask and the remaining words are zero.
    """
    if not 0 <= prefix <= 128:
        raise ValueError(f"IPv6 prefix length out of range: {prefix}")
    words = [ipv4_prefix_mask(min(max(prefix - 32 * i, 0), 32)) for i in range(4)]
    return int.from_bytes(struct.pack("!4I", *words), "big")


def parse_ipv4_prefix(text: str, field: str = "IPv4 prefix length") -> int:
    return ipv4_prefix_mask(parse_uint(text, field, 32))


def parse_ipv6_prefix(text: str, field: str = "IPv6 prefix length") -> int:
    return ipv6_prefix_mask(parse_uint(text, field, 128))


def format_ipv4(value: int) -> str:
    return str(ipaddress.IPv4Address(value & U32_MAX))


def format_ipv6(value: int) -> str:
    return str(ipaddress.IPv6Address(value & IPV6_EXACT_MASK))
