# src/duplexchat/address.py
"""
Address resolution: human-readable IP literal -> typed NetworkAddress.

Only numeric IPv4 / IPv6 literals are accepted. Hostnames are rejected rather
than looked up, so the socket family is always known before a socket exists.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Tuple, Union

from duplexchat.chat_logging import log_event
from duplexchat.errors import AddressFamilyMismatch, InvalidAddress

_log = logging.getLogger("duplexchat.address")

_PACKED_LEN = {
    socket.AF_INET: 4,
    socket.AF_INET6: 16,
}

SockAddr = Union[Tuple[str, int], Tuple[str, int, int, int]]


@dataclass(frozen=True, slots=True)
class NetworkAddress:
    family: int
    packed: bytes
    port: int

    def __post_init__(self) -> None:
        want = _PACKED_LEN.get(self.family)
        if want is None:
            raise AddressFamilyMismatch(
                f"address family must be AF_INET or AF_INET6, was: {self.family}",
                details={"family": int(self.family)},
            )
        if len(self.packed) != want:
            raise AddressFamilyMismatch(
                f"packed address length {len(self.packed)} does not match family",
                details={"family": int(self.family), "len": len(self.packed)},
            )
        if not 0 <= int(self.port) <= 0xFFFF:
            raise InvalidAddress(f"port out of range: {self.port}")

    @property
    def is_ipv6(self) -> bool:
        return self.family == socket.AF_INET6

    @property
    def family_name(self) -> str:
        return "ipv6" if self.is_ipv6 else "ipv4"

    @property
    def host(self) -> str:
        return socket.inet_ntop(self.family, self.packed)

    def sockaddr(self) -> SockAddr:
        if self.is_ipv6:
            return (self.host, int(self.port), 0, 0)
        return (self.host, int(self.port))

    def display(self) -> str:
        if self.is_ipv6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def _try_pton(family: int, text: str) -> bytes | None:
    try:
        return socket.inet_pton(family, text)
    except (OSError, ValueError):
        return None


def resolve_address(address: str, port: int = 0) -> NetworkAddress:
    """Convert an IP literal into a NetworkAddress, IPv4 first, then IPv6."""
    if not isinstance(address, str):
        raise InvalidAddress(f"{address!r} is not an IPv4 or IPv6 address")

    try:
        port_i = int(port)
    except (TypeError, ValueError) as e:
        raise InvalidAddress(f"port is not an integer: {port!r}") from e
    if not 0 <= port_i <= 0xFFFF:
        raise InvalidAddress(f"port out of range: {port_i}")

    for family in (socket.AF_INET, socket.AF_INET6):
        packed = _try_pton(family, address)
        if packed is not None:
            addr = NetworkAddress(family=family, packed=packed, port=port_i)
            log_event(_log, "address_resolved", address=address, family=addr.family_name)
            return addr

    raise InvalidAddress(f"{address} is not an IPv4 or IPv6 address", details={"address": address})
