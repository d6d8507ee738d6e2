"""Banned network entries and prefix helpers."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

# Row identifier for entries that come from the settings and were never read
# from a device.
CONFIG_ROW_ID = ".cfg"


class AddressFamily(str, Enum):
    """Address-list namespace on the device."""

    IPV4 = "ip"
    IPV6 = "ipv6"


def family_of(network: IPNetwork) -> AddressFamily:
    return AddressFamily.IPV4 if network.version == 4 else AddressFamily.IPV6


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class BlackIP:
    """
    A single banned prefix.

    ``expires_at`` is None for permanent entries. ``row_id`` is the handle
    the device assigned to the entry, or CONFIG_ROW_ID for entries taken
    from the settings.
    """

    network: IPNetwork
    expires_at: Optional[datetime] = None
    row_id: str = CONFIG_ROW_ID

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    @property
    def family(self) -> AddressFamily:
        return family_of(self.network)

    def covers(self, candidate: IPNetwork) -> bool:
        return candidate.network_address in self.network

    def __str__(self) -> str:
        expiry = self.expires_at.isoformat() if self.expires_at else "permanent"
        return f"{{{self.network}, {expiry!r}, {self.row_id!r}}}"


def expiry_sort_key(entry: BlackIP) -> tuple[bool, datetime]:
    # Permanent entries sort before everything else.
    if entry.expires_at is None:
        return (False, datetime.min.replace(tzinfo=timezone.utc))
    return (True, entry.expires_at)


def any_covers(entries: Iterable[BlackIP], candidate: IPNetwork) -> Optional[BlackIP]:
    """Return the first entry whose network contains the candidate, if any."""
    for entry in entries:
        if entry.covers(candidate):
            return entry
    return None


def parse_cidr(value: str, verbose: bool = False) -> Optional[IPNetwork]:
    """
    Parse ``a.b.c.d``, ``a.b.c.d/n`` or their IPv6 equivalents.

    A bare address becomes a host prefix. Host bits are masked off, so
    ``192.168.10.5/24`` yields ``192.168.10.0/24``. Returns None for
    anything that is not a valid address or prefix length.
    """
    text = (value or "").strip()
    if not text:
        return None

    addr, sep, length = text.partition("/")
    try:
        ip = ipaddress.ip_address(addr)
    except ValueError:
        return None

    if not sep:
        return ipaddress.ip_network(str(ip))

    if not (length.isascii() and length.isdigit()) or int(length) > ip.max_prefixlen:
        return None

    network = ipaddress.ip_network(f"{ip}/{int(length)}", strict=False)
    if verbose and network.network_address != ip:
        logger.warning("prefix/ip %s has hostbits set", text)
    return network
