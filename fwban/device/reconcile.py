"""
Connect-time reconciliation of configured policy with the device banlist.

The whitelist and permanent blacklist from the settings (optionally extended
with other address-lists on the device, written as ``@listname``) are merged
with what the device currently holds in the managed list:

- whitelisted entries are deleted from the device,
- permanent entries must literally be on the blacklist, others are deleted,
- dynamic entries shadowing a blacklist prefix are deleted and re-added as
  permanent entries,
- all other dynamic entries are kept and become the dynlist,
- blacklist prefixes missing from the device are added as permanent entries.

Any remote failure propagates; the caller must not continue with the device.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

from fwban.device.client import AddressListRow
from fwban.device.duration import DurationParseError, parse_duration
from fwban.device.dynlist import DynList
from fwban.device.entry import (
    AddressFamily,
    BlackIP,
    expiry_sort_key,
    parse_cidr,
    utcnow,
)
from fwban.device.exceptions import ConfigConflict, ConfigError, MissingField, RemoteError
from fwban.device.policy import BanPolicy

if TYPE_CHECKING:
    from fwban.device.banlist import Device

logger = logging.getLogger(__name__)


def _expiry(device: "Device", list_name: str, row: AddressListRow, now: datetime) -> Optional[datetime]:
    if not row.dynamic:
        logger.debug("%s(%s): static entry, address=%s", device.name, list_name, row.address)
        return None
    if not row.timeout:
        raise MissingField("timeout", f"{device.name}({list_name}): dynamic entry {row.address}")
    try:
        duration = parse_duration(row.timeout)
    except DurationParseError as exc:
        raise RemoteError(
            f"{device.name}({list_name}): unparsable timeout {row.timeout!r} for {row.address}",
            detail=row.timeout,
        ) from exc
    logger.debug(
        "%s(%s): dynamic entry, address=%s, timeout=%s, duration=%s",
        device.name, list_name, row.address, row.timeout, duration,
    )
    return now + duration


async def fetch_address_list(device: "Device", list_name: str) -> list[BlackIP]:
    """Read a named address-list from both namespaces, sorted by expiry."""
    entries: list[BlackIP] = []
    now = utcnow()
    for family in AddressFamily:
        for row in await device.client.query(family, list_name):
            network = parse_cidr(row.address, device.verbose)
            if network is None:
                logger.warning("%s(%s): ignoring unparsable address %r", device.name, list_name, row.address)
                continue
            entries.append(BlackIP(network, _expiry(device, list_name, row, now), row.row_id))

    entries.sort(key=expiry_sort_key)
    logger.debug("%s: fetch_address_list(%s)=%d entries", device.name, list_name, len(entries))
    return entries


async def resolve_prefixes(device: "Device", values: Iterable[str], kind: str) -> tuple[BlackIP, ...]:
    """Turn configured prefixes and ``@listname`` references into permanent entries."""
    entries: list[BlackIP] = []
    for value in values:
        if value.startswith("@"):
            list_name = value[1:]
            if list_name == device.ban_list:
                logger.info("%s: Skipping the managed blacklist %s", device.name, value)
                continue
            imported = await fetch_address_list(device, list_name)
            entries.extend(BlackIP(entry.network, None, entry.row_id) for entry in imported)
            continue

        network = parse_cidr(value, device.verbose)
        if network is None:
            raise ConfigError(f"{device.name}: Unable to parse {kind} prefix/ip {value}")
        entries.append(BlackIP(network))
    return tuple(entries)


async def reconcile_device(device: "Device", whitelist: Iterable[str], blacklist: Iterable[str]) -> None:
    policy = BanPolicy(
        whitelist=await resolve_prefixes(device, whitelist, "whitelist"),
        blacklist=await resolve_prefixes(device, blacklist, "blacklist"),
    )

    blackmap: dict[str, BlackIP] = {str(entry.network): entry for entry in policy.blacklist}
    for entry in policy.whitelist:
        if str(entry.network) in blackmap:
            raise ConfigConflict(device.name, str(entry.network))
    device.policy = policy

    deleted = 0
    dynamic: list[BlackIP] = []
    for entry in await fetch_address_list(device, device.ban_list):
        key = str(entry.network)
        if policy.whitelisted(entry.network):
            logger.info("%s(%s): Deleting whitelisted entry %s", device.name, device.ban_list, key)
            await device.del_ip(entry)
            deleted += 1
            continue

        if entry.is_permanent:
            if key in blackmap:
                del blackmap[key]
            else:
                logger.info("%s: Deleting unwanted permanent blacklist entry %s", device.name, key)
                await device.del_ip(entry)
                deleted += 1
        elif key in blackmap:
            logger.info("%s: Deleting unwanted dynamic blacklist entry %s", device.name, key)
            await device.del_ip(entry)
            deleted += 1
        else:
            dynamic.append(entry)

    for entry in blackmap.values():
        await device.add_ip(entry.network, timedelta(0))

    device.dynlist = DynList(dynamic)
    logger.info(
        "%s: reconciled %s: %d dynamic kept, %d permanent added, %d deleted",
        device.name, device.ban_list, len(dynamic), len(blackmap), deleted,
    )
