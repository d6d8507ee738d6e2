"""All configured devices of one process, kept in sync on a best effort basis."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Iterable, Optional

from fwban.device.banlist import Device
from fwban.device.entry import BlackIP, IPNetwork, utcnow
from fwban.device.exceptions import ConnectionFailure, FwbanError, MissingField

logger = logging.getLogger(__name__)


class Fleet:
    """
    Devices sharing the same stream of offenders.

    A device that fails is taken out of rotation and reported through
    ``health()``; the others keep working.
    """

    def __init__(self, devices: Iterable[Device] = (), failed: Optional[dict[str, str]] = None):
        self.devices: dict[str, Device] = {device.name: device for device in devices}
        self.failed: dict[str, str] = dict(failed or {})

    @classmethod
    async def connect(cls, settings: Any, client_factory: Any = None) -> "Fleet":
        """
        Connect every enabled device concurrently.

        ``client_factory(name, device_settings, settings)`` builds the device
        client; the RouterOS REST client is used when it is not given.
        """
        names: list[str] = []
        pending = []
        for name, device_settings in settings.DEVICES.items():
            if device_settings.disabled:
                logger.info("%s: definition disabled, skipping", name)
                continue
            client = client_factory(name, device_settings, settings) if client_factory else None
            names.append(name)
            pending.append(Device.connect(name, device_settings, settings, client=client))

        results = await asyncio.gather(*pending, return_exceptions=True)

        devices: list[Device] = []
        failed: dict[str, str] = {}
        unexpected: Optional[BaseException] = None
        for name, result in zip(names, results):
            if isinstance(result, FwbanError):
                logger.error("%s: unable to bring up device: %s", name, result)
                failed[name] = str(result)
            elif isinstance(result, BaseException):
                unexpected = unexpected or result
            else:
                devices.append(result)

        if unexpected is not None:
            await asyncio.gather(*(device.close() for device in devices), return_exceptions=True)
            raise unexpected
        if not devices:
            raise ConnectionFailure("no device could be connected")
        return cls(devices, failed)

    def healthy_devices(self) -> list[Device]:
        return [device for device in self.devices.values() if device.healthy]

    async def sync_dynamic(self) -> int:
        """
        Make every device hold at least the union of all dynlists.

        Entries are matched on their canonical prefix; the first device that
        reports a prefix determines its expiry. Returns the number of adds.
        """
        merged: dict[str, BlackIP] = {}
        for device in self.healthy_devices():
            for entry in await device.get_ips():
                merged.setdefault(str(entry.network), entry)

        added = 0
        for device in self.healthy_devices():
            present = {str(entry.network) for entry in await device.get_ips()}
            for key, entry in merged.items():
                if key in present:
                    continue
                remaining = entry.expires_at - utcnow()
                if remaining <= timedelta(seconds=1):
                    continue
                try:
                    await device.add_ip(entry.network, remaining)
                except MissingField as exc:
                    logger.error("%s: unable to sync %s: %s", device.name, key, exc)
                    continue
                except FwbanError as exc:
                    logger.exception("%s: unable to sync %s", device.name, key)
                    device.mark_failed(exc)
                    break
                added += 1
        if added:
            logger.info("Distributed %d missing dynamic entries", added)
        return added

    async def ban(self, network: IPNetwork, duration: timedelta, comment: str = "") -> dict[str, Optional[str]]:
        """Add the network to every healthy device. Maps device name to error text or None."""
        devices = self.healthy_devices()
        results = await asyncio.gather(
            *(device.add_ip(network, duration, comment) for device in devices),
            return_exceptions=True,
        )

        outcome: dict[str, Optional[str]] = {}
        for device, result in zip(devices, results):
            if isinstance(result, MissingField):
                logger.error("%s: AddIP(%s) got an incomplete reply: %s", device.name, network, result)
                outcome[device.name] = str(result)
            elif isinstance(result, FwbanError):
                logger.error("%s: AddIP(%s) failed: %s", device.name, network, result)
                device.mark_failed(result)
                if device.scheduler is not None:
                    await device.scheduler.stop()
                outcome[device.name] = str(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome[device.name] = None
        return outcome

    async def dump(self) -> None:
        logger.info("Dumping dynlists")
        for device in self.devices.values():
            for index, entry in enumerate(await device.get_ips()):
                logger.info("%s(%d): %s", device.name, index, entry)

    def health(self) -> dict[str, dict[str, Any]]:
        report: dict[str, dict[str, Any]] = {}
        for name, device in self.devices.items():
            report[name] = {
                "status": "ok" if device.healthy else "failed",
                "ban_list": device.ban_list,
                "dynlist_size": len(device.dynlist),
                "failure": device.failure,
            }
        for name, reason in self.failed.items():
            report[name] = {"status": "failed", "ban_list": None, "dynlist_size": 0, "failure": reason}
        return report

    async def close(self) -> None:
        results = await asyncio.gather(
            *(device.close() for device in self.devices.values()),
            return_exceptions=True,
        )
        for device, result in zip(self.devices.values(), results):
            if isinstance(result, Exception):
                logger.warning("%s: error while closing: %s", device.name, result)
