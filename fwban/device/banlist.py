"""A single device's banlist: the mutation gateway and its lifecycle."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Optional

from fwban.device.client import DeviceClient, RouterOSClient
from fwban.device.duration import format_duration
from fwban.device.dynlist import DynList
from fwban.device.entry import BlackIP, IPNetwork, family_of, utcnow
from fwban.device.exceptions import DuplicateEntry, EntryNotFound, MissingField
from fwban.device.policy import EMPTY_POLICY, BanPolicy
from fwban.device.reconcile import reconcile_device
from fwban.device.scheduler import ExpiryScheduler

logger = logging.getLogger(__name__)

DEFAULT_BAN_LIST = "blacklist"


class Device:
    """
    Cache between the rest of the program and one device's address-list.

    ``add_ip`` and ``del_ip`` are serialized by the mutation lock for the
    whole remote call plus the local dynlist update, so two concurrent bans
    (or a ban racing the expiry scheduler) never double-add or double-remove
    an entry.
    """

    def __init__(
        self,
        name: str,
        client: DeviceClient,
        ban_list: str = DEFAULT_BAN_LIST,
        *,
        auto_delete: bool = True,
        verbose: bool = False,
    ):
        self.name = name
        self.client = client
        self.ban_list = ban_list
        self.auto_delete = auto_delete
        self.verbose = verbose

        self.policy: BanPolicy = EMPTY_POLICY
        self.dynlist = DynList()
        self.failure: Optional[str] = None

        self._mutation_lock = asyncio.Lock()
        self._scheduler: Optional[ExpiryScheduler] = None

    @classmethod
    async def connect(
        cls,
        name: str,
        device_settings: Any,
        settings: Any,
        client: DeviceClient | None = None,
    ) -> "Device":
        """
        Open the session, reconcile the banlist and start the scheduler.

        Any failure while reconciling closes the session and propagates; the
        device never runs with an unknown banlist.
        """
        if settings.VERBOSE or settings.DEBUG:
            logger.info("NewDevice(name=%s, address=%s)", name, device_settings.address)

        client = client or RouterOSClient.from_settings(name, device_settings, settings)
        device = cls(
            name,
            client,
            device_settings.ban_list or DEFAULT_BAN_LIST,
            auto_delete=settings.AUTO_DELETE,
            verbose=settings.VERBOSE,
        )
        try:
            await client.connect()
            await reconcile_device(device, device_settings.whitelist, device_settings.blacklist)
        except BaseException:
            await client.close()
            raise

        if device.auto_delete:
            device.start_scheduler()
        return device

    @property
    def healthy(self) -> bool:
        return self.failure is None

    @property
    def scheduler(self) -> Optional[ExpiryScheduler]:
        return self._scheduler

    def _trace(self, message: str, *args: Any) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG, message, *args)

    def start_scheduler(self) -> None:
        if self._scheduler is None:
            self._scheduler = ExpiryScheduler(self)
        self._scheduler.start()

    def mark_failed(self, exc: BaseException | str) -> None:
        self.failure = str(exc) or exc.__class__.__name__
        logger.error("%s: marked failed: %s", self.name, self.failure)

    async def add_ip(self, network: IPNetwork, duration: timedelta = timedelta(0), comment: str = "") -> None:
        """
        Add a network to the managed list.

        A zero duration adds a permanent entry without any checks; the
        reconciliation guarantees those are wanted. Otherwise whitelisted,
        blacklisted and already banned networks are skipped, and the new entry
        is recorded in the dynlist.
        """
        added = False
        async with self._mutation_lock:
            self._trace("%s: AddIP(%s/%s) started", self.name, network, format_duration(duration))
            if duration:
                if self.policy.whitelisted(network):
                    logger.info("%s: AddIP(%s) is on the admin whitelist, skipped", self.name, network)
                    return
                if self.policy.blacklisted(network):
                    logger.info("%s: AddIP(%s) is on the admin blacklist, skipped", self.name, network)
                    return
                if await self.dynlist.covers(network):
                    logger.info("%s: AddIP(%s) is already on the dynamic blacklist, skipped", self.name, network)
                    return

            try:
                row_id = await self.client.add(
                    family_of(network),
                    str(network),
                    self.ban_list,
                    timeout=format_duration(duration) if duration else None,
                    comment=comment,
                )
            except DuplicateEntry:
                logger.info("%s: AddIP(%s) already present on the device", self.name, network)
                return
            if not row_id:
                raise MissingField("ret", f"{self.name}: AddIP({network})")

            if duration and self.auto_delete:
                await self.dynlist.insert(BlackIP(network, utcnow() + duration, row_id))
                added = True
            self._trace("%s: AddIP(%s/%s) finished", self.name, network, format_duration(duration))

        if added and self._scheduler is not None:
            self._scheduler.notify()

    async def del_ip(self, entry: BlackIP) -> None:
        """
        Remove an entry from the device by its row identifier.

        Expected to be called with the dynlist head or with an entry that was
        never on the dynlist; only the head is dropped locally.
        """
        async with self._mutation_lock:
            self._trace("%s: DelIP(%s) started", self.name, entry)
            try:
                await self.client.remove(entry.family, entry.row_id)
            except EntryNotFound:
                logger.info("%s: DelIP(%s) was already gone from the device", self.name, entry.network)
            await self.dynlist.pop_head_if(entry.row_id)
            self._trace("%s: DelIP(%s) finished", self.name, entry)

    async def get_ips(self) -> list[BlackIP]:
        """Return a copy of the current dynlist."""
        return await self.dynlist.snapshot()

    async def close(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()
        await self.client.close()
