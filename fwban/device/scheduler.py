"""Background removal of expired dynamic bans."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Optional

from fwban.device.entry import utcnow

if TYPE_CHECKING:
    from fwban.device.banlist import Device

logger = logging.getLogger(__name__)

IDLE_POLL = timedelta(hours=1)

_CLOSED = object()


class SchedulerState(str, Enum):
    WAIT = "wait"
    FIRE = "fire"
    REFRESH = "refresh"
    STOPPED = "stopped"


class ExpiryScheduler:
    """
    Single lookahead priority queue over a device's dynlist.

    Only the dynlist head is ever inspected, so correctness depends on the
    dynlist staying sorted by expiry. New data is signalled through a one
    slot queue; a full slot drops the signal, which only delays the next
    wake-up computation.
    """

    def __init__(self, device: "Device"):
        self.device = device
        self.state = SchedulerState.WAIT
        self._has_data: asyncio.Queue[object] = asyncio.Queue(maxsize=1)
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"expiry-scheduler-{self.device.name}")

    def notify(self) -> bool:
        """Signal that the dynlist changed. Never blocks."""
        try:
            self._has_data.put_nowait(True)
            return True
        except asyncio.QueueFull:
            logger.warning("%s: new data indication dropped, scheduler busy", self.device.name)
            return False

    async def stop(self, timeout: float = 5.0) -> None:
        while not self._has_data.empty():
            self._has_data.get_nowait()
        self._has_data.put_nowait(_CLOSED)

        task = self._task
        if task is None or task is asyncio.current_task():
            return
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s: scheduler did not stop in %.1fs, cancelling", self.device.name, timeout)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self.state = SchedulerState.STOPPED

    async def _run(self) -> None:
        name = self.device.name
        while True:
            self.state = SchedulerState.WAIT
            head = await self.device.dynlist.head()
            if head is not None:
                wake = head.expires_at
            else:
                logger.debug("%s: No dynlist entries found to expire, retry in an hour", name)
                wake = utcnow() + IDLE_POLL
            logger.debug("%s: next event: %s", name, wake.isoformat())

            delay = max(0.0, (wake - utcnow()).total_seconds())
            try:
                item = await asyncio.wait_for(self._has_data.get(), timeout=delay)
            except asyncio.TimeoutError:
                if head is None:
                    continue
                self.state = SchedulerState.FIRE
                logger.debug("%s: Deleting oldest dynlist entry %s", name, head)
                try:
                    await self.device.del_ip(head)
                except Exception as exc:
                    logger.exception("%s: failed to expire %s, stopping scheduler", name, head.network)
                    self.device.mark_failed(exc)
                    self.state = SchedulerState.STOPPED
                    return
                continue

            if item is _CLOSED:
                logger.debug("%s: Got close, stopping expiry scheduler", name)
                self.state = SchedulerState.STOPPED
                return
            self.state = SchedulerState.REFRESH
            logger.debug("%s: Received new data indication", name)
