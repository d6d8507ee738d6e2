"""The in-memory mirror of the time limited bans pushed to a device."""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from fwban.device.entry import BlackIP, IPNetwork, any_covers, expiry_sort_key, utcnow


class DynList:
    """
    Dynamic entries sorted ascending by expiry.

    The ordering lets the expiry scheduler look at the head only. All access
    goes through the list lock; callers holding a device's mutation lock may
    take it, never the other way around.
    """

    def __init__(self, entries: Iterable[BlackIP] = ()):
        self._entries: list[BlackIP] = sorted(entries, key=expiry_sort_key)
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def head(self) -> Optional[BlackIP]:
        async with self._lock:
            return self._entries[0] if self._entries else None

    async def covers(self, network: IPNetwork) -> Optional[BlackIP]:
        """Return the unexpired entry containing the network, if any."""
        now = utcnow()
        async with self._lock:
            live = (e for e in self._entries if e.expires_at is None or e.expires_at > now)
            return any_covers(live, network)

    async def insert(self, entry: BlackIP) -> None:
        async with self._lock:
            self._entries.append(entry)
            self._entries.sort(key=expiry_sort_key)

    async def pop_head_if(self, row_id: str) -> Optional[BlackIP]:
        """Drop the head when it carries the given row identifier."""
        async with self._lock:
            if self._entries and self._entries[0].row_id == row_id:
                return self._entries.pop(0)
            return None

    async def snapshot(self) -> list[BlackIP]:
        async with self._lock:
            return list(self._entries)
