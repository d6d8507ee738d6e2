"""Static ban policy shared between reconciliation and the mutation gateway."""

from __future__ import annotations

from dataclasses import dataclass

from fwban.device.entry import BlackIP, IPNetwork, any_covers


@dataclass(frozen=True, slots=True)
class BanPolicy:
    """Whitelist and permanent blacklist of a device. Never mutated after reconciliation."""

    whitelist: tuple[BlackIP, ...] = ()
    blacklist: tuple[BlackIP, ...] = ()

    def whitelisted(self, network: IPNetwork) -> BlackIP | None:
        return any_covers(self.whitelist, network)

    def blacklisted(self, network: IPNetwork) -> BlackIP | None:
        return any_covers(self.blacklist, network)


EMPTY_POLICY = BanPolicy()
