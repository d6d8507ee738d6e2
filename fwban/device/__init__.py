# ./fwban/device/__init__.py
"""
Per-device banlist engine.

Keeps a device's firewall address-list in line with the configured intent:
a permanent whitelist, a permanent blacklist and the time limited bans found
at runtime.

Main Components:
- Device: mutation gateway (add_ip / del_ip) and session lifecycle
- reconcile_device: connect-time merge of policy and device state
- ExpiryScheduler: removes the earliest expiring dynamic ban when due
- Fleet: all devices of the process, ban fan-out and health
- RouterOSClient: RouterOS REST implementation of the device client

Usage:
    from fwban.device import Fleet

    fleet = await Fleet.connect(settings)
    await fleet.ban(network, settings.block_time)
"""

from .banlist import Device
from .client import AddressListRow, DeviceClient, RouterOSClient
from .duration import DurationParseError, format_duration, parse_duration
from .dynlist import DynList
from .entry import CONFIG_ROW_ID, AddressFamily, BlackIP, parse_cidr
from .exceptions import (
    ConfigConflict,
    ConfigError,
    ConnectionFailure,
    DuplicateEntry,
    EntryNotFound,
    FwbanError,
    MissingField,
    RemoteError,
)
from .fleet import Fleet
from .policy import BanPolicy
from .reconcile import reconcile_device
from .scheduler import ExpiryScheduler, SchedulerState

__all__ = [
    # Engine
    'Device',
    'Fleet',
    'reconcile_device',
    'ExpiryScheduler',
    'SchedulerState',

    # Model
    'BlackIP',
    'BanPolicy',
    'DynList',
    'AddressFamily',
    'CONFIG_ROW_ID',
    'parse_cidr',
    'parse_duration',
    'format_duration',
    'DurationParseError',

    # Device client
    'DeviceClient',
    'RouterOSClient',
    'AddressListRow',

    # Exceptions
    'FwbanError',
    'ConfigError',
    'ConfigConflict',
    'ConnectionFailure',
    'RemoteError',
    'DuplicateEntry',
    'EntryNotFound',
    'MissingField',
]
