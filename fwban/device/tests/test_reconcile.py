"""
Tests for connect-time reconciliation.

Each test seeds a FakeDeviceClient, runs Device.connect against it and then
checks both the remote mutations and the resulting local state.
"""

import ipaddress
from datetime import timedelta

import pytest

from device_fakes import FakeDeviceClient, connect_device
from fwban.device.entry import AddressFamily, utcnow
from fwban.device.exceptions import ConfigConflict, ConfigError, ConnectionFailure, MissingField


@pytest.mark.asyncio
async def test_converged_device_needs_no_mutations():
    client = FakeDeviceClient()
    client.seed("10.0.0.0/24")
    dynamic_id = client.seed("203.0.113.5", dynamic=True, timeout="1h")

    device = await connect_device(client, blacklist=["10.0.0.0/24"])

    assert client.connected
    assert client.mutations() == []
    entries = await device.get_ips()
    assert len(entries) == 1
    assert str(entries[0].network) == "203.0.113.5/32"
    assert entries[0].row_id == dynamic_id
    remaining = entries[0].expires_at - utcnow()
    assert timedelta(minutes=59) < remaining <= timedelta(hours=1)


@pytest.mark.asyncio
async def test_whitelisted_straggler_is_deleted():
    client = FakeDeviceClient()
    row_id = client.seed("192.168.10.7", dynamic=True, timeout="10m")

    device = await connect_device(client, whitelist=["192.168.10.0/24"])

    assert client.mutations() == [("remove", AddressFamily.IPV4, row_id)]
    assert await device.get_ips() == []
    assert device.policy.whitelisted(ipaddress.ip_network("192.168.10.200/32"))


@pytest.mark.asyncio
async def test_unwanted_permanent_entry_is_deleted():
    client = FakeDeviceClient()
    stale = client.seed("172.16.0.0/12")
    client.seed("10.0.0.0/24")

    await connect_device(client, blacklist=["10.0.0.0/24"])

    assert client.mutations() == [("remove", AddressFamily.IPV4, stale)]
    assert client.addresses() == {"10.0.0.0/24"}


@pytest.mark.asyncio
async def test_dynamic_entry_shadowing_blacklist_becomes_permanent():
    client = FakeDeviceClient()
    row_id = client.seed("10.0.0.0/24", dynamic=True, timeout="2h")

    device = await connect_device(client, blacklist=["10.0.0.0/24"])

    assert client.mutations() == [
        ("remove", AddressFamily.IPV4, row_id),
        ("add", AddressFamily.IPV4, "10.0.0.0/24", "blacklist", None, ""),
    ]
    assert await device.get_ips() == []
    row = client.rows[AddressFamily.IPV4][0]
    assert row["dynamic"] is False


@pytest.mark.asyncio
async def test_missing_blacklist_entries_are_added_in_both_families():
    client = FakeDeviceClient()

    await connect_device(client, blacklist=["203.0.113.0/24", "2001:db8:bad::/48"])

    assert client.mutations() == [
        ("add", AddressFamily.IPV4, "203.0.113.0/24", "blacklist", None, ""),
        ("add", AddressFamily.IPV6, "2001:db8:bad::/48", "blacklist", None, ""),
    ]
    assert client.addresses() == {"203.0.113.0/24", "2001:db8:bad::/48"}


@pytest.mark.asyncio
async def test_entries_on_other_lists_are_left_alone():
    client = FakeDeviceClient()
    client.seed("198.51.100.1", list_name="customers")

    await connect_device(client)

    assert client.mutations() == []
    assert client.addresses("customers") == {"198.51.100.1"}


@pytest.mark.asyncio
async def test_conflicting_whitelist_and_blacklist_fails_connect():
    client = FakeDeviceClient()

    with pytest.raises(ConfigConflict) as excinfo:
        await connect_device(client, whitelist=["10.0.0.0/24"], blacklist=["10.0.0.0/24"])

    assert str(excinfo.value) == "r1: Conflicting whitelist/blacklist entry 10.0.0.0/24"
    assert client.closed
    assert client.mutations() == []


@pytest.mark.asyncio
async def test_unparsable_configured_prefix_fails_connect():
    client = FakeDeviceClient()

    with pytest.raises(ConfigError, match="Unable to parse blacklist prefix/ip 10.0.0.0/33"):
        await connect_device(client, blacklist=["10.0.0.0/33"])

    assert client.closed


@pytest.mark.asyncio
async def test_address_list_reference_is_imported():
    client = FakeDeviceClient()
    admins_id = client.seed("198.51.100.0/24", list_name="admins")

    device = await connect_device(client, whitelist=["@admins"])

    assert len(device.policy.whitelist) == 1
    imported = device.policy.whitelist[0]
    assert imported.is_permanent
    assert imported.row_id == admins_id

    await device.add_ip(ipaddress.ip_network("198.51.100.5/32"), timedelta(hours=1))
    assert client.mutations() == []


@pytest.mark.asyncio
async def test_reference_to_managed_list_is_skipped(caplog):
    client = FakeDeviceClient()
    client.seed("10.0.0.0/24")

    with caplog.at_level("INFO", logger="fwban.device.reconcile"):
        device = await connect_device(client, blacklist=["@blacklist"])

    assert device.policy.blacklist == ()
    assert "Skipping the managed blacklist @blacklist" in caplog.text


@pytest.mark.asyncio
async def test_dynamic_entry_without_timeout_fails_connect():
    client = FakeDeviceClient()
    client.seed("203.0.113.5", dynamic=True, timeout=None)

    with pytest.raises(MissingField) as excinfo:
        await connect_device(client)

    assert excinfo.value.field == "timeout"
    assert client.closed


@pytest.mark.asyncio
async def test_remote_failure_closes_the_session():
    client = FakeDeviceClient()
    client.failures["query"] = ConnectionFailure("r1: deadline exceeded on GET /ip/firewall/address-list")

    with pytest.raises(ConnectionFailure):
        await connect_device(client, blacklist=["10.0.0.0/24"])

    assert client.closed


@pytest.mark.asyncio
async def test_kept_dynamic_entries_are_sorted_by_expiry():
    client = FakeDeviceClient()
    client.seed("203.0.113.3", dynamic=True, timeout="3h")
    client.seed("2001:db8::1", dynamic=True, timeout="30m")
    client.seed("203.0.113.2", dynamic=True, timeout="2h")

    device = await connect_device(client)

    assert [str(e.network) for e in await device.get_ips()] == [
        "2001:db8::1/128",
        "203.0.113.2/32",
        "203.0.113.3/32",
    ]


@pytest.mark.asyncio
async def test_non_ascii_prefix_length_is_a_config_error():
    client = FakeDeviceClient()

    with pytest.raises(ConfigError, match="Unable to parse whitelist prefix/ip"):
        await connect_device(client, whitelist=["10.0.0.1/\u00b2"])

    assert client.closed
