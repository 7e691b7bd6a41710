"""
Tests for DeviceRegistry.
"""

import asyncio

import pytest

from pixelpusher_discovery import (
    DeviceRegistry,
    DeviceType,
    ReceivedHeader,
    RegistryEvent,
    encode_header,
)

from conftest import make_base_header, make_pixelpusher_header, send_datagrams


def received(header, src_addr=("192.168.1.50", 7331)):
    return ReceivedHeader.from_datagram(src_addr, encode_header(header))


class RecordingHandler:
    def __init__(self):
        self.events = []

    async def __call__(self, event, record):
        self.events.append((event, record.header))


@pytest.mark.asyncio
async def test_added_then_updated_only_on_change():
    registry = DeviceRegistry()
    handler = RecordingHandler()
    registry.add_change_handler(handler)
    first = make_pixelpusher_header(delta_sequence=0)
    changed = make_pixelpusher_header(delta_sequence=5)

    await registry.handle_received(received(first))
    await registry.handle_received(received(first))
    await registry.handle_received(received(changed))

    assert handler.events == [(RegistryEvent.ADDED, first), (RegistryEvent.UPDATED, changed)]
    assert registry.devices() == [changed]
    assert registry.records[changed.hw_addr].broadcast_count == 3


@pytest.mark.asyncio
async def test_decode_errors_ignored():
    registry = DeviceRegistry()

    await registry.handle_received(ReceivedHeader.from_datagram(("10.0.0.1", 7331), b"short"))

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_queries(pixelpusher_header, lumiabridge_header):
    registry = DeviceRegistry()
    await registry.handle_received(received(pixelpusher_header))
    await registry.handle_received(received(lumiabridge_header))

    assert registry.get("aa:bb:cc:00:01:02") == pixelpusher_header
    assert registry.get(lumiabridge_header.hw_addr) == lumiabridge_header
    assert registry.get("00:00:00:00:00:00") is None
    assert registry.pixelpushers() == [pixelpusher_header]
    assert registry.devices_of_type(DeviceType.LUMIABRIDGE) == [lumiabridge_header]


@pytest.mark.asyncio
async def test_expire_stale():
    registry = DeviceRegistry(expiry_time=10.0)
    handler = RecordingHandler()
    registry.add_change_handler(handler)
    old = received(make_pixelpusher_header(hw_addr="00:00:00:00:00:01"))
    fresh = received(make_base_header(hw_addr="00:00:00:00:00:02"))
    await registry.handle_received(old)
    await registry.handle_received(fresh)
    registry.records[old.header.hw_addr].last_seen -= 20.0

    expired = await registry.expire_stale()

    assert [record.header for record in expired] == [old.header]
    assert registry.devices() == [fresh.header]
    assert handler.events[-1] == (RegistryEvent.EXPIRED, old.header)


@pytest.mark.asyncio
async def test_device_heard_during_expiry_is_kept():
    registry = DeviceRegistry(expiry_time=10.0)
    first = received(make_pixelpusher_header(hw_addr="00:00:00:00:00:01"))
    second_header = make_base_header(hw_addr="00:00:00:00:00:02")
    await registry.handle_received(first)
    await registry.handle_received(received(second_header))
    for record in registry.records.values():
        record.last_seen -= 20.0
    events = []

    async def handler(event, record):
        events.append((event, record.header))
        if record.header == first.header:
            # the second device broadcasts while the first one's expiry is being reported
            await registry.handle_received(received(second_header))

    registry.add_change_handler(handler)

    expired = await registry.expire_stale()

    assert [record.header for record in expired] == [first.header]
    assert registry.devices() == [second_header]
    assert events == [(RegistryEvent.EXPIRED, first.header)]


@pytest.mark.asyncio
async def test_expiry_disabled():
    registry = DeviceRegistry(expiry_time=0.0)
    await registry.handle_received(received(make_pixelpusher_header()))

    assert await registry.expire_stale(now=1e12) == []
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_remove_change_handler():
    registry = DeviceRegistry()
    handler = RecordingHandler()
    i = registry.add_change_handler(handler)
    registry.remove_change_handler(i)

    await registry.handle_received(received(make_pixelpusher_header()))

    assert handler.events == []


@pytest.mark.asyncio
async def test_registry_listens_on_socket(pixelpusher_header):
    async with DeviceRegistry(port=0) as registry:
        send_datagrams(registry.local_addr[1], encode_header(pixelpusher_header))
        for _ in range(100):
            if len(registry) > 0:
                break
            await asyncio.sleep(0.01)

        assert registry.devices() == [pixelpusher_header]

    assert registry.collector_task is None
    assert registry.expiry_task is None
