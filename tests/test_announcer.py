"""
Tests for HeaderAnnouncer, received by a DiscoverySession over loopback.
"""

import asyncio

import pytest

from pixelpusher_discovery import DiscoverySession, HeaderAnnouncer


@pytest.mark.asyncio
async def test_announcer_stops_after_max_announcements(pixelpusher_header):
    async with DiscoverySession(timeout=0.5, port=0) as session:
        port = session.discovery_socket.local_addr[1]
        async with HeaderAnnouncer(
                pixelpusher_header, interval=0.05, broadcast_address="127.0.0.1", port=port, max_announcements=3
              ) as announcer:
            headers = await session.run()
            await asyncio.wait_for(announcer.wait_for_done(), 1.0)

    assert headers == [pixelpusher_header]
    assert announcer.num_announcements == 3
    assert announcer.transport is None


@pytest.mark.asyncio
async def test_manual_announce(lumiabridge_header):
    async with DiscoverySession(timeout=0.3, port=0) as session:
        port = session.discovery_socket.local_addr[1]
        async with HeaderAnnouncer(
                lumiabridge_header, interval=0.0, broadcast_address="127.0.0.1", port=port
              ) as announcer:
            assert announcer.announcer_task is None
            announcer.announce()
            headers = await session.run()

    assert headers == [lumiabridge_header]
    assert announcer.num_announcements == 1


@pytest.mark.asyncio
async def test_header_can_be_replaced_while_running(pixelpusher_header, lumiabridge_header):
    async with DiscoverySession(timeout=0.3, port=0) as session:
        port = session.discovery_socket.local_addr[1]
        async with HeaderAnnouncer(
                pixelpusher_header, interval=0.0, broadcast_address="127.0.0.1", port=port
              ) as announcer:
            announcer.announce()
            announcer.header = lumiabridge_header
            announcer.announce()
            headers = await session.run()

    assert headers == [pixelpusher_header, lumiabridge_header]
