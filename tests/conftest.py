"""
Shared fixtures and helpers for pixelpusher_discovery tests.
"""

import socket

import pytest

from pixelpusher_discovery import BaseHeader, DeviceType, PixelPusherHeader, parse_hw_addr


def make_pixelpusher_header(hw_addr="aa:bb:cc:00:01:02", ip_addr="192.168.1.50", strips=2, pixels=30, **kwargs):
    """Build a PixelPusher header with plausible field values."""
    base_header = BaseHeader(
        parse_hw_addr(hw_addr),
        ip_addr,
        DeviceType.PIXELPUSHER,
        protocol_version=kwargs.pop("protocol_version", 1),
        vendor_id=kwargs.pop("vendor_id", 2),
        product_id=kwargs.pop("product_id", 1),
        hw_revision=kwargs.pop("hw_revision", 3),
        sw_revision=kwargs.pop("sw_revision", 128),
        link_speed=kwargs.pop("link_speed", 100_000_000),
    )
    return PixelPusherHeader(
        base_header,
        strips_attached=strips,
        max_strips_per_packet=kwargs.pop("max_strips_per_packet", strips),
        pixels_per_strip=pixels,
        update_period=kwargs.pop("update_period", 1000),
        power_total=kwargs.pop("power_total", 0),
        delta_sequence=kwargs.pop("delta_sequence", 0),
        controller_ordinal=kwargs.pop("controller_ordinal", 1),
        group_ordinal=kwargs.pop("group_ordinal", 1),
        artnet_universe=kwargs.pop("artnet_universe", 0),
        artnet_channel=kwargs.pop("artnet_channel", 0),
        my_port=kwargs.pop("my_port", 9897),
    )


def make_base_header(hw_addr="11:22:33:44:55:66", ip_addr="192.168.1.60", device_type=DeviceType.LUMIABRIDGE):
    """Build a header for a device type that carries no extension."""
    return BaseHeader(parse_hw_addr(hw_addr), ip_addr, device_type, protocol_version=1, link_speed=10_000_000)


def send_datagrams(port, *payloads):
    """Send raw datagrams to a discovery socket listening on the loopback interface."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        for payload in payloads:
            sock.sendto(payload, ("127.0.0.1", port))


def find_free_udp_port():
    """Return a UDP port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("", 0))
        return sock.getsockname()[1]


@pytest.fixture
def pixelpusher_header():
    """The PixelPusher from the two-device example: AA:BB:CC:00:01:02, 2 strips of 30 pixels."""
    return make_pixelpusher_header()


@pytest.fixture
def lumiabridge_header():
    """The LumiaBridge from the two-device example: 11:22:33:44:55:66."""
    return make_base_header()
