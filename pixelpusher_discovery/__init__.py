# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package pixelpusher_discovery discovers PixelPusher-class LED controllers on the local network.

PixelPusher controllers, and the related EtherDream and LumiaBridge devices, periodically
broadcast a fixed 84-byte little-endian status header to UDP port 7331. This package decodes
(and encodes) that header into a typed device description, and collects the broadcasts seen
within a time window into a deduplicated list of devices, one per hardware address.

It also provides a long-running DeviceRegistry that tracks live devices over time, a
HeaderAnnouncer that emulates a device by broadcasting a header, and the PixelBuffer
addressing model used when sending pixel data to a PixelPusher.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort, RGB

from .exceptions import (
    PixelPusherError,
    DecodeError,
    TruncatedHeaderError,
    PixelOutOfRangeError,
    DiscoveryError,
    DiscoverySocketError,
  )

from .device_header import (
    DeviceType,
    BaseHeader,
    PixelPusherHeader,
    DeviceHeader,
    decode_header,
    encode_header,
  )
from .pixel_buffer import PixelBuffer
from .discovery_socket import DiscoverySocket, HeaderSubscriber, ReceivedHeader
from .observer import DiscoveryObserver, LoggingDiscoveryObserver
from .discovery import DiscoverySession, SessionState, discover
from .device_filter import filter_by_device_type, pixelpushers, find_by_hw_addr, discover_filtered
from .registry import DeviceRegistry, DeviceRecord, RegistryEvent
from .announcer import HeaderAnnouncer
from .util import format_hw_addr, parse_hw_addr, get_interface_addresses, get_local_ip_addresses
from .constants import (
    PIXELPUSHER_DISCOVERY_PORT,
    DEVICE_HEADER_SIZE,
    BROADCAST_ADDRESS,
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_ANNOUNCE_INTERVAL,
    DEFAULT_EXPIRY_TIME,
  )

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort', 'RGB',
    'PixelPusherError', 'DecodeError', 'TruncatedHeaderError', 'PixelOutOfRangeError',
    'DiscoveryError', 'DiscoverySocketError',
    'DeviceType', 'BaseHeader', 'PixelPusherHeader', 'DeviceHeader', 'decode_header', 'encode_header',
    'PixelBuffer',
    'DiscoverySocket', 'HeaderSubscriber', 'ReceivedHeader',
    'DiscoveryObserver', 'LoggingDiscoveryObserver',
    'DiscoverySession', 'SessionState', 'discover',
    'filter_by_device_type', 'pixelpushers', 'find_by_hw_addr', 'discover_filtered',
    'DeviceRegistry', 'DeviceRecord', 'RegistryEvent',
    'HeaderAnnouncer',
    'format_hw_addr', 'parse_hw_addr', 'get_interface_addresses', 'get_local_ip_addresses',
    'PIXELPUSHER_DISCOVERY_PORT', 'DEVICE_HEADER_SIZE', 'BROADCAST_ADDRESS',
    'DEFAULT_DISCOVERY_TIMEOUT', 'DEFAULT_ANNOUNCE_INTERVAL', 'DEFAULT_EXPIRY_TIME',
]
