#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Device headers broadcast by PixelPusher-class LED controllers.

Every device periodically broadcasts a fixed-size 84-byte header to UDP port 7331. All
multi-byte fields are little-endian. The first 24 bytes are common to every device type:

    offset  size  field
    0       6     hardware (MAC) address
    6       4     IPv4 address, as a little-endian 32-bit integer
    10      1     device type code (0=EtherDream, 1=LumiaBridge, 2=PixelPusher)
    11      1     protocol version
    12      2     vendor id
    14      2     product id
    16      2     hardware revision
    18      2     software revision
    20      4     link speed (bits per second)

A PixelPusher appends 30 more bytes starting at offset 24 (see PixelPusherHeader). The
remainder of the frame is padding. Other device types carry no extension.

A decoded header is one of two variants:

    BaseHeader          EtherDream, LumiaBridge, and any unrecognized type code
    PixelPusherHeader   a BaseHeader plus the PixelPusher extension

Consumers dispatch on the variant with isinstance(). Adding a device type with its
own extension means adding a new variant class and a new branch in decode_header().
"""

from __future__ import annotations

import struct
from enum import Enum
from ipaddress import IPv4Address

from .internal_types import *
from .constants import DEVICE_HEADER_SIZE
from .exceptions import TruncatedHeaderError
from .util import format_hw_addr

_BASE_STRUCT = struct.Struct('<6sIBBHHHHI')
_PIXELPUSHER_STRUCT = struct.Struct('<BBHIIIIIHHH')

BASE_HEADER_SIZE = _BASE_STRUCT.size
"""The size in bytes of the part of the header that is common to all device types (24)."""

PIXELPUSHER_EXTENSION_SIZE = _PIXELPUSHER_STRUCT.size
"""The size in bytes of the PixelPusher extension that immediately follows the base header (30)."""

UNKNOWN_DEVICE_TYPE_CODE = 0xff
"""The type code written when encoding an UNKNOWN header that has no recorded wire code."""

class DeviceType(Enum):
    """The kind of device that sent a header."""

    ETHERDREAM = 0
    LUMIABRIDGE = 1
    PIXELPUSHER = 2
    UNKNOWN = -1

    @classmethod
    def from_code(cls, code: int) -> DeviceType:
        """Maps a wire type code to a DeviceType. Unrecognized codes map to UNKNOWN."""
        if code in (0, 1, 2):
            return cls(code)
        return cls.UNKNOWN

    @classmethod
    def from_name(cls, name: str) -> DeviceType:
        """Parses a case-insensitive device type name (e.g., "pixelpusher")."""
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Unknown device type name: {name!r}") from None

class BaseHeader:
    """The part of a device header common to all device types.

    This is also the complete header for devices that carry no extension data
    (EtherDream, LumiaBridge and unrecognized types).
    """

    hw_addr: bytes
    """The 6-byte hardware (MAC) address of the device. Unique per device."""

    ip_addr: IPv4Address
    """The IPv4 address the device reports for itself. This is not necessarily the
       source address of the datagram."""

    device_type: DeviceType
    """The kind of device. Determines whether extension data follows the base header."""

    device_type_code: int
    """The raw type code from the wire. Differs from device_type.value only for UNKNOWN."""

    protocol_version: int
    vendor_id: int
    product_id: int
    hw_revision: int
    sw_revision: int

    link_speed: int
    """The link speed in bits per second."""

    def __init__(
            self,
            hw_addr: bytes,
            ip_addr: Union[IPv4Address, str, int],
            device_type: DeviceType,
            protocol_version: int=0,
            vendor_id: int=0,
            product_id: int=0,
            hw_revision: int=0,
            sw_revision: int=0,
            link_speed: int=0,
            device_type_code: Optional[int]=None,
          ):
        if len(hw_addr) != 6:
            raise ValueError(f"Hardware address must be 6 bytes, got {len(hw_addr)}")
        self.hw_addr = bytes(hw_addr)
        self.ip_addr = IPv4Address(ip_addr)
        if device_type_code is None:
            device_type_code = UNKNOWN_DEVICE_TYPE_CODE if device_type == DeviceType.UNKNOWN else device_type.value
        elif DeviceType.from_code(device_type_code) != device_type:
            raise ValueError(f"Device type code {device_type_code} does not match {device_type}")
        self.device_type = device_type
        self.device_type_code = device_type_code
        self.protocol_version = protocol_version
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.hw_revision = hw_revision
        self.sw_revision = sw_revision
        self.link_speed = link_speed

    @property
    def base_header(self) -> BaseHeader:
        return self

    @property
    def hw_addr_str(self) -> str:
        """The hardware address formatted as "aa:bb:cc:dd:ee:ff"."""
        return format_hw_addr(self.hw_addr)

    def _field_tuple(self) -> Tuple[Any, ...]:
        return (
            self.hw_addr, self.ip_addr, self.device_type, self.device_type_code,
            self.protocol_version, self.vendor_id, self.product_id,
            self.hw_revision, self.sw_revision, self.link_speed,
          )

    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return False
        return self._field_tuple() == other._field_tuple()

    def __hash__(self) -> int:
        return hash(self._field_tuple())

    def to_jsonable(self) -> JsonableDict:
        return {
            "hw_addr": self.hw_addr_str,
            "ip_addr": str(self.ip_addr),
            "device_type": self.device_type.name,
            "device_type_code": self.device_type_code,
            "protocol_version": self.protocol_version,
            "vendor_id": self.vendor_id,
            "product_id": self.product_id,
            "hw_revision": self.hw_revision,
            "sw_revision": self.sw_revision,
            "link_speed": self.link_speed,
        }

    def __str__(self) -> str:
        return f"BaseHeader({self.hw_addr_str}, {self.ip_addr}, {self.device_type.name})"

    def __repr__(self) -> str:
        return str(self)

class PixelPusherHeader:
    """A PixelPusher device header: a BaseHeader plus the PixelPusher extension.

    Extension layout, starting at offset 24:

        offset  size  field
        24      1     strips_attached
        25      1     max_strips_per_packet
        26      2     pixels_per_strip
        28      4     update_period (microseconds)
        32      4     power_total
        36      4     delta_sequence
        40      4     controller_ordinal
        44      4     group_ordinal
        48      2     artnet_universe
        50      2     artnet_channel
        52      2     my_port
    """

    base_header: BaseHeader
    """The common part of the header. device_type is always PIXELPUSHER."""

    strips_attached: int
    max_strips_per_packet: int
    pixels_per_strip: int

    update_period: int
    """The device's current update period, in microseconds."""

    power_total: int

    delta_sequence: int
    """The gap between the packet sequence number the device observed and the one it expected."""

    controller_ordinal: int
    group_ordinal: int
    artnet_universe: int
    artnet_channel: int
    my_port: int

    def __init__(
            self,
            base_header: BaseHeader,
            strips_attached: int=0,
            max_strips_per_packet: int=0,
            pixels_per_strip: int=0,
            update_period: int=0,
            power_total: int=0,
            delta_sequence: int=0,
            controller_ordinal: int=0,
            group_ordinal: int=0,
            artnet_universe: int=0,
            artnet_channel: int=0,
            my_port: int=0,
          ):
        if base_header.device_type != DeviceType.PIXELPUSHER:
            raise ValueError(f"PixelPusherHeader requires a PIXELPUSHER base header, got {base_header.device_type}")
        self.base_header = base_header
        self.strips_attached = strips_attached
        self.max_strips_per_packet = max_strips_per_packet
        self.pixels_per_strip = pixels_per_strip
        self.update_period = update_period
        self.power_total = power_total
        self.delta_sequence = delta_sequence
        self.controller_ordinal = controller_ordinal
        self.group_ordinal = group_ordinal
        self.artnet_universe = artnet_universe
        self.artnet_channel = artnet_channel
        self.my_port = my_port

    @property
    def hw_addr(self) -> bytes:
        return self.base_header.hw_addr

    @property
    def hw_addr_str(self) -> str:
        return self.base_header.hw_addr_str

    @property
    def ip_addr(self) -> IPv4Address:
        return self.base_header.ip_addr

    @property
    def device_type(self) -> DeviceType:
        return self.base_header.device_type

    @property
    def device_type_code(self) -> int:
        return self.base_header.device_type_code

    @property
    def protocol_version(self) -> int:
        return self.base_header.protocol_version

    @property
    def vendor_id(self) -> int:
        return self.base_header.vendor_id

    @property
    def product_id(self) -> int:
        return self.base_header.product_id

    @property
    def hw_revision(self) -> int:
        return self.base_header.hw_revision

    @property
    def sw_revision(self) -> int:
        return self.base_header.sw_revision

    @property
    def link_speed(self) -> int:
        return self.base_header.link_speed

    def _extension_tuple(self) -> Tuple[int, ...]:
        return (
            self.strips_attached, self.max_strips_per_packet, self.pixels_per_strip,
            self.update_period, self.power_total, self.delta_sequence,
            self.controller_ordinal, self.group_ordinal,
            self.artnet_universe, self.artnet_channel, self.my_port,
          )

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, PixelPusherHeader):
            return False
        return self.base_header == other.base_header and self._extension_tuple() == other._extension_tuple()

    def __hash__(self) -> int:
        return hash((self.base_header, self._extension_tuple()))

    def to_jsonable(self) -> JsonableDict:
        result = self.base_header.to_jsonable()
        result.update({
            "strips_attached": self.strips_attached,
            "max_strips_per_packet": self.max_strips_per_packet,
            "pixels_per_strip": self.pixels_per_strip,
            "update_period": self.update_period,
            "power_total": self.power_total,
            "delta_sequence": self.delta_sequence,
            "controller_ordinal": self.controller_ordinal,
            "group_ordinal": self.group_ordinal,
            "artnet_universe": self.artnet_universe,
            "artnet_channel": self.artnet_channel,
            "my_port": self.my_port,
        })
        return result

    def __str__(self) -> str:
        return (f"PixelPusherHeader({self.hw_addr_str}, {self.ip_addr}, strips={self.strips_attached}, "
                f"pixels_per_strip={self.pixels_per_strip}, controller={self.controller_ordinal}, "
                f"group={self.group_ordinal})")

    def __repr__(self) -> str:
        return str(self)

DeviceHeader = Union[BaseHeader, PixelPusherHeader]
"""A decoded device header. The PixelPusherHeader variant is used iff device_type is PIXELPUSHER."""

def decode_header(data: bytes) -> DeviceHeader:
    """Decodes a device header broadcast datagram.

    Bytes beyond the 84-byte frame are ignored.

    Raises TruncatedHeaderError if fewer than 84 bytes are supplied.
    """
    if len(data) < DEVICE_HEADER_SIZE:
        raise TruncatedHeaderError(len(data), DEVICE_HEADER_SIZE)
    (
        hw_addr, ip_int, type_code, protocol_version,
        vendor_id, product_id, hw_revision, sw_revision, link_speed,
    ) = _BASE_STRUCT.unpack_from(data, 0)
    device_type = DeviceType.from_code(type_code)
    base_header = BaseHeader(
        hw_addr,
        IPv4Address(ip_int),
        device_type,
        protocol_version=protocol_version,
        vendor_id=vendor_id,
        product_id=product_id,
        hw_revision=hw_revision,
        sw_revision=sw_revision,
        link_speed=link_speed,
        device_type_code=type_code,
      )
    if device_type == DeviceType.PIXELPUSHER:
        (
            strips_attached, max_strips_per_packet, pixels_per_strip,
            update_period, power_total, delta_sequence,
            controller_ordinal, group_ordinal,
            artnet_universe, artnet_channel, my_port,
        ) = _PIXELPUSHER_STRUCT.unpack_from(data, BASE_HEADER_SIZE)
        return PixelPusherHeader(
            base_header,
            strips_attached=strips_attached,
            max_strips_per_packet=max_strips_per_packet,
            pixels_per_strip=pixels_per_strip,
            update_period=update_period,
            power_total=power_total,
            delta_sequence=delta_sequence,
            controller_ordinal=controller_ordinal,
            group_ordinal=group_ordinal,
            artnet_universe=artnet_universe,
            artnet_channel=artnet_channel,
            my_port=my_port,
          )
    return base_header

def encode_header(header: DeviceHeader) -> bytes:
    """Encodes a device header into an 84-byte broadcast datagram.

    This is the exact inverse of decode_header(). Unused bytes are zero.

    Raises ValueError if a field does not fit in its wire width.
    """
    base_header = header.base_header
    if isinstance(header, BaseHeader) and header.device_type == DeviceType.PIXELPUSHER:
        raise ValueError(f"A PIXELPUSHER header must be encoded as a PixelPusherHeader: {header}")
    buffer = bytearray(DEVICE_HEADER_SIZE)
    try:
        _BASE_STRUCT.pack_into(
            buffer, 0,
            base_header.hw_addr,
            int(base_header.ip_addr),
            base_header.device_type_code,
            base_header.protocol_version,
            base_header.vendor_id,
            base_header.product_id,
            base_header.hw_revision,
            base_header.sw_revision,
            base_header.link_speed,
          )
        if isinstance(header, PixelPusherHeader):
            _PIXELPUSHER_STRUCT.pack_into(buffer, BASE_HEADER_SIZE, *header._extension_tuple())
    except struct.error as e:
        raise ValueError(f"Cannot encode {header}: {e}") from e
    return bytes(buffer)
