"""
Unit tests for the device header codec.
"""

import struct
from ipaddress import IPv4Address

import pytest

from pixelpusher_discovery import (
    DEVICE_HEADER_SIZE,
    BaseHeader,
    DecodeError,
    DeviceType,
    PixelPusherHeader,
    TruncatedHeaderError,
    decode_header,
    encode_header,
    parse_hw_addr,
)

from pixelpusher_discovery.device_header import BASE_HEADER_SIZE, PIXELPUSHER_EXTENSION_SIZE

from conftest import make_base_header, make_pixelpusher_header


def build_datagram(type_code, extension=b"", hw_addr=b"\xaa\xbb\xcc\x00\x01\x02", ip_addr="10.0.0.7"):
    """Lay out a datagram by hand, independently of encode_header."""
    base = hw_addr + int(IPv4Address(ip_addr)).to_bytes(4, "little") + bytes([type_code, 5])
    base += struct.pack("<HHHHI", 0x1234, 0x5678, 0x0102, 0x0304, 1_000_000_000)
    assert len(base) == 24
    data = base + extension
    return data + bytes(DEVICE_HEADER_SIZE - len(data))


PIXELPUSHER_EXTENSION = struct.pack(
    "<BBHIIIIIHHH",
    2,  # strips_attached
    8,  # max_strips_per_packet
    30,  # pixels_per_strip
    16666,  # update_period
    4000,  # power_total
    3,  # delta_sequence
    7,  # controller_ordinal
    9,  # group_ordinal
    1,  # artnet_universe
    512,  # artnet_channel
    9897,  # my_port
)


class TestDecodeLayout:
    """Tests that fields are read from the documented offsets, little-endian"""

    def test_base_fields(self):
        header = decode_header(build_datagram(1))

        assert type(header) is BaseHeader
        assert header.hw_addr == b"\xaa\xbb\xcc\x00\x01\x02"
        assert header.hw_addr_str == "aa:bb:cc:00:01:02"
        assert header.ip_addr == IPv4Address("10.0.0.7")
        assert header.device_type == DeviceType.LUMIABRIDGE
        assert header.protocol_version == 5
        assert header.vendor_id == 0x1234
        assert header.product_id == 0x5678
        assert header.hw_revision == 0x0102
        assert header.sw_revision == 0x0304
        assert header.link_speed == 1_000_000_000

    def test_ip_address_is_little_endian(self):
        data = bytearray(build_datagram(0))
        data[6:10] = bytes([0x0A, 0x01, 0xA8, 0xC0])

        header = decode_header(bytes(data))

        assert header.ip_addr == IPv4Address("192.168.1.10")

    def test_pixelpusher_extension_fields(self):
        header = decode_header(build_datagram(2, PIXELPUSHER_EXTENSION))

        assert isinstance(header, PixelPusherHeader)
        assert header.device_type == DeviceType.PIXELPUSHER
        assert header.strips_attached == 2
        assert header.max_strips_per_packet == 8
        assert header.pixels_per_strip == 30
        assert header.update_period == 16666
        assert header.power_total == 4000
        assert header.delta_sequence == 3
        assert header.controller_ordinal == 7
        assert header.group_ordinal == 9
        assert header.artnet_universe == 1
        assert header.artnet_channel == 512
        assert header.my_port == 9897

    def test_pixelpusher_delegates_base_fields(self):
        header = decode_header(build_datagram(2, PIXELPUSHER_EXTENSION))

        assert header.hw_addr == header.base_header.hw_addr
        assert header.ip_addr == IPv4Address("10.0.0.7")
        assert header.vendor_id == 0x1234
        assert header.link_speed == 1_000_000_000

    def test_extension_bytes_ignored_for_other_types(self):
        # Same bytes after offset 24, but type 0 carries no extension
        header = decode_header(build_datagram(0, PIXELPUSHER_EXTENSION))

        assert type(header) is BaseHeader
        assert header.device_type == DeviceType.ETHERDREAM

    def test_trailing_bytes_are_ignored(self):
        data = build_datagram(2, PIXELPUSHER_EXTENSION)

        assert decode_header(data + b"\xff" * 16) == decode_header(data)


class TestDispatch:
    """Tests device type dispatch over every possible type byte"""

    @pytest.mark.parametrize("code", range(256))
    def test_every_type_code_decodes(self, code):
        header = decode_header(build_datagram(code, PIXELPUSHER_EXTENSION))

        if code == 2:
            assert isinstance(header, PixelPusherHeader)
            assert header.device_type == DeviceType.PIXELPUSHER
        else:
            assert type(header) is BaseHeader
            expected = {0: DeviceType.ETHERDREAM, 1: DeviceType.LUMIABRIDGE}.get(code, DeviceType.UNKNOWN)
            assert header.device_type == expected
        assert header.device_type_code == code

    def test_from_name(self):
        assert DeviceType.from_name("pixelpusher") == DeviceType.PIXELPUSHER
        assert DeviceType.from_name("EtherDream") == DeviceType.ETHERDREAM
        with pytest.raises(ValueError):
            DeviceType.from_name("toaster")


class TestTruncation:
    """Tests that short buffers fail cleanly"""

    @pytest.mark.parametrize("size", range(DEVICE_HEADER_SIZE))
    def test_short_buffer_is_truncated(self, size):
        data = build_datagram(2, PIXELPUSHER_EXTENSION)[:size]

        with pytest.raises(TruncatedHeaderError) as exc_info:
            decode_header(data)

        assert exc_info.value.size == size

    def test_truncated_is_a_decode_error(self):
        with pytest.raises(DecodeError):
            decode_header(b"")


class TestEncode:
    """Tests for encode_header"""

    def test_encode_is_fixed_size(self, pixelpusher_header, lumiabridge_header):
        assert len(encode_header(pixelpusher_header)) == DEVICE_HEADER_SIZE
        assert len(encode_header(lumiabridge_header)) == DEVICE_HEADER_SIZE

    def test_encode_matches_hand_built_layout(self):
        datagram = build_datagram(2, PIXELPUSHER_EXTENSION)

        assert encode_header(decode_header(datagram)) == datagram

    def test_padding_is_zero(self, pixelpusher_header):
        end = BASE_HEADER_SIZE + PIXELPUSHER_EXTENSION_SIZE
        data = encode_header(pixelpusher_header)

        assert data[52:54] == (9897).to_bytes(2, "little")
        assert data[end:] == bytes(DEVICE_HEADER_SIZE - end)

    def test_section_sizes(self):
        assert BASE_HEADER_SIZE == 24
        assert PIXELPUSHER_EXTENSION_SIZE == 30
        assert struct.calcsize("<BBHIIIIIHHH") == PIXELPUSHER_EXTENSION_SIZE
        assert BASE_HEADER_SIZE + PIXELPUSHER_EXTENSION_SIZE <= DEVICE_HEADER_SIZE

    @pytest.mark.parametrize(
        "header",
        [
            make_pixelpusher_header(),
            make_pixelpusher_header(strips=8, pixels=480, delta_sequence=0xFFFFFFFF, my_port=65535),
            make_base_header(),
            make_base_header(device_type=DeviceType.ETHERDREAM),
            BaseHeader(parse_hw_addr("00:00:00:00:00:00"), "0.0.0.0", DeviceType.UNKNOWN, device_type_code=200),
        ],
        ids=["pixelpusher", "pixelpusher-max", "lumiabridge", "etherdream", "unknown-200"],
    )
    def test_round_trip(self, header):
        assert decode_header(encode_header(header)) == header

    def test_unknown_without_code_encodes_as_ff(self):
        header = BaseHeader(parse_hw_addr("01:02:03:04:05:06"), "1.2.3.4", DeviceType.UNKNOWN)

        data = encode_header(header)

        assert data[10] == 0xFF
        assert decode_header(data) == header

    def test_field_overflow_rejected(self):
        header = make_pixelpusher_header(strips=256)

        with pytest.raises(ValueError):
            encode_header(header)

    def test_bare_pixelpusher_base_header_rejected(self):
        header = BaseHeader(parse_hw_addr("01:02:03:04:05:06"), "1.2.3.4", DeviceType.PIXELPUSHER)

        with pytest.raises(ValueError):
            encode_header(header)


class TestHeaderModel:
    """Tests for the header value types"""

    def test_pixelpusher_requires_pixelpusher_base(self, lumiabridge_header):
        with pytest.raises(ValueError):
            PixelPusherHeader(lumiabridge_header)

    def test_hw_addr_must_be_six_bytes(self):
        with pytest.raises(ValueError):
            BaseHeader(b"\x01\x02\x03", "1.2.3.4", DeviceType.ETHERDREAM)

    def test_mismatched_type_code_rejected(self):
        with pytest.raises(ValueError):
            BaseHeader(parse_hw_addr("01:02:03:04:05:06"), "1.2.3.4", DeviceType.ETHERDREAM, device_type_code=1)

    def test_variants_are_not_equal(self, pixelpusher_header):
        assert pixelpusher_header != pixelpusher_header.base_header
        assert pixelpusher_header.base_header != pixelpusher_header

    def test_equality_covers_extension(self):
        assert make_pixelpusher_header(strips=2) == make_pixelpusher_header(strips=2)
        assert make_pixelpusher_header(strips=2) != make_pixelpusher_header(strips=3)

    def test_to_jsonable(self, pixelpusher_header):
        result = pixelpusher_header.to_jsonable()

        assert result["hw_addr"] == "aa:bb:cc:00:01:02"
        assert result["ip_addr"] == "192.168.1.50"
        assert result["device_type"] == "PIXELPUSHER"
        assert result["strips_attached"] == 2
        assert result["pixels_per_strip"] == 30

    def test_subclass_equality(self):
        class TaggedHeader(BaseHeader):
            pass

        a = TaggedHeader(parse_hw_addr("01:02:03:04:05:06"), "1.2.3.4", DeviceType.ETHERDREAM)
        b = TaggedHeader(parse_hw_addr("01:02:03:04:05:06"), "1.2.3.4", DeviceType.ETHERDREAM)
        plain = BaseHeader(parse_hw_addr("01:02:03:04:05:06"), "1.2.3.4", DeviceType.ETHERDREAM)

        assert a == b
        assert a != plain
        assert plain != a
