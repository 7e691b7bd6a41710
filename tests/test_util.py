"""
Tests for hardware address helpers.
"""

import pytest

from pixelpusher_discovery import format_hw_addr, parse_hw_addr


@pytest.mark.parametrize(
    "text",
    ["AA:BB:CC:00:01:02", "aa:bb:cc:00:01:02", "aa-bb-cc-00-01-02", "aabbcc000102"],
)
def test_parse_hw_addr_forms(text):
    assert parse_hw_addr(text) == b"\xaa\xbb\xcc\x00\x01\x02"


@pytest.mark.parametrize(
    "text",
    ["", "aa:bb:cc:00:01", "aa:bb:cc:00:01:02:03", "aa:bb-cc:00:01:02", "gg:bb:cc:00:01:02"],
)
def test_parse_hw_addr_rejects(text):
    with pytest.raises(ValueError):
        parse_hw_addr(text)


def test_format_hw_addr():
    assert format_hw_addr(b"\xaa\xbb\xcc\x00\x01\x02") == "aa:bb:cc:00:01:02"
    assert parse_hw_addr(format_hw_addr(b"\x01\x02\x03\x04\x05\x06")) == b"\x01\x02\x03\x04\x05\x06"
