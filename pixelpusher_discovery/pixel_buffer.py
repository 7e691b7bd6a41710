#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
PixelBuffer -- the per-strip, per-pixel RGB frame that is handed to the code that transmits
pixel data to a PixelPusher.

The buffer has a fixed capacity of MAX_STRIPS strips of MAX_PIXELS_PER_STRIP pixels. Pixel
(strip_index, pixel_index) lives at byte offset

    strip_index * ROW_STRIDE + pixel_index * BYTES_PER_PIXEL

regardless of how many strips and pixels the device actually declares, so a strip's data is
always a contiguous slice. Writes are checked against the declared geometry, never the capacity.
"""

from __future__ import annotations

from .internal_types import *
from .exceptions import PixelOutOfRangeError
from .device_header import PixelPusherHeader

MAX_STRIPS = 8
MAX_PIXELS_PER_STRIP = 480
BYTES_PER_PIXEL = 3
ROW_STRIDE = MAX_PIXELS_PER_STRIP * BYTES_PER_PIXEL

class PixelBuffer:
    strips_attached: int
    """The number of strips the device declares. Valid strip indices are 0..strips_attached-1."""

    pixels_per_strip: int
    """The number of pixels on each strip. Valid pixel indices are 0..pixels_per_strip-1."""

    _data: bytearray

    def __init__(self, strips_attached: int, pixels_per_strip: int):
        if not 0 <= strips_attached <= MAX_STRIPS:
            raise ValueError(f"strips_attached must be between 0 and {MAX_STRIPS}, got {strips_attached}")
        if not 0 <= pixels_per_strip <= MAX_PIXELS_PER_STRIP:
            raise ValueError(f"pixels_per_strip must be between 0 and {MAX_PIXELS_PER_STRIP}, got {pixels_per_strip}")
        self.strips_attached = strips_attached
        self.pixels_per_strip = pixels_per_strip
        self._data = bytearray(MAX_STRIPS * ROW_STRIDE)

    @classmethod
    def for_header(cls, header: PixelPusherHeader) -> PixelBuffer:
        """Creates a buffer sized for the strips and pixels declared by a PixelPusher header."""
        return cls(header.strips_attached, header.pixels_per_strip)

    def _offset(self, strip_index: int, pixel_index: int) -> int:
        if not 0 <= strip_index < self.strips_attached:
            raise PixelOutOfRangeError(f"Strip index {strip_index} out of range; device has {self.strips_attached} strips")
        if not 0 <= pixel_index < self.pixels_per_strip:
            raise PixelOutOfRangeError(f"Pixel index {pixel_index} out of range; strips have {self.pixels_per_strip} pixels")
        return strip_index * ROW_STRIDE + pixel_index * BYTES_PER_PIXEL

    def set_pixel(self, strip_index: int, pixel_index: int, rgb: RGB) -> None:
        """Sets the color of one pixel.

        Raises PixelOutOfRangeError if the address is outside the declared geometry, and
        ValueError if a color component is not in 0..255.
        """
        offset = self._offset(strip_index, pixel_index)
        red, green, blue = rgb
        for component in (red, green, blue):
            if not 0 <= component <= 255:
                raise ValueError(f"Color component out of range 0..255: {rgb}")
        self._data[offset:offset + BYTES_PER_PIXEL] = bytes((red, green, blue))

    def get_pixel(self, strip_index: int, pixel_index: int) -> RGB:
        offset = self._offset(strip_index, pixel_index)
        red, green, blue = self._data[offset:offset + BYTES_PER_PIXEL]
        return (red, green, blue)

    def strip_data(self, strip_index: int) -> bytes:
        """Returns the RGB bytes of one strip, pixels_per_strip * 3 bytes long."""
        if not 0 <= strip_index < self.strips_attached:
            raise PixelOutOfRangeError(f"Strip index {strip_index} out of range; device has {self.strips_attached} strips")
        offset = strip_index * ROW_STRIDE
        return bytes(self._data[offset:offset + self.pixels_per_strip * BYTES_PER_PIXEL])

    def fill(self, rgb: RGB) -> None:
        """Sets every addressable pixel to one color."""
        for strip_index in range(self.strips_attached):
            for pixel_index in range(self.pixels_per_strip):
                self.set_pixel(strip_index, pixel_index, rgb)

    def clear(self) -> None:
        self._data[:] = bytes(len(self._data))

    def __str__(self) -> str:
        return f"PixelBuffer(strips={self.strips_attached}, pixels_per_strip={self.pixels_per_strip})"

    def __repr__(self) -> str:
        return str(self)
