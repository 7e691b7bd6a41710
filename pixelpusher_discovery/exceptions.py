#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

class PixelPusherError(Exception):
    """Base class for all error exceptions defined by this package."""
    pass

class DecodeError(PixelPusherError):
    """A received datagram could not be decoded into a device header."""
    pass

class TruncatedHeaderError(DecodeError):
    """A datagram was shorter than the fixed device header frame."""

    size: int
    """The number of bytes that were actually supplied."""

    def __init__(self, size: int, required: int):
        super().__init__(f"Truncated device header: got {size} bytes, need {required}")
        self.size = size

class PixelOutOfRangeError(PixelPusherError, IndexError):
    """A pixel address was outside the strip/pixel bounds declared by the device."""
    pass

class DiscoveryError(PixelPusherError):
    """A discovery session was used in a way its state does not allow."""
    pass

class DiscoverySocketError(PixelPusherError):
    """The discovery socket could not be bound, or failed while receiving. Fatal to the session."""
    pass
