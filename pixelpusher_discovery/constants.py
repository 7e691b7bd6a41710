# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

PIXELPUSHER_DISCOVERY_PORT = 7331
"""The UDP port on which PixelPusher-class devices broadcast their device headers."""

DEVICE_HEADER_SIZE = 84
"""The size in bytes of a device header broadcast datagram."""

BROADCAST_ADDRESS = "255.255.255.255"
"""The limited broadcast address used by the announcer when no interface is specified."""

DEFAULT_DISCOVERY_TIMEOUT = 3.0
"""The default length (in seconds) of a discovery window."""

DEFAULT_ANNOUNCE_INTERVAL = 1.0
"""The default interval (in seconds) between header broadcasts sent by the announcer."""

DEFAULT_EXPIRY_TIME = 10.0
"""The default time (in seconds) after which the registry forgets a device it has not heard from."""

MAX_QUEUE_SIZE = 1000
"""The maximum number of received headers buffered for a single subscriber."""
