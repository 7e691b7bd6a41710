#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Event reporting for discovery sessions.

A DiscoverySession reports what it sees (new devices, duplicate broadcasts, undecodable
datagrams, the end of the discovery window) to a DiscoveryObserver instead of logging
directly. Subclass DiscoveryObserver and override the methods of interest; the default
observer, LoggingDiscoveryObserver, writes everything to the package logger.
"""

from __future__ import annotations

from .internal_types import *
from .pkg_logging import logger

if TYPE_CHECKING:
    from .discovery_socket import ReceivedHeader

class DiscoveryObserver:
    """Receives events from a DiscoverySession. All methods are no-ops by default.

    Methods are called synchronously from the session's aggregation loop and must not block.
    """

    def on_listening(self, local_addr: HostAndPort, timeout: float) -> None:
        """Called once the discovery socket is bound and the deadline is armed."""
        pass

    def on_device(self, received: ReceivedHeader) -> None:
        """Called when a header from a previously unseen hardware address is added to the snapshot."""
        pass

    def on_duplicate(self, received: ReceivedHeader) -> None:
        """Called when a header from an already-seen hardware address is discarded."""
        pass

    def on_decode_error(self, received: ReceivedHeader) -> None:
        """Called when a datagram could not be decoded. received.error holds the DecodeError."""
        pass

    def on_timeout(self, num_devices: int) -> None:
        """Called when the discovery window elapses."""
        pass

    def on_closed(self, num_devices: int) -> None:
        """Called after the socket is closed and the receive side has stopped."""
        pass

class LoggingDiscoveryObserver(DiscoveryObserver):
    """A DiscoveryObserver that writes session events to the package logger."""

    def on_listening(self, local_addr: HostAndPort, timeout: float) -> None:
        logger.debug(f"Listening for device headers on {local_addr[0]}:{local_addr[1]} for {timeout} seconds")

    def on_device(self, received: ReceivedHeader) -> None:
        logger.info(f"Discovered device from {received.src_addr[0]}:{received.src_addr[1]}: {received.header}")

    def on_duplicate(self, received: ReceivedHeader) -> None:
        assert received.header is not None
        logger.debug(f"Seen device already at addr {received.header.hw_addr_str}")

    def on_decode_error(self, received: ReceivedHeader) -> None:
        logger.warning(f"Undecodable datagram from {received.src_addr[0]}:{received.src_addr[1]}: {received.error}")

    def on_timeout(self, num_devices: int) -> None:
        logger.debug(f"Discovery window ended with {num_devices} device(s)")

    def on_closed(self, num_devices: int) -> None:
        logger.debug(f"Discovery session closed with {num_devices} device(s)")
