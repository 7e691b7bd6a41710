#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DiscoverySession -- a single, time-bounded discovery of the devices broadcasting on the local network:

  1. Bind the discovery port and arm a deadline of now + timeout
  2. Collect decoded device headers until the deadline passes, discarding repeat broadcasts
     from a hardware address that has already been seen
  3. Close the socket, wait for its receive side to stop, and return the devices in first-seen order

A session runs once: IDLE -> LISTENING -> DRAINING -> CLOSED. A new discovery needs a new session.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum

from .internal_types import *
from .constants import PIXELPUSHER_DISCOVERY_PORT, DEFAULT_DISCOVERY_TIMEOUT
from .exceptions import DiscoveryError
from .device_header import DeviceHeader
from .discovery_socket import DiscoverySocket, HeaderSubscriber, ReceivedHeader
from .observer import DiscoveryObserver, LoggingDiscoveryObserver

class SessionState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    DRAINING = "draining"
    CLOSED = "closed"

class DiscoverySession(
        AsyncContextManager['DiscoverySession'],
        AsyncIterable[DeviceHeader]
      ):
    """An object that manages a single discovery window and the devices seen within it,
       behind an AsyncContextManager/AsyncIterable interface.

    Usage:
        async with DiscoverySession(timeout=3.0) as session:
            async for header in session:
                print(header)
                # It is possible to break out of the loop early if desired
        print(session.snapshot)

    or simply:
        async with DiscoverySession(timeout=3.0) as session:
            headers = await session.run()
    """

    timeout: float
    """The length of the discovery window, in seconds."""

    port: int
    bind_address: str
    reuse_address: bool

    max_devices: int
    """If > 0, the session ends early once this many distinct devices have been seen."""

    observer: DiscoveryObserver
    """Receives session events (new devices, duplicates, decode errors, timeout)."""

    state: SessionState = SessionState.IDLE

    end_time: float = 0.0
    """The deadline, as a time.monotonic() value. Set when the session is opened."""

    headers: List[DeviceHeader]
    """The devices seen so far, in first-seen order. Owned by the aggregation loop."""

    seen_hw_addrs: Set[bytes]
    """The hardware addresses of the devices in headers."""

    discovery_socket: Optional[DiscoverySocket] = None
    subscriber: Optional[HeaderSubscriber] = None

    def __init__(
            self,
            timeout: float=DEFAULT_DISCOVERY_TIMEOUT,
            port: int=PIXELPUSHER_DISCOVERY_PORT,
            bind_address: str='',
            reuse_address: bool=False,
            max_devices: int=0,
            observer: Optional[DiscoveryObserver]=None,
          ):
        """Create a discovery session. Nothing is bound until the session is opened.

        Parameters:
            timeout:        The length of the discovery window, in seconds. Defaults to 3.0.
            port:           The UDP port to listen on. Defaults to 7331. 0 binds an OS-assigned port.
            bind_address:   The local address to bind to. Defaults to '' (all interfaces).
            reuse_address:  If True, allow other sockets to share the port. Defaults to False.
            max_devices:    If > 0, end the session once this many distinct devices are seen.
                              Defaults to 0 (no limit).
            observer:       The DiscoveryObserver to report events to. Defaults to a
                              LoggingDiscoveryObserver.
        """
        if timeout < 0.0:
            raise ValueError(f"Discovery timeout must not be negative: {timeout}")
        self.timeout = timeout
        self.port = port
        self.bind_address = bind_address
        self.reuse_address = reuse_address
        self.max_devices = max_devices
        self.observer = LoggingDiscoveryObserver() if observer is None else observer
        self.headers = []
        self.seen_hw_addrs = set()

    def __str__(self) -> str:
        return f"DiscoverySession({self.state.value}, devices={len(self.headers)})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def snapshot(self) -> List[DeviceHeader]:
        """A copy of the devices seen so far, in first-seen order."""
        return list(self.headers)

    @property
    def remaining_time(self) -> float:
        """Seconds left in the discovery window; 0.0 once the deadline has passed."""
        if self.state == SessionState.IDLE:
            return self.timeout
        return max(0.0, self.end_time - time.monotonic())

    async def open(self) -> None:
        """Binds the discovery socket and arms the deadline.

        Raises DiscoverySocketError if the socket cannot be bound.
        """
        if self.state != SessionState.IDLE:
            raise DiscoveryError(f"Attempt to reopen {self}")
        self.end_time = time.monotonic() + self.timeout
        discovery_socket = DiscoverySocket(
            port=self.port,
            bind_address=self.bind_address,
            reuse_address=self.reuse_address,
          )
        self.discovery_socket = discovery_socket
        # The subscriber is attached before the socket starts so that no early datagram is missed.
        subscriber = HeaderSubscriber(discovery_socket)
        await subscriber.__aenter__()
        self.subscriber = subscriber
        try:
            await discovery_socket.start()
        except BaseException:
            await self.close()
            raise
        self.state = SessionState.LISTENING
        self.observer.on_listening(discovery_socket.local_addr, self.timeout)

    def handle_received(self, received: ReceivedHeader) -> Optional[DeviceHeader]:
        """Folds one decode result into the snapshot.

        Returns the header if it is from a newly seen device, or None if it was a decode
        error or a repeat broadcast.
        """
        header = received.header
        if header is None:
            self.observer.on_decode_error(received)
            return None
        if header.hw_addr in self.seen_hw_addrs:
            self.observer.on_duplicate(received)
            return None
        self.seen_hw_addrs.add(header.hw_addr)
        self.headers.append(header)
        self.observer.on_device(received)
        return header

    async def iter_devices(self) -> AsyncIterator[DeviceHeader]:
        """Yields each newly discovered device as it arrives, until the deadline passes, the
           socket closes, or max_devices is reached.

           Raises DiscoverySocketError if the socket fails while listening.
        """
        if self.state != SessionState.LISTENING:
            raise DiscoveryError(f"Cannot listen on {self}")
        assert self.subscriber is not None
        while True:
            if self.max_devices > 0 and len(self.headers) >= self.max_devices:
                break
            remaining_time = self.end_time - time.monotonic()
            if remaining_time <= 0.0:
                self.observer.on_timeout(len(self.headers))
                break
            try:
                received = await asyncio.wait_for(self.subscriber.receive(), remaining_time)
            except asyncio.TimeoutError:
                self.observer.on_timeout(len(self.headers))
                break
            if received is None:
                break
            header = self.handle_received(received)
            if header is not None:
                yield header

    def __aiter__(self) -> AsyncIterator[DeviceHeader]:
        return self.iter_devices()

    async def run(self) -> List[DeviceHeader]:
        """Collects devices until the discovery window ends, closes the session, and returns
           the snapshot. An empty list means no devices were seen.
        """
        async for _ in self.iter_devices():
            pass
        await self.close()
        return self.snapshot

    async def close(self) -> None:
        """Closes the socket and waits for its receive side to stop. Idempotent."""
        if self.state in (SessionState.DRAINING, SessionState.CLOSED):
            return
        self.state = SessionState.DRAINING
        try:
            if self.subscriber is not None:
                await self.subscriber.__aexit__(None, None, None)
            if self.discovery_socket is not None:
                await self.discovery_socket.__aexit__(None, None, None)
        finally:
            self.state = SessionState.CLOSED
            self.observer.on_closed(len(self.headers))

    async def __aenter__(self) -> DiscoverySession:
        await self.open()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.close()
        return False

async def discover(
        timeout: float=DEFAULT_DISCOVERY_TIMEOUT,
        port: int=PIXELPUSHER_DISCOVERY_PORT,
        bind_address: str='',
        reuse_address: bool=False,
        max_devices: int=0,
        observer: Optional[DiscoveryObserver]=None,
      ) -> List[DeviceHeader]:
    """Listens for device header broadcasts for `timeout` seconds and returns one header per
       distinct hardware address, in the order the devices were first seen.

       Returns an empty list if no devices were seen. Raises DiscoverySocketError if the
       discovery port cannot be bound or the socket fails.
    """
    async with DiscoverySession(
            timeout=timeout,
            port=port,
            bind_address=bind_address,
            reuse_address=reuse_address,
            max_devices=max_devices,
            observer=observer,
          ) as session:
        return await session.run()
