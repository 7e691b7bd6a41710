#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DiscoverySocket -- an async UDP socket that:

  1. Binds to the PixelPusher discovery port (7331) on all interfaces
  2. Decodes every received datagram into a DeviceHeader
  3. Delivers each decode result, including decode failures, to any number of async subscribers

  The subscriber interface is a simple async iterator that returns a sequence of ReceivedHeader
  objects until the socket is closed. Each subscriber has its own bounded queue, so a subscriber
  is a single-producer/single-consumer channel from the socket's receive side to one consumer.

  Closing the socket (stop()) removes its reader from the event loop; wait_for_done() returns once
  the transport has reported connection_lost, after which no further datagrams are delivered.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import socket
import sys
import time
import datetime

from .internal_types import *
from .pkg_logging import logger
from .constants import PIXELPUSHER_DISCOVERY_PORT, MAX_QUEUE_SIZE
from .exceptions import DecodeError, DiscoverySocketError
from .device_header import DeviceHeader, decode_header

class ReceivedHeader:
    """The result of decoding one received datagram."""

    src_addr: HostAndPort
    """The source address of the datagram"""

    raw_data: bytes
    """The raw datagram contents"""

    header: Optional[DeviceHeader]
    """The decoded header, or None if the datagram could not be decoded"""

    error: Optional[DecodeError]
    """The decode failure, or None if the datagram was decoded"""

    monotonic_time: float
    """The local time (in seconds) since an arbitrary point in the past at which
       the datagram was received, as returned by time.monotonic()."""

    utc_time: datetime.datetime
    """The UTC time at which the datagram was received."""

    def __init__(
            self,
            src_addr: HostAndPort,
            raw_data: bytes,
            header: Optional[DeviceHeader]=None,
            error: Optional[DecodeError]=None,
          ) -> None:
        assert (header is None) != (error is None)
        self.src_addr = src_addr
        self.raw_data = raw_data
        self.header = header
        self.error = error
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    @classmethod
    def from_datagram(cls, src_addr: HostAndPort, data: bytes) -> ReceivedHeader:
        """Decodes a datagram, capturing a DecodeError instead of raising it."""
        try:
            return cls(src_addr, data, header=decode_header(data))
        except DecodeError as e:
            return cls(src_addr, data, error=e)

    def __str__(self) -> str:
        result = self.header if self.error is None else self.error
        return f"ReceivedHeader(from {self.src_addr[0]}:{self.src_addr[1]}: {result})"

    def __repr__(self) -> str:
        return str(self)

def _set_future_exception(future: Future[None], exc: BaseException) -> None:
    if isinstance(exc, asyncio.CancelledError):
        future.cancel()
    else:
        future.set_exception(exc)

class _DiscoverySocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and DiscoverySocket."""

    discovery_socket: DiscoverySocket

    def __init__(self, discovery_socket: DiscoverySocket):
        self.discovery_socket = discovery_socket

    def connection_made(self, transport: asyncio.BaseTransport):
        """Called when a connection is made."""
        logger.debug(f"Connection made: {self.discovery_socket}")

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        """Called when some datagram is received."""
        try:
            self.discovery_socket.datagram_received(addr, data)
        except BaseException as e:
            self.discovery_socket.set_final_exception(e)
            raise

    def error_received(self, exc: Exception):
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        try:
            self.discovery_socket.error_received(exc)
        except BaseException as e:
            self.discovery_socket.set_final_exception(e)
            raise

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        self.discovery_socket.connection_lost(exc)

class HeaderSubscriber(
        AsyncContextManager['HeaderSubscriber'],
        AsyncIterable[ReceivedHeader]
      ):
    """A bounded channel of ReceivedHeader objects from one DiscoverySocket to one consumer.

    Must be created while an event loop is running.
    """

    discovery_socket: DiscoverySocket
    queue: asyncio.Queue[Optional[ReceivedHeader]]
    final_result: Future[None]
    eos: bool = False
    eos_exc: Optional[BaseException] = None

    def __init__(self, discovery_socket: DiscoverySocket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.discovery_socket = discovery_socket
        self.queue = asyncio.Queue(max_queue_size)
        self.final_result = asyncio.get_running_loop().create_future()

    async def __aenter__(self) -> HeaderSubscriber:
        await self.discovery_socket.add_subscriber(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.discovery_socket.remove_subscriber(self)
        self.set_final_result()
        try:
            # ensure that final_result has been awaited
            await self.final_result
        except BaseException:
            pass
        return False

    async def iter_received(self) -> AsyncIterator[ReceivedHeader]:
        while True:
            result = await self.receive()
            if result is None:
                break
            yield result

    def __aiter__(self) -> AsyncIterator[ReceivedHeader]:
        return self.iter_received()

    def set_final_result(self) -> None:
        if not self.final_result.done():
            self.final_result.set_result(None)
            self.eos = True
            self._wake_receiver()

    def set_final_exception(self, e: BaseException) -> None:
        if not self.final_result.done():
            _set_future_exception(self.final_result, e)
            self.eos = True
            self._wake_receiver()

    def _wake_receiver(self) -> None:
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            # queue is full so waiters will wake up soon
            pass

    def _finish(self) -> None:
        if self.eos_exc is None:
            self.set_final_result()
        else:
            self.set_final_exception(self.eos_exc)

    async def receive(self) -> Optional[ReceivedHeader]:
        """Returns the next ReceivedHeader, or None once the socket has closed and the queue is drained.

        Raises the socket's terminal exception (a DiscoverySocketError) if the socket failed.
        """
        if self.final_result.done():
            await self.final_result
            return None
        if self.eos and self.queue.empty():
            self._finish()
            await self.final_result
            return None
        result = await self.queue.get()
        self.queue.task_done()
        if result is None:
            if not self.final_result.done():
                assert self.eos
                self._finish()
            await self.final_result
            return None
        return result

    def on_received(self, received: ReceivedHeader) -> None:
        if not self.eos and not self.final_result.done():
            try:
                self.queue.put_nowait(received)
            except asyncio.QueueFull:
                logger.warning(f"Queue full, dropping {received}")

    def on_end_of_stream(self, exc: Optional[BaseException]=None) -> None:
        if not self.eos and not self.final_result.done():
            self.eos = True
            self.eos_exc = exc
            self._wake_receiver()

class DiscoverySocket(AsyncContextManager['DiscoverySocket']):
    """
    An async UDP socket bound to the discovery port that decodes received device headers and
    delivers them to subscribers.
    """

    port: int
    """The UDP port to bind to. 0 binds an OS-assigned port."""

    bind_address: str
    """The local address to bind to. '' binds all interfaces, which is required to receive broadcasts."""

    reuse_address: bool
    """If True, SO_REUSEADDR (and SO_REUSEPORT where available) is set so that several processes can
       share the port. If False, a second bind of the same port fails."""

    sock: Optional[socket.socket] = None
    """The low-level bound socket."""

    _local_addr: Optional[HostAndPort] = None

    transport: Optional[asyncio.DatagramTransport] = None

    final_result: Optional[Future[None]] = None
    """A future that is set when the socket is closed. Created by start()."""

    subscribers: Set[HeaderSubscriber]
    """The subscribers that receive decoded headers."""

    def __init__(
            self,
            port: int=PIXELPUSHER_DISCOVERY_PORT,
            bind_address: str='',
            reuse_address: bool=False,
          ):
        self.port = port
        self.bind_address = bind_address
        self.reuse_address = reuse_address
        self.subscribers = set()

    def __str__(self) -> str:
        if self._local_addr is None:
            return f"DiscoverySocket(unbound: {self.bind_address}:{self.port})"
        host, port = self._local_addr
        return f"DiscoverySocket({host}:{port})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def local_addr(self) -> HostAndPort:
        """The address the socket is actually bound to."""
        assert self._local_addr is not None
        return self._local_addr

    async def add_subscriber(self, subscriber: HeaderSubscriber) -> None:
        self.subscribers.add(subscriber)

    async def remove_subscriber(self, subscriber: HeaderSubscriber) -> None:
        self.subscribers.discard(subscriber)

    def create_socket(self) -> socket.socket:
        """Creates and binds the low-level socket. Subclasses can override to change socket options."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if self.reuse_address:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                if sys.platform not in ( 'win32', 'cygwin' ):
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self.bind_address, self.port))
            host, port = sock.getsockname()[:2]
            self._local_addr = (host, port)
        except BaseException:
            sock.close()
            raise
        return sock

    async def start(self) -> None:
        if self.final_result is not None:
            raise DiscoverySocketError(f"Attempt to restart {self}")
        loop = asyncio.get_running_loop()
        self.final_result = loop.create_future()
        try:
            try:
                self.sock = self.create_socket()
            except OSError as e:
                raise DiscoverySocketError(f"Unable to bind discovery socket to {self.bind_address or '0.0.0.0'}:{self.port}: {e}") from e
            untyped_transport, _ = await loop.create_datagram_endpoint(
                lambda: _DiscoverySocketProtocol(self),
                sock=self.sock
              )
            # asyncio datagram transports do not inherit from asyncio.DatagramTransport, but implement the same interface.
            transport: asyncio.DatagramTransport = untyped_transport # type: ignore[assignment]
            self.transport = transport
            logger.debug(f"Created datagram endpoint for {self}")
        except BaseException as e:
            self.set_final_exception(e)
            try:
                await self.wait_for_done()
            except BaseException:
                pass
            raise

    async def stop(self) -> None:
        """Closes the socket. The receive side stops once the transport reports connection_lost."""
        if self.final_result is None:
            return
        if self.transport is None:
            # never got a transport, so connection_lost will not be called
            self.set_final_result()
        else:
            self.transport.close()

    async def wait_for_done(self) -> None:
        if self.final_result is None:
            return
        await self.final_result

    async def stop_and_wait(self) -> None:
        await self.stop()
        await self.wait_for_done()

    @property
    def is_done(self) -> bool:
        return self.final_result is not None and self.final_result.done()

    def datagram_received(self, addr: HostAndPort, data: bytes) -> None:
        """Called when some datagram is received."""
        received = ReceivedHeader.from_datagram(addr, data)
        logger.debug(f"Received datagram on {self}: {received}")
        for subscriber in list(self.subscribers):
            try:
                subscriber.on_received(received)
            except Exception as e:
                logger.warning(f"Subscriber raised exception processing {received}: {e}")

    def error_received(self, exc: Exception) -> None:
        """Called when a receive operation raises an OSError. Fatal to the socket."""
        logger.info(f"Error received on {self}: {exc}")
        socket_error = DiscoverySocketError(f"Receive failed on {self}: {exc}")
        socket_error.__cause__ = exc
        self._end_subscribers(socket_error)
        self.set_final_exception(socket_error)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        logger.debug(f"Connection to transport lost on {self}, exc={exc}")
        self.transport = None
        if exc is None:
            self._end_subscribers(None)
            self.set_final_result()
        else:
            socket_error = DiscoverySocketError(f"Connection lost on {self}: {exc}")
            socket_error.__cause__ = exc
            self._end_subscribers(socket_error)
            self.set_final_exception(socket_error)

    def _end_subscribers(self, exc: Optional[BaseException]) -> None:
        for subscriber in list(self.subscribers):
            try:
                subscriber.on_end_of_stream(exc)
            except Exception as e:
                logger.warning(f"Subscriber raised exception processing end of stream: {e}")

    def _close_transport(self) -> None:
        if self.transport is not None:
            try:
                self.transport.close()
            except Exception as e:
                logger.error(f"Error closing transport on {self}: {e}")
        elif self.sock is not None:
            self.sock.close()

    def set_final_exception(self, exc: BaseException) -> None:
        assert exc is not None
        assert self.final_result is not None
        if not self.final_result.done():
            logger.debug(f"DiscoverySocket: Setting final exception: {exc}")
            _set_future_exception(self.final_result, exc)
            self._end_subscribers(exc)
            self._close_transport()

    def set_final_result(self) -> None:
        assert self.final_result is not None
        if not self.final_result.done():
            logger.debug(f"DiscoverySocket: Setting final result to success")
            self.final_result.set_result(None)
            self._end_subscribers(None)
            self._close_transport()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        try:
            await self.stop_and_wait()
        except Exception as e:
            logger.debug(f"{self} finished with exception: {e}")
        return False
