#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
HeaderAnnouncer -- broadcasts a device header to the discovery port at a fixed interval, the way a
PixelPusher-class device does. Useful for exercising discovery without hardware.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import socket

from .internal_types import *
from .pkg_logging import logger
from .constants import PIXELPUSHER_DISCOVERY_PORT, BROADCAST_ADDRESS, DEFAULT_ANNOUNCE_INTERVAL
from .device_header import DeviceHeader, encode_header

class _AnnouncerProtocol(asyncio.DatagramProtocol):
    announcer: HeaderAnnouncer

    def __init__(self, announcer: HeaderAnnouncer):
        self.announcer = announcer

    def error_received(self, exc: Exception):
        logger.info(f"Error sending announcement from {self.announcer}: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.announcer.connection_lost(exc)

class HeaderAnnouncer(AsyncContextManager['HeaderAnnouncer']):
    header: DeviceHeader
    """The header to broadcast. May be replaced while the announcer is running."""

    interval: float
    """Seconds between broadcasts. If 0.0, nothing is sent automatically; call announce() instead."""

    broadcast_address: str
    port: int

    max_announcements: int
    """If > 0, the announcer stops by itself after this many broadcasts."""

    num_announcements: int = 0

    transport: Optional[asyncio.DatagramTransport] = None
    final_result: Optional[Future[None]] = None
    announcer_task: Optional[asyncio.Task[None]] = None

    def __init__(
            self,
            header: DeviceHeader,
            interval: float=DEFAULT_ANNOUNCE_INTERVAL,
            broadcast_address: str=BROADCAST_ADDRESS,
            port: int=PIXELPUSHER_DISCOVERY_PORT,
            max_announcements: int=0,
          ) -> None:
        self.header = header
        self.interval = interval
        self.broadcast_address = broadcast_address
        self.port = port
        self.max_announcements = max_announcements

    def __str__(self) -> str:
        return f"HeaderAnnouncer({self.header.hw_addr_str} -> {self.broadcast_address}:{self.port})"

    def __repr__(self) -> str:
        return str(self)

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self.final_result = loop.create_future()
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind(('', 0))
            untyped_transport, _ = await loop.create_datagram_endpoint(
                lambda: _AnnouncerProtocol(self),
                sock=sock
              )
        except BaseException:
            sock.close()
            self.final_result.set_result(None)
            raise
        transport: asyncio.DatagramTransport = untyped_transport # type: ignore[assignment]
        self.transport = transport
        if self.interval > 0.0:
            self.announcer_task = asyncio.create_task(self._run_announcer_task())

    def announce(self) -> None:
        """Broadcasts the header once."""
        assert self.transport is not None
        logger.debug(f"Announcing {self.header} to {self.broadcast_address}:{self.port}")
        self.transport.sendto(encode_header(self.header), (self.broadcast_address, self.port))
        self.num_announcements += 1

    async def _run_announcer_task(self) -> None:
        logger.debug(f"Announcer task starting, announcing every {self.interval} seconds")
        assert self.interval > 0.0
        assert self.final_result is not None
        try:
            while not self.final_result.done():
                self.announce()
                if self.max_announcements > 0 and self.num_announcements >= self.max_announcements:
                    break
                try:
                    await asyncio.wait_for(asyncio.shield(self.final_result), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.debug("Announcer task cancelled; exiting")
            raise
        except BaseException as e:
            logger.info(f"Announcer task exiting with exception: {e}")
            raise
        logger.debug("Announcer task exiting")
        await self.stop()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.transport = None
        if self.final_result is not None and not self.final_result.done():
            if exc is None:
                self.final_result.set_result(None)
            else:
                self.final_result.set_exception(exc)

    async def stop(self) -> None:
        if self.transport is not None:
            self.transport.close()

    async def wait_for_done(self) -> None:
        assert self.final_result is not None
        try:
            await self.final_result
        finally:
            if self.announcer_task is not None:
                if self.announcer_task is not asyncio.current_task():
                    self.announcer_task.cancel()
                    try:
                        await self.announcer_task
                    except asyncio.CancelledError:
                        pass
                self.announcer_task = None

    async def stop_and_wait(self) -> None:
        await self.stop()
        await self.wait_for_done()

    async def __aenter__(self) -> HeaderAnnouncer:
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
