#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DeviceRegistry -- a long-running listener that:

  1. Listens on the discovery port until stopped
  2. Keeps the most recent header from each hardware address, along with when it was first and last seen
  3. Forgets devices that have not broadcast for expiry_time seconds
  4. Notifies async handlers when a device is added, changes its header, or expires

Unlike a DiscoverySession, a registry has no deadline; it tracks the set of live devices over time.
"""

from __future__ import annotations

import asyncio
import time
import datetime
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import PIXELPUSHER_DISCOVERY_PORT, DEFAULT_EXPIRY_TIME
from .exceptions import DiscoveryError
from .device_header import DeviceHeader, DeviceType, PixelPusherHeader
from .discovery_socket import DiscoverySocket, HeaderSubscriber, ReceivedHeader
from .util import parse_hw_addr

class RegistryEvent(Enum):
    ADDED = "added"
    UPDATED = "updated"
    EXPIRED = "expired"

class DeviceRecord:
    header: DeviceHeader
    """The most recently received header from the device"""

    src_addr: HostAndPort
    """The source address of the most recent broadcast"""

    first_seen: float
    """time.monotonic() when the device was first seen"""

    last_seen: float
    """time.monotonic() when the device was last seen. Used for expiry."""

    utc_last_seen: datetime.datetime

    broadcast_count: int
    """The number of broadcasts received from the device"""

    def __init__(self, received: ReceivedHeader):
        assert received.header is not None
        self.header = received.header
        self.src_addr = received.src_addr
        self.first_seen = received.monotonic_time
        self.last_seen = received.monotonic_time
        self.utc_last_seen = received.utc_time
        self.broadcast_count = 1

    def update(self, received: ReceivedHeader) -> bool:
        """Records a new broadcast from the device. Returns True if the header changed."""
        assert received.header is not None
        changed = received.header != self.header
        self.header = received.header
        self.src_addr = received.src_addr
        self.last_seen = received.monotonic_time
        self.utc_last_seen = received.utc_time
        self.broadcast_count += 1
        return changed

    def age(self, now: Optional[float]=None) -> float:
        """Seconds since the device was last seen."""
        if now is None:
            now = time.monotonic()
        return now - self.last_seen

    def __str__(self) -> str:
        return f"DeviceRecord({self.header}, broadcasts={self.broadcast_count})"

    def __repr__(self) -> str:
        return str(self)

RegistryChangeHandler = Callable[[RegistryEvent, DeviceRecord], Awaitable[None]]
"""A callback for registry changes."""

class DeviceRegistry(AsyncContextManager['DeviceRegistry']):
    expiry_time: float
    """Seconds after its last broadcast at which a device is forgotten. 0.0 disables expiry."""

    port: int
    bind_address: str
    reuse_address: bool

    records: Dict[bytes, DeviceRecord]
    """The live devices, keyed by hardware address, in first-seen order."""

    change_handlers: Dict[int, RegistryChangeHandler]
    """Handlers called on registry changes, indexed by ID number."""

    i_next_change_handler: int = 0

    discovery_socket: Optional[DiscoverySocket] = None
    subscriber: Optional[HeaderSubscriber] = None

    collector_task: Optional[asyncio.Task[None]] = None
    """The task that folds received headers into the registry."""

    expiry_task: Optional[asyncio.Task[None]] = None
    """The task that periodically forgets stale devices."""

    def __init__(
            self,
            expiry_time: float=DEFAULT_EXPIRY_TIME,
            port: int=PIXELPUSHER_DISCOVERY_PORT,
            bind_address: str='',
            reuse_address: bool=False,
          ) -> None:
        self.expiry_time = expiry_time
        self.port = port
        self.bind_address = bind_address
        self.reuse_address = reuse_address
        self.records = {}
        self.change_handlers = {}

    def __str__(self) -> str:
        return f"DeviceRegistry(devices={len(self.records)})"

    def __repr__(self) -> str:
        return str(self)

    def add_change_handler(self, handler: RegistryChangeHandler) -> int:
        """Adds a handler to be called when a device is added, updated or expired."""
        i = self.i_next_change_handler
        self.i_next_change_handler += 1
        self.change_handlers[i] = handler
        return i

    def remove_change_handler(self, i: int) -> None:
        """Removes a previously added change handler."""
        del self.change_handlers[i]

    async def _notify(self, event: RegistryEvent, record: DeviceRecord) -> None:
        for handler in list(self.change_handlers.values()):
            await handler(event, record)

    async def handle_received(self, received: ReceivedHeader) -> None:
        """Folds one decode result into the registry."""
        header = received.header
        if header is None:
            logger.warning(f"Registry ignoring undecodable datagram from {received.src_addr[0]}:{received.src_addr[1]}: {received.error}")
            return
        record = self.records.get(header.hw_addr)
        if record is None:
            record = DeviceRecord(received)
            self.records[header.hw_addr] = record
            logger.info(f"Registry added {header}")
            await self._notify(RegistryEvent.ADDED, record)
        elif record.update(received):
            logger.debug(f"Registry updated {header}")
            await self._notify(RegistryEvent.UPDATED, record)

    async def expire_stale(self, now: Optional[float]=None) -> List[DeviceRecord]:
        """Removes and returns the devices not seen within expiry_time."""
        if self.expiry_time <= 0.0:
            return []
        if now is None:
            now = time.monotonic()
        candidates = [ record for record in self.records.values() if record.age(now) > self.expiry_time ]
        expired: List[DeviceRecord] = []
        for record in candidates:
            hw_addr = record.header.hw_addr
            # a handler awaited below may have let a fresh broadcast in
            if self.records.get(hw_addr) is not record or record.age(now) <= self.expiry_time:
                continue
            del self.records[hw_addr]
            expired.append(record)
            logger.info(f"Registry expired {record.header}")
            await self._notify(RegistryEvent.EXPIRED, record)
        return expired

    def devices(self) -> List[DeviceHeader]:
        """The latest header of every live device, in first-seen order."""
        return [ record.header for record in self.records.values() ]

    def get(self, hw_addr: Union[bytes, str]) -> Optional[DeviceHeader]:
        """Returns the latest header from a hardware address (bytes or "aa:bb:..." string), or None."""
        if isinstance(hw_addr, str):
            hw_addr = parse_hw_addr(hw_addr)
        record = self.records.get(hw_addr)
        return None if record is None else record.header

    def devices_of_type(self, device_type: DeviceType) -> List[DeviceHeader]:
        return [ header for header in self.devices() if header.device_type == device_type ]

    def pixelpushers(self) -> List[PixelPusherHeader]:
        return [ header for header in self.devices() if isinstance(header, PixelPusherHeader) ]

    def __len__(self) -> int:
        return len(self.records)

    async def start(self) -> None:
        if self.discovery_socket is not None:
            raise DiscoveryError(f"Attempt to restart {self}")
        discovery_socket = DiscoverySocket(
            port=self.port,
            bind_address=self.bind_address,
            reuse_address=self.reuse_address,
          )
        self.discovery_socket = discovery_socket
        subscriber = HeaderSubscriber(discovery_socket)
        await subscriber.__aenter__()
        self.subscriber = subscriber
        try:
            await discovery_socket.start()
        except BaseException:
            await subscriber.__aexit__(None, None, None)
            raise
        self.collector_task = asyncio.create_task(self._run_collector_task())
        if self.expiry_time > 0.0:
            self.expiry_task = asyncio.create_task(self._run_expiry_task())

    @property
    def local_addr(self) -> HostAndPort:
        assert self.discovery_socket is not None
        return self.discovery_socket.local_addr

    async def _run_collector_task(self) -> None:
        logger.debug("Registry collector task starting")
        assert self.subscriber is not None
        try:
            async for received in self.subscriber:
                await self.handle_received(received)
        except asyncio.CancelledError:
            logger.debug("Registry collector task cancelled; exiting")
            raise
        except BaseException as e:
            logger.info(f"Registry collector task exiting with exception: {e}")
            raise
        logger.debug("Registry collector task exiting")

    async def _run_expiry_task(self) -> None:
        logger.debug(f"Registry expiry task starting, expiring after {self.expiry_time} seconds")
        try:
            while True:
                await asyncio.sleep(self.expiry_time / 2)
                await self.expire_stale()
        except asyncio.CancelledError:
            logger.debug("Registry expiry task cancelled; exiting")
            raise

    async def wait_for_done(self) -> None:
        """Waits until the registry's socket closes, then stops the background tasks.

        Raises DiscoverySocketError if the socket failed.
        """
        assert self.discovery_socket is not None
        try:
            await self.discovery_socket.wait_for_done()
        finally:
            await self._cancel_tasks()

    async def _cancel_tasks(self) -> None:
        for task in (self.collector_task, self.expiry_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self.collector_task, self.expiry_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning(f"Registry task ended with exception: {e}")
        self.collector_task = None
        self.expiry_task = None

    async def stop(self) -> None:
        if self.discovery_socket is not None:
            await self.discovery_socket.stop()

    async def stop_and_wait(self) -> None:
        await self.stop()
        await self.wait_for_done()

    async def __aenter__(self) -> DeviceRegistry:
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
        finally:
            if self.subscriber is not None:
                await self.subscriber.__aexit__(None, None, None)
        return False
