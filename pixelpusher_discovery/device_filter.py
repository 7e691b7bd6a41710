#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Queries over a discovery snapshot by device type.
"""

from __future__ import annotations

from .internal_types import *
from .constants import PIXELPUSHER_DISCOVERY_PORT, DEFAULT_DISCOVERY_TIMEOUT
from .device_header import DeviceHeader, DeviceType, PixelPusherHeader
from .discovery import discover
from .observer import DiscoveryObserver

def filter_by_device_type(headers: Iterable[DeviceHeader], device_type: DeviceType) -> List[DeviceHeader]:
    """Returns the headers whose device type is `device_type`, preserving their order."""
    return [ header for header in headers if header.device_type == device_type ]

def pixelpushers(headers: Iterable[DeviceHeader]) -> List[PixelPusherHeader]:
    """Returns the PixelPusher headers, preserving their order."""
    return [ header for header in headers if isinstance(header, PixelPusherHeader) ]

def find_by_hw_addr(headers: Iterable[DeviceHeader], hw_addr: bytes) -> Optional[DeviceHeader]:
    """Returns the header with the given hardware address, or None."""
    for header in headers:
        if header.hw_addr == hw_addr:
            return header
    return None

async def discover_filtered(
        timeout: float=DEFAULT_DISCOVERY_TIMEOUT,
        device_type: DeviceType=DeviceType.PIXELPUSHER,
        port: int=PIXELPUSHER_DISCOVERY_PORT,
        bind_address: str='',
        reuse_address: bool=False,
        observer: Optional[DiscoveryObserver]=None,
      ) -> List[DeviceHeader]:
    """Runs discover() and keeps only the devices of one type. Performs no other network activity."""
    headers = await discover(
        timeout=timeout,
        port=port,
        bind_address=bind_address,
        reuse_address=reuse_address,
        observer=observer,
      )
    return filter_by_device_type(headers, device_type)
