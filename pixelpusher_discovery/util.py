#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

import netifaces
import re
from ipaddress import IPv4Address

from .internal_types import *

_hw_addr_re = re.compile(r'^[0-9a-fA-F]{2}([:-]?)[0-9a-fA-F]{2}(\1[0-9a-fA-F]{2}){4}$')

def format_hw_addr(hw_addr: bytes) -> str:
    """Formats a 6-byte hardware address as a lowercase colon-delimited string; e.g., "aa:bb:cc:00:01:02"."""
    return ':'.join(f"{b:02x}" for b in hw_addr)

def parse_hw_addr(hw_addr_str: str) -> bytes:
    """Parses a hardware address string into 6 bytes.

    Accepts "AA:BB:CC:00:01:02", "aa-bb-cc-00-01-02" or "aabbcc000102".

    Raises ValueError if the string is not a valid hardware address.
    """
    if not _hw_addr_re.match(hw_addr_str):
        raise ValueError(f"Invalid hardware address: {hw_addr_str!r}")
    return bytes.fromhex(re.sub(r'[:-]', '', hw_addr_str))

class InterfaceAddresses:
    """The addresses of a single local network interface, as needed to emulate a device on it."""

    ifname: str
    ip_addr: IPv4Address
    broadcast_addr: Optional[IPv4Address]
    hw_addr: Optional[bytes]

    def __init__(
            self,
            ifname: str,
            ip_addr: IPv4Address,
            broadcast_addr: Optional[IPv4Address]=None,
            hw_addr: Optional[bytes]=None
          ):
        self.ifname = ifname
        self.ip_addr = ip_addr
        self.broadcast_addr = broadcast_addr
        self.hw_addr = hw_addr

    def __str__(self) -> str:
        hw_addr_str = 'None' if self.hw_addr is None else format_hw_addr(self.hw_addr)
        return f"InterfaceAddresses({self.ifname}: ip={self.ip_addr}, broadcast={self.broadcast_addr}, hw={hw_addr_str})"

    def __repr__(self) -> str:
        return str(self)

def get_interface_addresses(ifname: str) -> InterfaceAddresses:
    """Returns the first IPv4 address, its broadcast address, and the hardware address of a
       named local network interface.

       Raises ValueError if the interface does not exist or has no IPv4 address.
    """
    if ifname not in netifaces.interfaces():
        raise ValueError(f"No such network interface: {ifname}")
    ifinfo = netifaces.ifaddresses(ifname)
    inet_infos = ifinfo.get(netifaces.AF_INET, [])
    if len(inet_infos) == 0:
        raise ValueError(f"Network interface {ifname} has no IPv4 address")
    inet_info = inet_infos[0]
    ip_addr = IPv4Address(inet_info['addr'])
    broadcast_str = inet_info.get('broadcast')
    broadcast_addr = None if broadcast_str is None else IPv4Address(broadcast_str)
    hw_addr: Optional[bytes] = None
    for link_info in ifinfo.get(netifaces.AF_LINK, []):
        try:
            hw_addr = parse_hw_addr(link_info.get('addr', ''))
            break
        except ValueError:
            pass
    return InterfaceAddresses(ifname, ip_addr, broadcast_addr=broadcast_addr, hw_addr=hw_addr)

def get_local_ip_addresses_and_interfaces(include_loopback: bool=True) -> List[Tuple[str, str]]:
    """Returns a list of Tuple[ip_address: str, interface_name: str] for the IPv4 addresses of the
       local host. The result is sorted in a way that attempts to place the "preferred"
       canonical IP address first in the list, according to the following scheme:
           1. Addresses on the default gateway interface precede all other addresses.
           2. Non-loopback addresses precede loopback addresses.
           3. Addresses that begin with 172. follow other addresses. This is a hack to
              deprioritize local docker network addresses.
    """
    result_with_priority: List[Tuple[int, str, str]] = []
    _, default_gateway_ifname = get_default_ip_gateway()
    for ifname in netifaces.interfaces():
        ifinfo = netifaces.ifaddresses(ifname)
        for addrinfo in ifinfo.get(netifaces.AF_INET, []):
            ip_str = addrinfo['addr']
            assert isinstance(ip_str, str)
            if ifname == default_gateway_ifname:
                priority = 0
            elif IPv4Address(ip_str).is_loopback:
                if not include_loopback:
                    continue
                priority = 3
            elif ip_str.startswith('172.'):
                priority = 2
            else:
                priority = 1
            result_with_priority.append((priority, ip_str, ifname))
    return [ (ip, ifname) for _, ip, ifname in sorted(result_with_priority)]

def get_local_ip_addresses(include_loopback: bool=True) -> List[str]:
    """Returns a List[ip_address: str] for the IPv4 addresses of the local host, preferred address first.
       See get_local_ip_addresses_and_interfaces()."""
    return [ ip for ip, _ in get_local_ip_addresses_and_interfaces(include_loopback=include_loopback)]

def get_default_ip_gateway() -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IPv4 gateway, if any.
       returns (None, None) if there is no default gateway."""
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netifaces.AF_INET in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netifaces.AF_INET][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)
