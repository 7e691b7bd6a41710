#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging
from ipaddress import IPv4Address
from signal import SIGINT, SIGTERM

from pixelpusher_discovery.internal_types import *

from pixelpusher_discovery import (
    __version__ as pkg_version,
    DeviceType,
    BaseHeader,
    PixelPusherHeader,
    DeviceHeader,
    DiscoverySession,
    DeviceRegistry,
    DeviceRecord,
    RegistryEvent,
    HeaderAnnouncer,
    filter_by_device_type,
    format_hw_addr,
    parse_hw_addr,
    get_interface_addresses,
    get_local_ip_addresses,
    PIXELPUSHER_DISCOVERY_PORT,
    BROADCAST_ADDRESS,
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_ANNOUNCE_INTERVAL,
    DEFAULT_EXPIRY_TIME,
  )

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def _device_type_arg(value: str) -> DeviceType:
    try:
        return DeviceType.from_name(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e

def _print_json(value: JsonableDict) -> None:
    print(json.dumps(value, indent=2, sort_keys=True))
    sys.stdout.flush()

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    async def _run_until_signal(self, final_result: asyncio.Future[None], stop: Callable[[], Awaitable[None]]) -> None:
        """Waits for final_result, stopping early on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        sig_event = asyncio.Event()
        for signal in (SIGINT, SIGTERM):
            loop.add_signal_handler(signal, sig_event.set)
        try:
            sig_task = asyncio.create_task(sig_event.wait())
            await asyncio.wait([sig_task, final_result], return_when=asyncio.FIRST_COMPLETED)
            if sig_event.is_set():
                logging.debug("Detected SIGINT/SIGTERM, stopping")
                await stop()
            sig_task.cancel()
        finally:
            for signal in (SIGINT, SIGTERM):
                loop.remove_signal_handler(signal)

    async def cmd_discover(self) -> int:
        timeout: float = self._args.timeout
        device_type: Optional[DeviceType] = self._args.device_type
        max_devices: int = self._args.max_devices
        async with DiscoverySession(
                timeout=timeout,
                port=self._args.port,
                bind_address=self._args.bind_address,
                reuse_address=self._args.reuse_address,
                max_devices=max_devices,
              ) as session:
            headers = await session.run()
        if device_type is not None:
            headers = filter_by_device_type(headers, device_type)
        for header in headers:
            _print_json(header.to_jsonable())
        if len(headers) == 0 and self._args.require_devices:
            raise CmdExitError(2, "No devices found")
        return 0

    async def cmd_watch(self) -> int:
        async def change_handler(event: RegistryEvent, record: DeviceRecord) -> None:
            summary: JsonableDict = {
                "event": event.value,
                "src_addr": f"{record.src_addr[0]}:{record.src_addr[1]}",
                "broadcast_count": record.broadcast_count,
                "utc_last_seen": record.utc_last_seen.isoformat(),
                "header": record.header.to_jsonable(),
            }
            _print_json(summary)

        registry = DeviceRegistry(
            expiry_time=self._args.expiry_time,
            port=self._args.port,
            bind_address=self._args.bind_address,
            reuse_address=self._args.reuse_address,
          )
        registry.add_change_handler(change_handler)
        async with registry:
            assert registry.discovery_socket is not None
            assert registry.discovery_socket.final_result is not None
            await self._run_until_signal(registry.discovery_socket.final_result, registry.stop)
        return 0

    def _build_announce_header(self) -> DeviceHeader:
        args = self._args
        device_type: DeviceType = args.device_type or DeviceType.PIXELPUSHER
        hw_addr: Optional[bytes] = None if args.hw_addr is None else parse_hw_addr(args.hw_addr)
        ip_addr: Optional[IPv4Address] = None if args.ip_addr is None else IPv4Address(args.ip_addr)
        if args.interface is not None:
            if_addrs = get_interface_addresses(args.interface)
            if hw_addr is None:
                hw_addr = if_addrs.hw_addr
            if ip_addr is None:
                ip_addr = if_addrs.ip_addr
        if hw_addr is None:
            raise CmdExitError(1, "A hardware address is required (--mac, or --interface with a hardware address)")
        if ip_addr is None:
            local_ips = get_local_ip_addresses(include_loopback=False)
            ip_addr = IPv4Address(local_ips[0]) if len(local_ips) > 0 else IPv4Address('127.0.0.1')
        base_header = BaseHeader(hw_addr, ip_addr, device_type, protocol_version=args.protocol_version)
        if device_type != DeviceType.PIXELPUSHER:
            return base_header
        return PixelPusherHeader(
            base_header,
            strips_attached=args.strips,
            max_strips_per_packet=args.strips,
            pixels_per_strip=args.pixels,
            controller_ordinal=args.controller,
            group_ordinal=args.group,
            my_port=args.pusher_port,
          )

    async def cmd_announce(self) -> int:
        header = self._build_announce_header()
        broadcast_address: Optional[str] = self._args.broadcast_address
        if broadcast_address is None and self._args.interface is not None:
            if_broadcast = get_interface_addresses(self._args.interface).broadcast_addr
            if if_broadcast is not None:
                broadcast_address = str(if_broadcast)
        if broadcast_address is None:
            broadcast_address = BROADCAST_ADDRESS
        logging.info(f"Announcing {header} to {broadcast_address}:{self._args.port}")
        async with HeaderAnnouncer(
                header,
                interval=self._args.interval,
                broadcast_address=broadcast_address,
                port=self._args.port,
                max_announcements=self._args.count,
              ) as announcer:
            assert announcer.final_result is not None
            await self._run_until_signal(announcer.final_result, announcer.stop)
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the pixelpusher-discovery command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Discover PixelPusher LED controllers on the local network.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')

        def add_socket_args(p: argparse.ArgumentParser) -> None:
            p.add_argument('--port', type=int, default=PIXELPUSHER_DISCOVERY_PORT,
                            help=f'''The UDP discovery port. Default: {PIXELPUSHER_DISCOVERY_PORT}''')
            p.add_argument('-b', '--bind', dest="bind_address", default='',
                            help='''The local IP address to bind to. Default: all interfaces''')
            p.add_argument('--reuse-address', dest="reuse_address", action='store_true', default=False,
                            help='Allow other processes to listen on the discovery port at the same time. Default: False')

        # ======================= discover

        parser_discover = subparsers.add_parser('discover', description="Listen for device broadcasts and list the devices seen")
        parser_discover.add_argument('--timeout', type=float, default=DEFAULT_DISCOVERY_TIMEOUT,
                            help=f'''The amount of time to listen, in seconds. Default: {DEFAULT_DISCOVERY_TIMEOUT}''')
        parser_discover.add_argument('-t', '--type', dest="device_type", type=_device_type_arg, default=None,
                            help='''Only list devices of this type (pixelpusher, etherdream, lumiabridge, unknown). Default: all''')
        parser_discover.add_argument('--max-devices', type=int, default=0,
                            help='Stop listening after this many devices. Default: 0 (no limit)')
        parser_discover.add_argument('--require-devices', action='store_true', default=False,
                            help='Exit with status 2 if no devices are found. Default: False')
        add_socket_args(parser_discover)
        parser_discover.set_defaults(func=self.cmd_discover)

        # ======================= watch

        parser_watch = subparsers.add_parser('watch', description="Track devices until interrupted, printing each change")
        parser_watch.add_argument('--expiry-time', type=float, default=DEFAULT_EXPIRY_TIME,
                            help=f'''Forget a device after this many seconds without a broadcast. Default: {DEFAULT_EXPIRY_TIME}''')
        add_socket_args(parser_watch)
        parser_watch.set_defaults(func=self.cmd_watch)

        # ======================= announce

        parser_announce = subparsers.add_parser('announce', description="Broadcast a device header, emulating a device")
        parser_announce.add_argument('--mac', dest="hw_addr", default=None,
                            help='''The hardware address to announce. Default: that of --interface''')
        parser_announce.add_argument('--ip', dest="ip_addr", default=None,
                            help='''The IP address to announce. Default: that of --interface, or the preferred local address''')
        parser_announce.add_argument('-i', '--interface', default=None,
                            help='''The network interface whose addresses and broadcast address to use''')
        parser_announce.add_argument('--broadcast', dest="broadcast_address", default=None,
                            help=f'''The address to send to. Default: the broadcast address of --interface, or {BROADCAST_ADDRESS}''')
        parser_announce.add_argument('-t', '--type', dest="device_type", type=_device_type_arg, default=None,
                            help='''The device type to announce. Default: pixelpusher''')
        parser_announce.add_argument('--protocol-version', type=int, default=0,
                            help='The protocol version to announce. Default: 0')
        parser_announce.add_argument('--strips', type=int, default=8,
                            help='Number of strips attached. Default: 8')
        parser_announce.add_argument('--pixels', type=int, default=480,
                            help='Pixels per strip. Default: 480')
        parser_announce.add_argument('--controller', type=int, default=0,
                            help='Controller ordinal. Default: 0')
        parser_announce.add_argument('--group', type=int, default=0,
                            help='Group ordinal. Default: 0')
        parser_announce.add_argument('--pusher-port', type=int, default=9897,
                            help='The pixel data port to announce. Default: 9897')
        parser_announce.add_argument('--interval', type=float, default=DEFAULT_ANNOUNCE_INTERVAL,
                            help=f'''Seconds between broadcasts. Default: {DEFAULT_ANNOUNCE_INTERVAL}''')
        parser_announce.add_argument('--count', type=int, default=0,
                            help='Stop after this many broadcasts. Default: 0 (until interrupted)')
        parser_announce.add_argument('--port', type=int, default=PIXELPUSHER_DISCOVERY_PORT,
                            help=f'''The UDP discovery port to send to. Default: {PIXELPUSHER_DISCOVERY_PORT}''')
        parser_announce.set_defaults(func=self.cmd_announce)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"pixelpusher-discovery: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"pixelpusher-discovery: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
