"""
Energy Console CLI

Command-line tool for the console and for one-off serial work.

Usage:
    # Run the console (services + HTTP)
    energy-console run --config config.yaml

    # Identify the board on a port and list its command catalog
    energy-console discover --port /dev/ttyUSB0

    # Run one command on the board behind a port
    energy-console call --port /dev/ttyUSB0 setLoad 2.5

Output of discover/call is JSON for easy parsing by other tools.
"""

import argparse
import asyncio
import json
import sys
import traceback

from .common.config import ConsoleConfig, load_console_config
from .common.exceptions import ConsoleError
from .common.notifications import Notifier
from .common.state import MemoryStore
from .services.device import DeviceService
from .services.device.discovery import discover_commands


def _device_service(config: ConsoleConfig, transport_factory=None) -> DeviceService:
    """Throwaway device service (in-memory state, safe mode off)"""
    return DeviceService(config, MemoryStore(), Notifier(), transport_factory)


async def discover_port(
    config: ConsoleConfig,
    port: str,
    handshake: bool = False,
    transport_factory=None,
) -> dict:
    """
    Identify the board on a port.

    Returns:
        {
            "success": bool,
            "port": str,
            "device": {...},      # id, name, kind, role, commands
            "error": str          # only on failure
        }
    """
    result = {"success": False, "port": port}
    service = _device_service(config, transport_factory)
    try:
        record = await service.add_port(port, connect=False)
        if handshake and record.transport is not None:
            # Re-run the echo handshake even for kinds with a built-in catalog
            record.catalog = await discover_commands(record.transport, config.protocol)
        result["device"] = record.to_dict()
        result["success"] = True
    except ConsoleError as e:
        result["error"] = e.message
    finally:
        await service.stop()
    return result


async def call_command(
    config: ConsoleConfig,
    port: str,
    command: str,
    args: list[str],
    timeout_ms: float | None = None,
    transport_factory=None,
) -> dict:
    """
    Run one command on the board behind a port.

    Returns:
        {
            "success": bool,
            "port": str,
            "device": str,
            "command": str,
            "args": [...],
            "result": [...] | null,
            "error": str          # only on failure
        }
    """
    result = {"success": False, "port": port, "command": command, "args": args}
    service = _device_service(config, transport_factory)
    try:
        record = await service.add_port(port)
        result["device"] = record.name
        result["result"] = await service.execute(
            record.device_id, command, args, timeout_ms, meta={"source": "cli"}
        )
        result["success"] = True
    except ConsoleError as e:
        result["error"] = e.message
    finally:
        await service.stop()
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="energy-console",
        description="Energy testbed operator console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", help="Path to configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    run_parser = subparsers.add_parser("run", help="Run the console")
    run_parser.add_argument("--dry-run", action="store_true", help="Validate configuration and exit")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    discover_parser = subparsers.add_parser("discover", help="Identify a board and list its commands")
    discover_parser.add_argument("--port", required=True, help="Serial port (e.g. /dev/ttyUSB0)")
    discover_parser.add_argument(
        "--handshake",
        action="store_true",
        help="Always run the getCommands handshake, even for kinds with a built-in catalog",
    )

    call_parser = subparsers.add_parser("call", help="Run one command")
    call_parser.add_argument("--port", required=True, help="Serial port (e.g. /dev/ttyUSB0)")
    call_parser.add_argument("--timeout-ms", type=float, help="Deadline per transport operation")
    call_parser.add_argument("name", help="Command name (e.g. getKW)")
    call_parser.add_argument("values", nargs="*", help="Argument values, one per input line")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "run":
        from .main import run

        return run(args.config, dry_run=args.dry_run, verbose=args.verbose)

    config = load_console_config(args.config)

    if args.command == "discover":
        result = asyncio.run(discover_port(config, args.port, handshake=args.handshake))
    else:
        result = asyncio.run(call_command(config, args.port, args.name, args.values, args.timeout_ms))

    print(json.dumps(result, default=str))
    return 0 if result["success"] else 1


def entry_point() -> None:
    try:
        sys.exit(main())
    except ConsoleError as e:
        print(json.dumps({"success": False, "error": e.message}))
        sys.exit(1)
    except Exception as e:
        print(json.dumps({
            "success": False,
            "error": str(e),
            "traceback": traceback.format_exc(),
        }))
        sys.exit(1)


if __name__ == "__main__":
    entry_point()
