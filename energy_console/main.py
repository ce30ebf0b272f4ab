"""
Energy Console - Entry Point

Starts the console coordinator:
- Device service   - serial ports, discovery, command queue, safe mode
- Telemetry poller - periodic getAll/getKW/getVolts sweeps
- Balance service  - estimates, connection plan, Mode 2
- Flow runner      - scripted command sequences
- HTTP server      - state and command endpoints

Usage:
    python -m energy_console.main                    # Default config search
    python -m energy_console.main --config my.yaml   # Use custom config file
    python -m energy_console.main --dry-run          # Print config and exit
    python -m energy_console.main --verbose          # Enable debug logging
"""

import argparse
import asyncio
import sys

from . import __version__
from .common.config import ConsoleConfig, load_console_config
from .common.exceptions import ConfigError
from .common.logging_setup import setup_logging
from .console import EnergyConsole


def print_startup_banner(config: ConsoleConfig) -> None:
    """Print startup information."""
    ports = ", ".join(config.serial.ports) or "none (add ports over HTTP)"

    print()
    print("=" * 60)
    print("  ENERGY CONSOLE")
    print("=" * 60)
    print()
    print(f"  Serial ports: {ports}")
    print(f"  Baudrate: {config.serial.baudrate}")
    print(f"  Telemetry every {config.telemetry.interval_s:g} s"
          f" (outlier filter {'on' if config.telemetry.outlier_filter_enabled else 'off'})")
    print(f"  Mode 2 auto tick every {config.balance.auto_interval_s:g} s")
    if config.http.enabled:
        print(f"  HTTP: http://{config.http.host}:{config.http.port}/health")
    else:
        print("  HTTP: disabled")
    print(f"  State: {config.state_dir}")
    print()
    print("=" * 60)
    print()


async def main_async(config: ConsoleConfig) -> None:
    """Run the console until SIGINT/SIGTERM"""
    setup_logging("main", log_level=config.log_level, json_format=config.log_level.upper() != "DEBUG")
    console = EnergyConsole(config)
    await console.run_forever()


def run(config_path: str | None = None, dry_run: bool = False, verbose: bool = False) -> int:
    """Load configuration and run the console. Returns a process exit code."""
    try:
        config = load_console_config(config_path)
    except ConfigError as e:
        print(f"Configuration error: {e.message}")
        return 1

    if verbose:
        config.log_level = "DEBUG"

    print_startup_banner(config)

    if dry_run:
        print("Dry run mode - configuration valid")
        return 0

    print("Starting console...")
    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        print("\nStopped by user")
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Energy Console - testbed operator console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument("--dry-run", action="store_true", help="Validate configuration and exit without starting")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose (debug) logging")
    parser.add_argument("--version", action="version", version=f"Energy Console v{__version__}")

    args = parser.parse_args()
    sys.exit(run(args.config, dry_run=args.dry_run, verbose=args.verbose))


if __name__ == "__main__":
    main()
