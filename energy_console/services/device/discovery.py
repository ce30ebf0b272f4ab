"""
Command Discovery

Echo handshake that enumerates a device's command catalog:

    -> getCommands
    <- getKW>1          (record, then echo "getKW")
    -> getKW
    <- setLoad<1        (record, then echo "setLoad")
    ...
    <- eoc              (stop)

Firmware only advances to the next signature after the echo. Empty
reads are retried a bounded number of times; giving up yields the
partial catalog, not an error.

Also holds the *ID? identification exchange run right after a port opens.
"""

import asyncio
import time

from energy_console.common.config import ProtocolSettings
from energy_console.common.exceptions import ProtocolTimeout
from energy_console.common.logging_setup import get_service_logger

from .catalog import END_OF_COMMANDS, CommandCatalog, parse_signature
from .transport import LineTransport, with_deadline

logger = get_service_logger("device.discovery")

ENUMERATE_COMMAND = "getCommands"
IDENTIFY_COMMAND = "*ID?"


async def _read_or_blank(transport: LineTransport, timeout_ms: float) -> str:
    """Read one stripped line; a timed-out read counts as blank"""
    try:
        line = await with_deadline(transport.read_line(), timeout_ms, "discovery read")
        return line.strip()
    except ProtocolTimeout:
        return ""


async def discover_commands(
    transport: LineTransport,
    settings: ProtocolSettings | None = None,
) -> CommandCatalog:
    """
    Run the enumerate handshake on an open transport.

    Args:
        transport: Open line transport
        settings: Protocol timing (defaults when omitted)

    Returns:
        CommandCatalog with every signature received before eoc, the
        blank-read ceiling, the command ceiling or the overall deadline
    """
    settings = settings or ProtocolSettings()
    catalog = CommandCatalog()

    await transport.send_line(ENUMERATE_COMMAND)
    started = time.monotonic()
    blank_streak = 0
    received = 0

    await asyncio.sleep(settings.discovery_first_read_delay_ms / 1000)
    line = await _read_or_blank(transport, settings.discovery_first_read_timeout_ms)

    while (
        time.monotonic() - started < settings.discovery_timeout_s
        and received < settings.discovery_max_commands
    ):
        if not line:
            blank_streak += 1
            if blank_streak >= settings.discovery_max_blank_reads:
                logger.warning(
                    f"{transport.name}: {blank_streak} blank reads, "
                    f"stopping with {len(catalog)} commands"
                )
                break
            await asyncio.sleep(settings.discovery_blank_retry_delay_ms / 1000)
            line = await _read_or_blank(transport, settings.discovery_read_timeout_ms)
            continue

        blank_streak = 0

        if line == END_OF_COMMANDS:
            logger.debug(f"{transport.name}: reached {END_OF_COMMANDS}")
            break

        received += 1
        descriptor = parse_signature(line)
        if descriptor is None:
            logger.warning(f"{transport.name}: ignoring unparseable signature {line!r}")
        else:
            catalog.add(descriptor)

        # Acknowledge so the firmware sends the next signature
        await transport.send_line(descriptor.name if descriptor else line)
        await asyncio.sleep(settings.discovery_echo_delay_ms / 1000)

        line = await _read_or_blank(transport, settings.discovery_read_timeout_ms)

    logger.info(
        f"{transport.name}: discovered {len(catalog)} commands",
        extra={"port": transport.name, "command_count": len(catalog)},
    )
    return catalog


async def identify(transport: LineTransport, timeout_ms: float = 2000) -> str:
    """
    Ask a freshly opened board who it is.

    Returns:
        The raw *ID? reply, or "" when the board stays silent
    """
    await transport.send_line(IDENTIFY_COMMAND)
    reply = await _read_or_blank(transport, timeout_ms)
    logger.info(f"{transport.name}: *ID? -> {reply!r}")
    return reply
