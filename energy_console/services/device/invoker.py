"""
Command Invoker

Encodes one command call on the line protocol and decodes its declared
outputs:

    (0 in, 0 out), no args:  -> name                       returns None
    otherwise:               -> name, -> arg1 ... -> argN,
                             <- out1 ... <- outK           returns [out1..outK]
                                                           (None when K == 0)

Every transport operation carries its own deadline. After a deadline
failure, replies that arrive late are read and dropped before the call
returns, so they never reach the next command on the same device. The
caller is responsible for serializing calls per device (see DeviceQueue).
"""

import asyncio

from energy_console.common.config import ProtocolSettings
from energy_console.common.exceptions import ProtocolTimeout, TransportError, UnknownCommand, ValidationError
from energy_console.common.logging_setup import get_service_logger

from .catalog import CommandCatalog
from .transport import LineTransport, with_deadline

logger = get_service_logger("device.invoker")

# Most lines dropped after one timeout
MAX_LATE_LINES = 32


class Invoker:
    """
    Arity-driven command caller.

    Handles:
    - Catalog lookup (unknown names fail before any I/O)
    - Argument count validation against the declared input arity
    - Inter-argument pacing for firmware buffering
    - Reading exactly the declared number of output lines
    - Dropping late replies after a timeout
    """

    def __init__(self, settings: ProtocolSettings | None = None):
        self.settings = settings or ProtocolSettings()

    async def call(
        self,
        transport: LineTransport,
        catalog: CommandCatalog,
        name: str,
        args: list[str] | None = None,
        timeout_ms: float | None = None,
    ) -> list[str] | None:
        """
        Invoke one command.

        Args:
            transport: Open transport of the target device
            catalog: The device's command catalog
            name: Command name (must be in the catalog)
            args: Input values, one line each
            timeout_ms: Deadline per transport operation

        Returns:
            Output lines verbatim, or None when the command declares no outputs

        Raises:
            UnknownCommand: name is not in the catalog (no I/O performed)
            ValidationError: fewer args than the declared input arity
            ProtocolTimeout: a send or read exceeded its deadline
        """
        descriptor = catalog.get(name)
        if descriptor is None:
            raise UnknownCommand(name)

        values = [str(a) for a in (args or [])]
        if len(values) < descriptor.input_arity:
            raise ValidationError(
                f"{name} expects {descriptor.input_arity} argument(s), got {len(values)}",
                field="args",
            )

        timeout = timeout_ms if timeout_ms is not None else self.settings.default_timeout_ms

        if descriptor.input_arity == 0 and descriptor.output_arity == 0 and not values:
            await with_deadline(transport.send_line(name), timeout, f"{name} send")
            return None

        try:
            return await self._exchange(transport, name, values, descriptor.output_arity, timeout)
        except ProtocolTimeout:
            await self.discard_late_replies(transport, name)
            raise

    async def _exchange(
        self,
        transport: LineTransport,
        name: str,
        values: list[str],
        output_arity: int,
        timeout: float,
    ) -> list[str] | None:
        await with_deadline(transport.send_line(name), timeout, f"{name} send")
        for value in values:
            await with_deadline(transport.send_line(value), timeout, f"{name} arg send")
            await asyncio.sleep(self.settings.inter_arg_delay_ms / 1000)

        if output_arity == 0:
            return None

        lines = []
        for _ in range(output_arity):
            lines.append(await with_deadline(transport.read_line(), timeout, f"{name} read"))
        return lines

    async def discard_late_replies(self, transport: LineTransport, name: str) -> int:
        """
        Read and drop whatever the device sends within the late-reply
        window, then reset the transport input.

        Returns:
            Number of lines dropped
        """
        window = self.settings.late_reply_window_ms
        dropped = 0
        while window > 0 and dropped < MAX_LATE_LINES:
            try:
                line = await with_deadline(transport.read_line(), window, f"{name} late reply")
            except (ProtocolTimeout, TransportError):
                break
            dropped += 1
            logger.debug(f"Dropped late reply to {name}: {line!r}")

        transport.reset_input()
        if dropped:
            logger.warning(f"Dropped {dropped} late line(s) after {name} timed out")
        return dropped


def timed_out(error: Exception) -> bool:
    """True for deadline failures (device status TIMEOUT rather than ERROR)"""
    return isinstance(error, ProtocolTimeout)
