"""
Line Transport

Newline-terminated ASCII channel to one serial port, built on
pyserial-asyncio-fast stream readers/writers.

Outbound lines are command names or argument values; inbound lines are
response tokens. There is no framing beyond the newline.
"""

import asyncio
from typing import Awaitable, Protocol, TypeVar

import serial_asyncio_fast as serial_asyncio

from energy_console.common.exceptions import ProtocolTimeout, TransportError
from energy_console.common.logging_setup import get_service_logger

logger = get_service_logger("device.transport")

T = TypeVar("T")


class LineTransport(Protocol):
    """Interface every transport implements (serial port or test double)"""

    name: str

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def send_line(self, line: str) -> None: ...

    async def read_line(self) -> str: ...

    def reset_input(self) -> None: ...


async def with_deadline(awaitable: Awaitable[T], timeout_ms: float, label: str) -> T:
    """
    Await an operation, raising ProtocolTimeout tagged with label when
    it does not finish within timeout_ms.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        raise ProtocolTimeout(label, timeout_ms)


class SerialLineTransport:
    """
    Async serial line transport.

    Handles:
    - Opening the port with 8N1 framing at the configured baud rate
    - Writing one line per call (newline appended)
    - Reading one stripped line per call
    - Dropping unread input after a timed-out exchange
    """

    def __init__(self, port: str, baudrate: int = 115200):
        self.name = port
        self.port = port
        self.baudrate = baudrate

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self) -> None:
        """Open the serial port"""
        if self.is_open:
            return

        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity="N",
                stopbits=1,
            )
        except (OSError, ValueError) as e:
            raise TransportError(f"Cannot open {self.port}: {e}", port=self.port)

        logger.info(f"Opened {self.port} at {self.baudrate} baud")

    async def close(self) -> None:
        """Close the serial port"""
        if self._writer is None:
            return

        writer = self._writer
        self._writer = None
        self._reader = None
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing {self.port}: {e}")
        logger.info(f"Closed {self.port}")

    async def send_line(self, line: str) -> None:
        """Write one newline-terminated line"""
        if not self.is_open:
            raise TransportError(f"{self.port} is not open", port=self.port)

        try:
            self._writer.write(f"{line}\n".encode("ascii", errors="replace"))
            await self._writer.drain()
        except OSError as e:
            raise TransportError(f"Write to {self.port} failed: {e}", port=self.port)

    async def read_line(self) -> str:
        """Read one line, without the line terminator"""
        if self._reader is None:
            raise TransportError(f"{self.port} is not open", port=self.port)

        try:
            raw = await self._reader.readline()
        except OSError as e:
            raise TransportError(f"Read from {self.port} failed: {e}", port=self.port)

        if not raw:
            raise TransportError(f"{self.port} closed by peer", port=self.port)

        return raw.decode("ascii", errors="replace").strip()

    def reset_input(self) -> None:
        """Drop input the port has received but nobody has read yet"""
        if self._writer is None:
            return
        try:
            self._writer.transport.serial.reset_input_buffer()
        except OSError as e:
            logger.debug(f"Input reset on {self.port} failed: {e}")
