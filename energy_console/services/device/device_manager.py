"""
Device Registry

Owns every identified device: opens the port, runs the *ID? exchange,
builds the command catalog and tracks AVAILABLE/CONNECTED state.
Tearing a device down notifies listeners so the queue and filter
histories for it are dropped as well.
"""

import asyncio
from typing import Callable

from energy_console.common.config import ProtocolSettings, SerialSettings
from energy_console.common.exceptions import DisconnectedError, TransportError
from energy_console.common.logging_setup import get_service_logger

from .catalog import known_catalog
from .discovery import discover_commands, identify
from .models import (
    ConnectionState,
    DeviceRecord,
    base_kind_name,
    infer_role,
    kind_from_reply,
    unique_name,
)
from .transport import LineTransport, SerialLineTransport

logger = get_service_logger("device.manager")

TransportFactory = Callable[[str], LineTransport]
DisconnectListener = Callable[[DeviceRecord], None]


class DeviceRegistry:
    """
    Registry of identified devices.

    Tracks:
    - Device records keyed by id ("dev:<name>")
    - Connection state (available or connected)
    - Listeners run when a device is removed
    """

    def __init__(
        self,
        serial: SerialSettings | None = None,
        protocol: ProtocolSettings | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        self.serial = serial or SerialSettings()
        self.protocol = protocol or ProtocolSettings()
        self._transport_factory = transport_factory or (
            lambda port: SerialLineTransport(port, self.serial.baudrate)
        )
        self._devices: dict[str, DeviceRecord] = {}
        self._listeners: list[DisconnectListener] = []

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        self._listeners.append(listener)

    # -- Identification ---------------------------------------------------

    async def open_port(self, port: str) -> DeviceRecord:
        """
        Open a serial port and identify the board behind it.

        Raises:
            TransportError: the port cannot be opened
        """
        transport = self._transport_factory(port)
        await transport.open()
        try:
            # Boards reset when the port opens
            await asyncio.sleep(self.serial.settle_delay_s)
            return await self.add_transport(transport, port)
        except Exception:
            await transport.close()
            raise

    async def add_transport(self, transport: LineTransport, port: str = "") -> DeviceRecord:
        """Identify the board on an open transport and register it as available"""
        reply = await identify(transport, self.serial.identify_timeout_ms)
        kind = kind_from_reply(reply)
        name = unique_name(reply or base_kind_name(reply), {d.name for d in self._devices.values()})

        catalog = known_catalog(kind)
        if catalog is not None:
            logger.info(f"{name}: using built-in catalog for {kind.value}")
        else:
            catalog = await discover_commands(transport, self.protocol)

        record = DeviceRecord(
            device_id=f"dev:{name}",
            name=name,
            kind=kind,
            role=infer_role(kind, name),
            catalog=catalog,
            transport=transport,
            port=port or transport.name,
        )
        self._devices[record.device_id] = record

        logger.info(
            f"Identified {name} ({kind.value}, {record.role.value}) "
            f"with {len(catalog)} commands on {record.port}",
            extra={"device": name, "port": record.port, "command_count": len(catalog)},
        )
        return record

    def register(self, record: DeviceRecord) -> DeviceRecord:
        """Insert a prebuilt record (dry runs and tests)"""
        self._devices[record.device_id] = record
        return record

    # -- State ------------------------------------------------------------

    def connect(self, device_id: str) -> DeviceRecord:
        record = self._devices.get(device_id)
        if record is None:
            raise DisconnectedError(device_id)
        if record.transport is None or not record.transport.is_open:
            raise TransportError(
                f"Transport for {record.name} is closed",
                device_id=device_id,
                device_name=record.name,
                port=record.port,
            )
        record.state = ConnectionState.CONNECTED
        logger.info(f"Connected {record.name}")
        return record

    async def disconnect(self, device_id: str) -> bool:
        """
        Close a device's transport and forget it.

        Returns:
            False when the device was not registered
        """
        record = self._devices.pop(device_id, None)
        if record is None:
            return False

        if record.transport is not None:
            try:
                await record.transport.close()
            except TransportError as e:
                logger.warning(f"Closing {record.name} failed: {e}")

        for listener in self._listeners:
            listener(record)

        logger.info(f"Disconnected {record.name}")
        return True

    async def close_all(self) -> None:
        for device_id in list(self._devices):
            await self.disconnect(device_id)

    # -- Lookup -----------------------------------------------------------

    def get(self, device_id: str) -> DeviceRecord | None:
        return self._devices.get(device_id)

    def get_connected(self, device_id: str) -> DeviceRecord | None:
        record = self._devices.get(device_id)
        if record is None or not record.is_connected:
            return None
        return record

    def by_name(self, name: str) -> DeviceRecord | None:
        for record in self._devices.values():
            if record.name == name:
                return record
        return None

    def all(self) -> list[DeviceRecord]:
        return list(self._devices.values())

    def connected(self) -> list[DeviceRecord]:
        return [d for d in self._devices.values() if d.is_connected]

    def ids(self) -> set[str]:
        return set(self._devices)

    def __len__(self) -> int:
        return len(self._devices)
