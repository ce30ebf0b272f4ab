"""
Device Service (Layer 1) - Serial Command Protocol

Responsible for:
- Opening configured ports and identifying boards
- Tracking available/connected devices
- Executing operator, flow and controller commands
- Quiet read-only calls for the telemetry sweep
"""

from energy_console.common.config import ConsoleConfig
from energy_console.common.exceptions import ConsoleError, DisconnectedError
from energy_console.common.logging_setup import get_service_logger
from energy_console.common.notifications import NotificationLevel, Notifier

from .command_log import CommandLog
from .device_manager import DeviceRegistry, TransportFactory
from .device_queue import DeviceQueue
from .executor import CommandExecutor, SafetyInterlock
from .invoker import Invoker
from .models import DeviceRecord

logger = get_service_logger("device")


class DeviceService:
    """
    Device Service - Layer 1

    Owns the registry, the per-device queue, the invoker and the
    execution pipeline. Every other layer reaches the wire through here.
    """

    def __init__(
        self,
        config: ConsoleConfig,
        store,
        notifier: Notifier,
        transport_factory: TransportFactory | None = None,
    ):
        self.config = config
        self.notifier = notifier

        self.registry = DeviceRegistry(config.serial, config.protocol, transport_factory)
        self.queue = DeviceQueue()
        self.invoker = Invoker(config.protocol)
        self.interlock = SafetyInterlock(store)
        self.command_log = CommandLog()
        self.executor = CommandExecutor(
            registry=self.registry,
            queue=self.queue,
            invoker=self.invoker,
            interlock=self.interlock,
            command_log=self.command_log,
            notifier=notifier,
            settings=config.protocol,
        )

        self.registry.add_disconnect_listener(lambda record: self.queue.remove(record.device_id))

    async def start(self) -> None:
        """Open and connect every configured port"""
        for port in self.config.serial.ports:
            try:
                record = await self.add_port(port)
            except ConsoleError as e:
                self.notifier.notify(f"Cannot open {port}: {e.message}", NotificationLevel.ERROR)
                continue
            self.notifier.notify(f"Connected {record.name} on {port}", NotificationLevel.SUCCESS)

        logger.info(
            f"Device service started with {len(self.registry.connected())} connected device(s)"
        )

    async def stop(self) -> None:
        await self.registry.close_all()
        logger.info("Device service stopped")

    async def add_port(self, port: str, connect: bool = True) -> DeviceRecord:
        """Open, identify and (optionally) connect the board on a port"""
        record = await self.registry.open_port(port)
        if connect:
            self.registry.connect(record.device_id)
        return record

    def connect(self, device_id: str) -> DeviceRecord:
        return self.registry.connect(device_id)

    async def disconnect(self, device_id: str) -> bool:
        record = self.registry.get(device_id)
        removed = await self.registry.disconnect(device_id)
        if removed:
            self.notifier.notify(f"Disconnected: {record.name}")
        return removed

    async def execute(self, device_id: str, command: str, args=None, timeout_ms=None, meta=None):
        """Run one command through the logged, safety-gated pipeline"""
        return await self.executor.execute(device_id, command, args, timeout_ms, meta)

    async def read(self, device: DeviceRecord, command: str, timeout_ms: float | None = None):
        """
        Quiet read-only call used by the telemetry sweep.

        Goes through the same per-device queue but is not written to the
        command log and does not change the device's last-status fields.
        """
        if device.transport is None:
            raise DisconnectedError(device.device_id, device.name)
        return await self.queue.enqueue(
            device.device_id,
            lambda: self.invoker.call(device.transport, device.catalog, command, None, timeout_ms),
        )

    def get_status(self) -> dict:
        return {
            "devices": [d.to_dict() for d in self.registry.all()],
            "connected": len(self.registry.connected()),
            "safe_mode": self.interlock.engaged,
            "queue": self.queue.get_stats(),
        }
