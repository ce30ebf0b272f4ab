"""
Energy Console Coordinator

Owns one instance of every service and wires them together:

    DeviceService -> TelemetryPoller -> BalanceService
                  -> FlowRunner

All shared state (device registry, queues, filter histories, connection
plan, last-applied setpoint) lives under this single coordinator.
"""

import asyncio
import signal
from datetime import datetime, timezone
from pathlib import Path

from .common.config import ConsoleConfig
from .common.logging_setup import get_service_logger, set_log_level
from .common.notifications import Notifier
from .common.state import KeyValueStore
from .server import ConsoleServer
from .services.balance import BalanceService
from .services.device import DeviceService
from .services.device.device_manager import TransportFactory
from .services.flow import FlowRunner
from .services.telemetry import TelemetryPoller

logger = get_service_logger("console")


class EnergyConsole:
    """
    Process-wide coordinator.

    Start order: devices -> telemetry -> balance -> HTTP.
    Stop order is the reverse.
    """

    def __init__(
        self,
        config: ConsoleConfig | None = None,
        store=None,
        transport_factory: TransportFactory | None = None,
    ):
        self.config = config or ConsoleConfig()
        self.store = store if store is not None else KeyValueStore(Path(self.config.state_dir))
        self.notifier = Notifier()

        self.devices = DeviceService(self.config, self.store, self.notifier, transport_factory)
        self.telemetry = TelemetryPoller(self.devices, self.config.telemetry)
        self.balance = BalanceService(
            self.config,
            self.devices,
            self.store,
            self.notifier,
        )
        self.flows = FlowRunner(self.devices, self.store)

        self.telemetry.add_listener(self.balance.update_summary)

        self._server = None
        self._start_time = datetime.now(timezone.utc)
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def uptime_s(self) -> int:
        return int((datetime.now(timezone.utc) - self._start_time).total_seconds())

    async def start(self, serve_http: bool | None = None) -> None:
        set_log_level(self.config.log_level)
        logger.info("Starting energy console")

        self._start_time = datetime.now(timezone.utc)
        self._running = True

        await self.devices.start()
        await self.telemetry.start()
        await self.balance.start()

        if self.config.http.enabled if serve_http is None else serve_http:
            self._server = ConsoleServer(self, self.config.http)
            await self._server.start()

        logger.info("Energy console started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        logger.info("Stopping energy console")

        if self._server is not None:
            await self._server.stop()
            self._server = None

        self.flows.stop()
        await self.balance.stop()
        await self.telemetry.stop()
        await self.devices.stop()

        logger.info("Energy console stopped")

    async def run_forever(self) -> None:
        """Start, then block until SIGINT/SIGTERM"""
        self._setup_signal_handlers()
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self.request_shutdown())

    def get_status(self) -> dict:
        return {
            "status": "healthy" if self._running else "stopped",
            "uptime": self.uptime_s,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "devices": len(self.devices.registry),
            "connected": len(self.devices.registry.connected()),
            "safe_mode": self.devices.interlock.engaged,
            "telemetry": self.telemetry.get_stats(),
            "mode2_auto": self.balance.auto_enabled,
            "flow_running": self.flows.is_running,
        }
