"""
Telemetry Poller

Periodic sweep of read-only commands across connected devices. Only the
commands a device's catalog actually has are called, each through the
device queue so the sweep never collides with operator commands on the
wire. One misbehaving device never halts the sweep for the others.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from energy_console.common.config import TelemetrySettings
from energy_console.common.exceptions import ConsoleError
from energy_console.common.logging_setup import get_service_logger, log_telemetry
from energy_console.common.scheduler import ScheduledLoop

from ..device.models import DeviceRecord
from ..device.service import DeviceService
from .sanitizer import KW, VOLTS, OutlierFilter, first_number, number_at_line, sanitize

logger = get_service_logger("telemetry")

# Polled in this order; the rest of the capability flags are informational
POLLED_COMMANDS = ("getAll", "getKW", "getVolts", "getVal", "getBV", "getCurrent")

SweepListener = Callable[[dict[str, "TelemetrySample"]], Awaitable[None] | None]


@dataclass
class TelemetrySample:
    """Latest reading for one device (overwritten each sweep)"""
    device_id: str
    captured_at: datetime
    volts: float | None = None
    kw: float | None = None
    raw_volts: float | None = None
    raw_kw: float | None = None
    current_ma: float | None = None
    raw_all: list[str] | None = None
    capabilities: dict[str, bool] = field(default_factory=dict)

    @property
    def has_telemetry(self) -> bool:
        return any(self.capabilities.get(c) for c in POLLED_COMMANDS)

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "captured_at": self.captured_at.isoformat(),
            "volts": self.volts,
            "kw": self.kw,
            "raw_volts": self.raw_volts,
            "raw_kw": self.raw_kw,
            "current_ma": self.current_ma,
            "raw_all": self.raw_all,
            "status": "ok" if self.has_telemetry else "no-telemetry-cmds",
            "capabilities": dict(self.capabilities),
        }


def extract_volts(responses: dict[str, list[str] | None]) -> float | None:
    """Dedicated voltage commands first, then the last line of getAll"""
    all_resp = responses.get("getAll")
    candidates = (
        lambda: first_number(responses.get("getVolts")),
        lambda: first_number(responses.get("getVal")),
        lambda: number_at_line(responses.get("getBV"), 0),
        lambda: first_number(responses.get("getBV")),
        lambda: number_at_line(all_resp, -1),
        lambda: first_number(all_resp),
    )
    for candidate in candidates:
        value = candidate()
        if value is not None:
            return value
    return None


def extract_kw(responses: dict[str, list[str] | None]) -> float | None:
    """getKW first, then the last line of getAll"""
    value = first_number(responses.get("getKW"))
    if value is not None:
        return value
    return number_at_line(responses.get("getAll"), -1)


class TelemetryPoller:
    """
    Timer-driven telemetry sweep.

    Handles:
    - Capability-based command selection per device
    - Inter-command and inter-device pacing
    - Sanitizing, with the optional outlier filter on top
    - Notifying listeners after each sweep
    """

    def __init__(self, devices: DeviceService, settings: TelemetrySettings | None = None):
        self.devices = devices
        self.settings = settings or TelemetrySettings()
        self.filter = OutlierFilter(
            history_size=self.settings.history_size,
            max_change_pct=self.settings.max_change_pct,
            abs_threshold=self.settings.abs_threshold,
        )
        self._samples: dict[str, TelemetrySample] = {}
        self._listeners: list[SweepListener] = []
        self._loop = ScheduledLoop(self.settings.interval_s, self.sweep, name="telemetry")

        devices.registry.add_disconnect_listener(self._forget)

    def add_listener(self, listener: SweepListener) -> None:
        self._listeners.append(listener)

    async def start(self) -> None:
        await self._loop.start()
        logger.info(f"Telemetry polling every {self.settings.interval_s}s")

    async def stop(self) -> None:
        await self._loop.wait_stopped()

    def pause(self) -> None:
        self._loop.pause()
        logger.info("Telemetry polling paused")

    def resume(self) -> None:
        self._loop.resume()
        logger.info("Telemetry polling resumed")

    @property
    def paused(self) -> bool:
        return self._loop.paused

    def samples(self) -> dict[str, TelemetrySample]:
        return dict(self._samples)

    def sample(self, device_id: str) -> TelemetrySample | None:
        return self._samples.get(device_id)

    def _forget(self, record: DeviceRecord) -> None:
        self._samples.pop(record.device_id, None)
        self.filter.clear(record.device_id)

    async def sweep(self) -> dict[str, TelemetrySample]:
        """Poll every connected device once"""
        connected = self.devices.registry.connected()
        if not connected:
            self._samples.clear()

        for device in connected:
            # Spacing between devices keeps shared serial adapters from overflowing
            await asyncio.sleep(self.settings.inter_device_delay_ms / 1000)
            try:
                self._samples[device.device_id] = await self.poll_device(device)
            except ConsoleError as e:
                logger.warning(f"Telemetry sweep failed for {device.name}: {e}")

        for listener in self._listeners:
            outcome = listener(self.samples())
            if asyncio.iscoroutine(outcome):
                await outcome

        return self.samples()

    async def poll_device(self, device: DeviceRecord) -> TelemetrySample:
        capabilities = device.capabilities()
        responses: dict[str, list[str] | None] = {}

        for command in POLLED_COMMANDS:
            if not capabilities.get(command):
                continue
            responses[command] = await self._safe_read(device, command)
            await asyncio.sleep(self.settings.inter_command_delay_ms / 1000)

        raw_volts = extract_volts(responses)
        raw_kw = extract_kw(responses)

        volts = sanitize(VOLTS, raw_volts)
        kw = sanitize(KW, raw_kw)
        if self.settings.outlier_filter_enabled:
            volts = self.filter.apply(device.device_id, VOLTS, volts)
            kw = self.filter.apply(device.device_id, KW, kw)

        log_telemetry(logger, device.name, volts, kw)

        return TelemetrySample(
            device_id=device.device_id,
            captured_at=datetime.now(timezone.utc),
            volts=volts,
            kw=kw,
            raw_volts=raw_volts,
            raw_kw=raw_kw,
            current_ma=first_number(responses.get("getCurrent")),
            raw_all=responses.get("getAll"),
            capabilities=capabilities,
        )

    async def _safe_read(self, device: DeviceRecord, command: str) -> list[str] | None:
        """A failed read yields no data and is not retried this tick"""
        try:
            return await self.devices.read(device, command)
        except ConsoleError as e:
            logger.debug(f"{device.name}.{command} read failed: {e}")
            return None

    def get_stats(self) -> dict:
        return {
            **self._loop.get_stats(),
            "samples": len(self._samples),
            "outlier_filter": self.settings.outlier_filter_enabled,
        }
