"""
Balance Controller ("Mode 2")

Sets the generator's output to cover the demand declared by the
connection plan that other providers do not already cover:

    demand     = sum of edge kW
    other      = sum of estimated kW of connected non-generator providers
                 (any wiring, telemetry ignored)
    deficit    = max(0, demand - other)
    target     = min(deficit, generator capacity estimate) if one exists
    target     = round(target, 2)

A target within the change tolerance of the last one applied to the same
generator is not re-sent. Safe mode still computes and reports the
numbers but never dispatches. Missing or ambiguous generators are
reported in the result, never raised.
"""

import math

from energy_console.common.config import BalanceSettings
from energy_console.common.exceptions import ConsoleError
from energy_console.common.logging_setup import get_service_logger, log_balance
from energy_console.common.notifications import NotificationLevel, Notifier
from energy_console.common.state import MODE2_LAST_APPLIED_KEY, generator_load_key

from ..device.models import DeviceRecord
from ..device.service import DeviceService
from .estimator import PowerEstimator
from .graph import ConnectionGraph
from .state import LastApplied, Mode2Result, Mode2Status

logger = get_service_logger("balance.mode2")

SET_LOAD_COMMAND = "setLoad"
AUTO_SOURCE = "mode2-auto"


def format_setpoint(kw: float) -> str:
    """Whole kilowatts go out without a decimal (6.0 -> "6")"""
    if float(kw).is_integer():
        return str(int(kw))
    return str(kw)


class BalanceController:
    """
    Mode 2 control loop.

    The only runtime state is an in-flight flag, so a manual request
    and the auto tick never overlap, and the persisted last-applied
    setpoint.
    """

    def __init__(
        self,
        devices: DeviceService,
        graph: ConnectionGraph,
        estimator: PowerEstimator,
        store,
        notifier: Notifier,
        settings: BalanceSettings | None = None,
    ):
        self.devices = devices
        self.graph = graph
        self.estimator = estimator
        self.store = store
        self.notifier = notifier
        self.settings = settings or BalanceSettings()

        self._in_flight = False
        self._last_notice: str | None = None
        self.last_result: Mode2Result | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def last_applied(self) -> LastApplied | None:
        return LastApplied.from_dict(self.store.get(MODE2_LAST_APPLIED_KEY))

    def generators(self) -> list[DeviceRecord]:
        """Connected generators that accept setLoad"""
        return [
            d for d in self.devices.registry.connected()
            if d.is_generator and d.supports(SET_LOAD_COMMAND)
        ]

    def compute(self) -> tuple[float, float, float]:
        """
        Returns:
            (demand_kw, other_supply_kw, deficit_kw)
        """
        demand_kw = self.graph.total_kw()

        other_supply_kw = 0.0
        for device in self.devices.registry.connected():
            if not device.is_provider or device.is_generator:
                continue
            # Nameplate estimates only, live readings are not supply here
            kw = self.estimator.compute(device, None).kw
            if kw is not None and math.isfinite(kw):
                other_supply_kw += kw

        deficit_kw = max(0.0, demand_kw - other_supply_kw)
        return demand_kw, other_supply_kw, deficit_kw

    def generator_cap(self, generator: DeviceRecord) -> float | None:
        """Capacity estimate of the generator itself, telemetry ignored"""
        kw = self.estimator.compute(generator, None).kw
        if kw is None or not math.isfinite(kw) or kw < 0:
            return None
        return kw

    async def run(self, source: str = "mode2") -> Mode2Result:
        """
        Compute and (when needed) dispatch the generator setpoint.

        Returns:
            Mode2Result describing the numbers and what happened
        """
        if self._in_flight:
            return Mode2Result(Mode2Status.BUSY, source=source, message="Mode 2 already running")

        self._in_flight = True
        try:
            result = await self._run(source)
        finally:
            self._in_flight = False

        self.last_result = result
        return result

    async def _run(self, source: str) -> Mode2Result:
        quiet = source == AUTO_SOURCE
        generators = self.generators()

        if not generators:
            present = any(d.is_generator for d in self.devices.registry.all())
            if present:
                result = Mode2Result(
                    Mode2Status.GENERATOR_NOT_CONNECTED,
                    source=source,
                    message="Mode 2: generator is present but not connected. Connect it first.",
                )
            else:
                result = Mode2Result(
                    Mode2Status.NO_GENERATOR,
                    source=source,
                    message="Mode 2: connect a generator (with setLoad) first.",
                )
            self._report(result, NotificationLevel.WARNING, quiet)
            return result

        warnings = []
        if len(generators) > 1:
            warnings.append("Multiple generators connected; using the first one")
            self._report_text(warnings[-1], NotificationLevel.WARNING, quiet)

        generator = generators[0]
        demand_kw, other_supply_kw, deficit_kw = self.compute()
        cap_kw = self.generator_cap(generator)
        target_kw = deficit_kw if cap_kw is None else min(deficit_kw, cap_kw)
        target_kw = round(target_kw, 2)

        result = Mode2Result(
            Mode2Status.APPLIED,
            source=source,
            demand_kw=demand_kw,
            other_supply_kw=other_supply_kw,
            deficit_kw=deficit_kw,
            cap_kw=cap_kw,
            target_kw=target_kw,
            generator_id=generator.device_id,
            generator_name=generator.name,
            warnings=warnings,
        )
        summary = (
            f"Demand {demand_kw:.2f} kW - Other supply {other_supply_kw:.2f} kW "
            f"= Generator {target_kw:.2f} kW"
        )

        if self.devices.interlock.engaged:
            result.status = Mode2Status.SAFE_MODE
            result.message = f"Mode 2 computed (safe mode on, setLoad blocked): {summary}"
            log_balance(logger, demand_kw, other_supply_kw, target_kw, result.status.value)
            self._report(result, NotificationLevel.WARNING, quiet)
            return result

        last = self.last_applied
        if (
            last is not None
            and last.generator_id == generator.device_id
            and abs(last.target_kw - target_kw) < self.settings.change_tolerance_kw
        ):
            result.status = Mode2Status.UNCHANGED
            result.message = f"Mode 2: target unchanged (no setLoad sent): {summary}"
            log_balance(logger, demand_kw, other_supply_kw, target_kw, result.status.value)
            self._report(result, NotificationLevel.SUCCESS, quiet)
            return result

        try:
            await self.devices.execute(
                generator.device_id,
                SET_LOAD_COMMAND,
                [format_setpoint(target_kw)],
                meta={"source": source},
            )
        except ConsoleError as e:
            result.status = Mode2Status.FAILED
            result.message = f"Mode 2: setLoad {target_kw:.2f} kW failed: {e.message}"
            log_balance(logger, demand_kw, other_supply_kw, target_kw, result.status.value)
            self._report(result, NotificationLevel.ERROR, False)
            return result

        self.store.set(
            MODE2_LAST_APPLIED_KEY,
            LastApplied(generator.device_id, target_kw).to_dict(),
        )
        self.store.set(generator_load_key(generator.name), target_kw)
        generator.last_set_load_kw = target_kw

        result.message = f"Mode 2 applied: setLoad {target_kw:.2f} kW ({summary})"
        log_balance(logger, demand_kw, other_supply_kw, target_kw, result.status.value)
        self._report(result, NotificationLevel.SUCCESS, quiet)
        return result

    def _report(self, result: Mode2Result, level: NotificationLevel, quiet: bool) -> None:
        self._report_text(result.message, level, quiet)

    def _report_text(self, message: str, level: NotificationLevel, quiet: bool) -> None:
        # Auto ticks only surface warnings and errors, and only once in a row
        if quiet and (
            level in (NotificationLevel.SUCCESS, NotificationLevel.INFO)
            or message == self._last_notice
        ):
            logger.debug(message)
            return
        self._last_notice = message
        self.notifier.notify(message, level)
