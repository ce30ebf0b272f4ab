"""
Balance Service (Layer 3) - Supply/Demand and Mode 2

Responsible for:
- Power estimates and the connection plan
- Balance summary after every telemetry sweep
- Mode 2 runs (manual, demand requests, 2 s auto tick)
- Surplus routing
"""

from energy_console.common.config import ConsoleConfig
from energy_console.common.logging_setup import get_service_logger
from energy_console.common.notifications import NotificationLevel, Notifier
from energy_console.common.scheduler import ScheduledLoop
from energy_console.common.state import MODE2_ENABLED_KEY

from ..device.service import DeviceService
from .allocation import DemandRequest, apply_demand_requests, route_surplus, summarize
from .controller import AUTO_SOURCE, SET_LOAD_COMMAND, BalanceController
from .demand import DemandInference
from .estimator import PowerEstimator
from .graph import ConnectionGraph
from .state import BalanceSummary, Mode2Result

logger = get_service_logger("balance")


class BalanceService:
    """
    Balance Service - Layer 3

    Works from nameplate estimates and the connection plan, and reaches
    the wire only through the device service's execution pipeline.
    """

    def __init__(
        self,
        config: ConsoleConfig,
        devices: DeviceService,
        store,
        notifier: Notifier,
    ):
        self.config = config
        self.devices = devices
        self.store = store
        self.notifier = notifier

        self.estimator = PowerEstimator(store)
        self.inference = DemandInference(store)
        self.graph = ConnectionGraph(
            store,
            device_ids=devices.registry.ids,
            supply_of=self._kw_of,
            demand_of=self._kw_of,
        )
        self.controller = BalanceController(
            devices=devices,
            graph=self.graph,
            estimator=self.estimator,
            store=store,
            notifier=notifier,
            settings=config.balance,
        )

        self.summary: BalanceSummary | None = None
        self._auto_loop = ScheduledLoop(config.balance.auto_interval_s, self._auto_tick, name="mode2")

    def _kw_of(self, device_id: str) -> float | None:
        device = self.devices.registry.get(device_id)
        if device is None:
            return None
        return self.estimator.compute(device, None).kw

    # -- Lifecycle --------------------------------------------------------

    async def start(self) -> None:
        await self._auto_loop.start()
        logger.info(f"Balance service started (Mode 2 auto {'on' if self.auto_enabled else 'off'})")

    async def stop(self) -> None:
        await self._auto_loop.wait_stopped()

    # -- Mode 2 -----------------------------------------------------------

    @property
    def auto_enabled(self) -> bool:
        return bool(self.store.get(MODE2_ENABLED_KEY, False))

    def set_auto_enabled(self, enabled: bool) -> None:
        self.store.set(MODE2_ENABLED_KEY, bool(enabled))
        logger.info(f"Mode 2 auto {'enabled' if enabled else 'disabled'}")

    async def _auto_tick(self) -> None:
        if self.auto_enabled:
            await self.controller.run(AUTO_SOURCE)

    async def run_mode2(self, source: str = "mode2-manual") -> Mode2Result:
        return await self.controller.run(source)

    # -- Summary ----------------------------------------------------------

    def update_summary(self, samples: dict) -> BalanceSummary:
        """Recompute the supply/demand picture (called after each sweep)"""
        self.summary = summarize(
            self.devices.registry.connected(),
            self.estimator,
            samples,
            self.inference,
        )
        logger.debug(
            f"Balance: supply {self.summary.supply_kw:.2f} kW, "
            f"demand {self.summary.demand_kw:.2f} kW ({self.summary.status.value})"
        )
        return self.summary

    # -- Allocation -------------------------------------------------------

    async def apply_demand_requests(self, rows: list[tuple[str, float]]) -> Mode2Result | None:
        """Write consumer requests onto the plan, then run Mode 2 once"""
        requests = [DemandRequest(consumer_id, kw) for consumer_id, kw in rows]
        applied = apply_demand_requests(self.graph, self.devices.registry.all(), requests)
        if not applied:
            self.notifier.notify("No valid demand requests", NotificationLevel.WARNING)
            return None
        return await self.controller.run("demand-request")

    async def route_surplus(self, target_id: str) -> dict:
        """
        Route the current surplus to a target device, and send it
        setLoad when the target is connected and supports it.
        """
        routed = route_surplus(self.graph, self.devices.registry.all(), target_id, self.summary)
        if routed is None:
            self.notifier.notify("No surplus to route", NotificationLevel.WARNING)
            return {"routed_kw": 0.0, "dispatched": False}

        source, spare = routed
        target = self.devices.registry.get_connected(target_id)
        dispatched = False
        if target is not None and target.supports(SET_LOAD_COMMAND):
            await self.devices.execute(
                target_id, SET_LOAD_COMMAND, [str(spare)], meta={"source": "surplus"}
            )
            dispatched = True

        self.notifier.notify(
            f"Routed {spare:.2f} kW surplus from {source.name}", NotificationLevel.SUCCESS
        )
        return {"routed_kw": spare, "source_id": source.device_id, "dispatched": dispatched}

    def get_status(self) -> dict:
        last = self.controller.last_applied
        return {
            "summary": self.summary.to_dict() if self.summary else None,
            "mode2": {
                "auto_enabled": self.auto_enabled,
                "in_flight": self.controller.in_flight,
                "last_result": self.controller.last_result.to_dict() if self.controller.last_result else None,
                "last_applied": last.to_dict() if last else None,
            },
            "demand_inference": self.inference.get_status(),
            "prefer_manual": self.estimator.prefer_manual,
            "connections": [e.to_dict() for e in self.graph.edges()],
        }
