"""
Flow Runner

Runs a scripted list of command steps through the normal execution
pipeline (safe mode, queue, deadlines and command log all apply).

A flow runs once, or loops for a number of cycles with a rest between
cycles. A stop request is honoured between steps. Each run leaves a
summary that is pushed onto a bounded, persisted history.
"""

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum

from energy_console.common.exceptions import ConsoleError, ProtocolTimeout, ValidationError
from energy_console.common.logging_setup import get_service_logger
from energy_console.common.state import RUN_HISTORY_KEY

from ..device.command_log import CommandLogEntry
from ..device.service import DeviceService

logger = get_service_logger("flow")

MAX_HISTORY = 50


class FlowMode(str, Enum):
    ONCE = "once"
    LOOP = "loop"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    OK = "OK"
    ERROR = "ERROR"
    STOPPED = "STOPPED"


@dataclass
class FlowStep:
    device_id: str
    command: str
    args: list[str] = field(default_factory=list)
    delay_ms: float = 0

    @property
    def runnable(self) -> bool:
        return bool(self.device_id and self.command)

    @classmethod
    def from_dict(cls, data: dict) -> "FlowStep":
        args = data.get("args") or []
        if isinstance(args, str):
            args = args.split()
        try:
            delay_ms = max(0.0, float(data.get("delay_ms") or 0))
        except (TypeError, ValueError):
            raise ValidationError(f"{data.get('delay_ms')!r} is not a number", field="delay_ms")
        return cls(
            device_id=str(data.get("device_id") or ""),
            command=str(data.get("command") or ""),
            args=[str(a) for a in args],
            delay_ms=delay_ms,
        )


@dataclass
class Flow:
    steps: list[FlowStep]
    mode: FlowMode = FlowMode.ONCE
    cycles: int = 1
    rest_ms: float = 0

    @property
    def planned_cycles(self) -> int:
        return max(1, int(self.cycles)) if self.mode == FlowMode.LOOP else 1

    @classmethod
    def from_dict(cls, data: dict) -> "Flow":
        try:
            mode = FlowMode(data.get("mode") or FlowMode.ONCE)
        except ValueError:
            raise ValidationError(f"unknown mode {data.get('mode')!r}", field="mode")
        try:
            cycles = int(data.get("cycles") or 1)
            rest_ms = max(0.0, float(data.get("rest_ms") or 0))
        except (TypeError, ValueError):
            raise ValidationError("cycles and rest_ms must be numbers", field="cycles")
        return cls(
            steps=[FlowStep.from_dict(s) for s in data.get("steps") or []],
            mode=mode,
            cycles=cycles,
            rest_ms=rest_ms,
        )


@dataclass
class RunSummary:
    id: str
    started_at: str
    mode: str
    status: RunStatus = RunStatus.RUNNING
    ended_at: str | None = None
    duration_ms: float | None = None
    cycles_planned: int = 0
    cycles_done: int = 0
    steps_planned: int = 0
    steps_done: int = 0
    timeout_count: int = 0
    last_step: str = ""
    error_message: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


class FlowRunner:
    """Runs one flow at a time"""

    def __init__(self, devices: DeviceService, store):
        self.devices = devices
        self.store = store
        self.last_summary: RunSummary | None = None
        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> bool:
        if not self._running:
            return False
        self._stop_requested = True
        logger.info("Flow stop requested")
        return True

    def history(self) -> list[dict]:
        value = self.store.get(RUN_HISTORY_KEY, [])
        return value if isinstance(value, list) else []

    def _push_history(self, summary: RunSummary) -> None:
        history = self.history()
        history.append(summary.to_dict())
        self.store.set(RUN_HISTORY_KEY, history[-MAX_HISTORY:])

    async def run(self, flow: Flow) -> RunSummary:
        """
        Execute a flow to completion, error or stop.

        Command failures (timeouts, safe-mode blocks) are logged by the
        pipeline and the flow moves on; a step whose device is not
        connected aborts the run.

        Raises:
            ValidationError: another flow is already running
        """
        if self._running:
            raise ValidationError("a flow is already running", field="flow")

        started = time.monotonic()
        runnable = [s for s in flow.steps if s.runnable]
        cycles = flow.planned_cycles
        summary = RunSummary(
            id=f"run_{uuid.uuid4().hex[:12]}",
            started_at=datetime.now(timezone.utc).isoformat(),
            mode=flow.mode.value,
            cycles_planned=cycles if runnable else 0,
            steps_planned=len(runnable) * cycles,
        )
        self.last_summary = summary
        self._running = True
        self._stop_requested = False

        try:
            if not runnable:
                summary.status = RunStatus.ERROR
                summary.error_message = "No runnable steps (missing device/command)."
                return summary

            await self._run_cycles(flow, runnable, cycles, summary)
            summary.status = RunStatus.STOPPED if self._stop_requested else RunStatus.OK
        except ConsoleError as e:
            summary.status = RunStatus.STOPPED if self._stop_requested else RunStatus.ERROR
            summary.error_message = e.message
            logger.warning(f"Flow {summary.id} failed: {e.message}")
        finally:
            summary.ended_at = datetime.now(timezone.utc).isoformat()
            summary.duration_ms = round((time.monotonic() - started) * 1000, 1)
            self._running = False
            self._push_history(summary)
            logger.info(
                f"Flow {summary.id} {summary.status.value}: "
                f"{summary.steps_done}/{summary.steps_planned} steps, "
                f"{summary.timeout_count} timeout(s)"
            )

        return summary

    async def _run_cycles(self, flow: Flow, runnable: list[FlowStep], cycles: int, summary: RunSummary) -> None:
        total = len(runnable)
        for cycle in range(1, cycles + 1):
            for index, step in enumerate(runnable, start=1):
                if self._stop_requested:
                    return

                meta = {"flow": summary.id, "cycle": cycle, "step": index, "total": total}
                device = self.devices.registry.get_connected(step.device_id)
                if device is None:
                    message = f"Device not connected (step {index})."
                    self.devices.command_log.add(CommandLogEntry(
                        device_name=step.device_id,
                        command=step.command,
                        args=list(step.args),
                        error=message,
                        meta=meta,
                    ))
                    raise ValidationError(message, field="device_id")

                summary.last_step = f"{device.name}.{step.command}"
                if step.args:
                    summary.last_step += f" ({' '.join(step.args)})"

                try:
                    await self.devices.execute(step.device_id, step.command, step.args, meta=meta)
                except ProtocolTimeout:
                    summary.timeout_count += 1
                except ConsoleError as e:
                    logger.debug(f"Flow step {index} failed: {e}")

                summary.steps_done += 1
                if step.delay_ms > 0:
                    await asyncio.sleep(step.delay_ms / 1000)

            if self._stop_requested:
                return
            summary.cycles_done = cycle

            if cycle < cycles and flow.rest_ms > 0:
                await asyncio.sleep(flow.rest_ms / 1000)
