"""
Command Execution Pipeline

Single entry point for every command the console sends, whether it comes
from an operator, a flow run or the balance controller:

    safety gate -> device queue -> invoker -> bookkeeping + command log

Every request yields exactly one command-log entry, including blocked
and failed ones.
"""

from typing import Any

from energy_console.common.config import CommandStatus, ProtocolSettings
from energy_console.common.exceptions import ConsoleError, DeviceError, SafetyBlocked
from energy_console.common.logging_setup import get_service_logger
from energy_console.common.notifications import NotificationLevel, Notifier
from energy_console.common.state import SAFE_MODE_KEY

from .command_log import CommandLog, CommandLogEntry, format_result
from .device_manager import DeviceRegistry
from .device_queue import DeviceQueue
from .invoker import Invoker, timed_out
from .models import DeviceRecord

logger = get_service_logger("device.executor")


class SafetyInterlock:
    """
    Safe mode flag.

    While engaged, any command whose name starts with "set" (any case)
    is rejected before it reaches the wire.
    """

    def __init__(self, store=None, engaged: bool = False):
        self._store = store
        self._engaged = bool(store.get(SAFE_MODE_KEY, engaged)) if store is not None else engaged

    @property
    def engaged(self) -> bool:
        return self._engaged

    def set(self, engaged: bool) -> None:
        self._engaged = bool(engaged)
        if self._store is not None:
            self._store.set(SAFE_MODE_KEY, self._engaged)
        logger.warning(f"Safe mode {'ON' if self._engaged else 'OFF'}")

    def blocks(self, command: str) -> bool:
        return self._engaged and str(command or "").lower().startswith("set")


class CommandExecutor:
    """
    Runs command requests through the per-device queue.

    Handles:
    - Safe-mode gating of set* commands (logged, no I/O)
    - Per-device serialization and per-operation deadlines
    - Device status bookkeeping (RUNNING, OK, ERROR, TIMEOUT, BLOCKED)
    - One command-log entry per request
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        queue: DeviceQueue,
        invoker: Invoker,
        interlock: SafetyInterlock,
        command_log: CommandLog,
        notifier: Notifier,
        settings: ProtocolSettings | None = None,
    ):
        self.registry = registry
        self.queue = queue
        self.invoker = invoker
        self.interlock = interlock
        self.command_log = command_log
        self.notifier = notifier
        self.settings = settings or ProtocolSettings()

    async def execute(
        self,
        device_id: str,
        command: str,
        args: list[Any] | None = None,
        timeout_ms: float | None = None,
        meta: dict[str, Any] | None = None,
    ) -> list[str] | None:
        """
        Execute one command on a connected device.

        Args:
            device_id: Target device id
            command: Command name from the device catalog
            args: Explicit argument values
            timeout_ms: Deadline override (default from protocol settings)
            meta: Extra fields recorded with the log entry (e.g. source)

        Returns:
            Output lines, or None for commands without outputs and for
            devices that are not connected

        Raises:
            SafetyBlocked: safe mode rejected a set* command
            UnknownCommand, ValidationError, ProtocolTimeout, TransportError:
                logged, then re-raised
        """
        device = self.registry.get_connected(device_id)
        if device is None or device.transport is None:
            self.notifier.notify(
                f"Device not connected: {device_id}", NotificationLevel.WARNING
            )
            return None

        values = [str(a) for a in (args or [])]
        meta = dict(meta or {})

        if self.interlock.blocks(command):
            error = SafetyBlocked(command, device.device_id, device.name)
            device.mark(command, CommandStatus.BLOCKED)
            self.command_log.add(CommandLogEntry(
                device_name=device.name,
                command=command,
                args=values,
                error=error.message,
                meta={**meta, "safe_mode": True},
            ))
            self.notifier.notify(error.message, NotificationLevel.WARNING)
            raise error

        timeout = timeout_ms if timeout_ms is not None else self.settings.default_timeout_ms

        async def run() -> list[str] | None:
            device.mark(command, CommandStatus.RUNNING)
            return await self.invoker.call(device.transport, device.catalog, command, values, timeout)

        try:
            result = await self.queue.enqueue(device.device_id, run)
        except ConsoleError as e:
            self._record_failure(device, command, values, e, meta)
            raise

        device.mark(command, CommandStatus.OK)
        self.command_log.add(CommandLogEntry(
            device_name=device.name,
            command=command,
            args=values,
            result=format_result(result),
            meta=meta,
        ))
        return result

    def _record_failure(
        self,
        device: DeviceRecord,
        command: str,
        args: list[str],
        error: ConsoleError,
        meta: dict[str, Any],
    ) -> None:
        status = CommandStatus.TIMEOUT if timed_out(error) else CommandStatus.ERROR
        device.mark(command, status)
        if isinstance(error, DeviceError):
            error.device_id = error.device_id or device.device_id
            error.device_name = error.device_name or device.name
        self.command_log.add(CommandLogEntry(
            device_name=device.name,
            command=command,
            args=args,
            error=error.message,
            meta=meta,
        ))
