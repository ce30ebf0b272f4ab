"""
Command Log

Bounded record of every executed, failed or blocked command. Each entry
is also emitted as one structured log line.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from energy_console.common.logging_setup import get_service_logger, log_command

logger = get_service_logger("device.commands")

MAX_ENTRIES = 500


def format_result(result: list[str] | None) -> str:
    """Render a call result the way the log shows it"""
    if result is None or (isinstance(result, list) and not result):
        return "sent (no payload)"
    if isinstance(result, list):
        return " | ".join(str(line) for line in result)
    return str(result)


@dataclass
class CommandLogEntry:
    device_name: str
    command: str
    args: list[str] = field(default_factory=list)
    result: str = ""
    error: str = ""
    meta: dict[str, Any] = field(default_factory=dict)
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return not self.error

    def to_dict(self) -> dict:
        return {
            "time": self.time.isoformat(),
            "device": self.device_name,
            "command": self.command,
            "args": list(self.args),
            "result": self.result,
            "error": self.error,
            "meta": dict(self.meta),
        }


class CommandLog:
    """Most recent command entries, oldest dropped first"""

    def __init__(self, max_entries: int = MAX_ENTRIES):
        self._entries: deque[CommandLogEntry] = deque(maxlen=max_entries)

    def add(self, entry: CommandLogEntry) -> CommandLogEntry:
        self._entries.append(entry)
        log_command(
            logger,
            entry.device_name,
            entry.command,
            entry.args,
            result=entry.result,
            error=entry.error,
            **entry.meta,
        )
        return entry

    def entries(self, limit: int | None = None) -> list[CommandLogEntry]:
        items = list(self._entries)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
