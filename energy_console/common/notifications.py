"""
Operator Notifications

Bounded list of operator-facing messages (disconnected devices, Mode 2
reports). Each notification is also written to the service log.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .logging_setup import get_service_logger

logger = get_service_logger("notify")


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "time": self.time.isoformat(),
            "level": self.level.value,
            "message": self.message,
        }


class Notifier:
    """Keeps the most recent notifications"""

    def __init__(self, max_entries: int = 100):
        self._entries: deque[Notification] = deque(maxlen=max_entries)

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> Notification:
        entry = Notification(message=message, level=NotificationLevel(level))
        self._entries.append(entry)

        if entry.level == NotificationLevel.ERROR:
            logger.error(message, extra={"level_hint": entry.level.value})
        elif entry.level == NotificationLevel.WARNING:
            logger.warning(message, extra={"level_hint": entry.level.value})
        else:
            logger.info(message, extra={"level_hint": entry.level.value})
        return entry

    def entries(self) -> list[Notification]:
        return list(self._entries)

    def latest(self) -> Notification | None:
        return self._entries[-1] if self._entries else None

    def clear(self) -> None:
        self._entries.clear()
