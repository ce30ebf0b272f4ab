"""
Telemetry Sanitizer

Turns raw response lines into numbers and drops values outside the
physical bounds of this testbed:
- volts outside [0, 1000] -> None
- |kw| > 1000 -> None
- non-finite -> None

OutlierFilter additionally rejects jumps relative to a short moving
average of recently accepted values.
"""

import math
import re
from collections import deque
from typing import Any

from energy_console.common.logging_setup import get_service_logger

logger = get_service_logger("telemetry.sanitizer")

VOLTS = "volts"
KW = "kw"

MAX_VOLTS = 1000.0
MAX_ABS_KW = 1000.0

NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def first_number(value: Any) -> float | None:
    """First numeric token of a response (first line when given a list)"""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        text = str(value[0]) if value else ""
    else:
        text = str(value)
    match = NUMBER_RE.search(text)
    return float(match.group(0)) if match else None


def number_at_line(value: Any, index: int) -> float | None:
    """First numeric token of one line of a multi-line response"""
    if not isinstance(value, (list, tuple)) or not value:
        return None
    if index < 0:
        index += len(value)
    if index < 0 or index >= len(value):
        return None
    return first_number(value[index])


def sanitize(field: str, value: Any) -> float | None:
    """
    Clamp a reading to its physical bounds.

    Boundary values (0 V, 1000 V, +-1000 kW) are accepted.
    """
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None

    if field == VOLTS and (number < 0 or number > MAX_VOLTS):
        return None
    if field == KW and abs(number) > MAX_ABS_KW:
        return None
    return number


class OutlierFilter:
    """
    Bounded-history jump rejection, per device and field.

    A value is an outlier when it moves more than max_change_pct away
    from the average of the accepted history. Near zero (|avg| < 10) the
    test switches to an absolute threshold. Rejected values return the
    last accepted value instead.
    """

    NEAR_ZERO = 10.0

    def __init__(
        self,
        history_size: int = 5,
        max_change_pct: float = 200.0,
        abs_threshold: float = 50.0,
    ):
        self.history_size = history_size
        self.max_change_pct = max_change_pct
        self.abs_threshold = abs_threshold
        self._history: dict[str, dict[str, deque[float]]] = {}

    def history(self, device_id: str, field: str) -> list[float]:
        return list(self._history.get(device_id, {}).get(field, ()))

    def apply(self, device_id: str, field: str, value: float | None) -> float | None:
        if value is None or not math.isfinite(value):
            return None

        fields = self._history.setdefault(device_id, {})
        accepted = fields.setdefault(field, deque(maxlen=self.history_size))

        if not accepted:
            accepted.append(value)
            return value

        last_good = accepted[-1]

        if field == VOLTS and value < 0:
            logger.debug(f"{device_id}.{field}: rejected negative value {value}")
            return last_good

        avg = sum(accepted) / len(accepted)
        if abs(avg) < self.NEAR_ZERO:
            is_outlier = abs(value - avg) > self.abs_threshold and abs(value) > self.abs_threshold
        else:
            is_outlier = abs((value - avg) / avg) * 100 > self.max_change_pct

        if is_outlier:
            logger.debug(f"{device_id}.{field}: rejected outlier {value} (avg {avg:.2f})")
            return last_good

        accepted.append(value)
        return value

    def clear(self, device_id: str | None = None) -> None:
        """Drop history for one device, or for all devices"""
        if device_id is None:
            self._history.clear()
        else:
            self._history.pop(device_id, None)
