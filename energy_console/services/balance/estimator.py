"""
Power Estimator

Present-value kW for a device, from live telemetry or from the
operator's nameplate estimate:
- Consumer: rated_w * utilization / 1000
- Provider: capacity_kw * availability

Utilization and availability are clamped to [0, 1] and default to 1.
With "prefer manual" the estimate is tried first, otherwise telemetry;
either way the other source is the fallback.
"""

import math
from typing import Any

from energy_console.common.config import DeviceRole
from energy_console.common.exceptions import ValidationError
from energy_console.common.state import PREFER_MANUAL_KEY, power_estimate_key

from ..device.models import DeviceRecord
from .state import EstimateSource, PowerEstimate

NO_ESTIMATE = PowerEstimate(None, EstimateSource.NONE)

CONSUMER_FIELDS = ("rated_w", "utilization")
PROVIDER_FIELDS = ("capacity_kw", "availability")


def non_negative(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def clamp01(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return max(0.0, min(1.0, number))


def _fraction(value: Any) -> float:
    """Utilization or availability; missing means fully on"""
    return 1.0 if value is None else clamp01(value)


class PowerEstimator:
    """Resolves per-device kW with a configurable source preference"""

    def __init__(self, store):
        self.store = store

    @property
    def prefer_manual(self) -> bool:
        return bool(self.store.get(PREFER_MANUAL_KEY, False))

    def set_prefer_manual(self, enabled: bool) -> None:
        self.store.set(PREFER_MANUAL_KEY, bool(enabled))

    def get_estimate(self, device_name: str) -> dict[str, Any]:
        value = self.store.get(power_estimate_key(device_name), {})
        return value if isinstance(value, dict) else {}

    def set_estimate(self, device_name: str, role: DeviceRole, values: dict[str, Any]) -> dict[str, Any]:
        """
        Store a nameplate estimate for a device.

        Raises:
            ValidationError: a value is not a finite number >= 0
        """
        allowed = CONSUMER_FIELDS if role == DeviceRole.CONSUMER else PROVIDER_FIELDS
        current = self.get_estimate(device_name)
        for key in allowed:
            if key not in values or values[key] is None:
                continue
            number = non_negative(values[key])
            if number is None:
                raise ValidationError(f"{values[key]!r} is not a number >= 0", field=key)
            current[key] = number
        self.store.set(power_estimate_key(device_name), current)
        return current

    def from_estimate(self, device: DeviceRecord) -> PowerEstimate | None:
        est = self.get_estimate(device.name)
        if device.role == DeviceRole.CONSUMER:
            rated_w = non_negative(est.get("rated_w"))
            if rated_w is None:
                return None
            utilization = _fraction(est.get("utilization"))
            return PowerEstimate(rated_w * utilization / 1000, EstimateSource.ESTIMATE)

        if device.role == DeviceRole.PROVIDER:
            capacity_kw = non_negative(est.get("capacity_kw"))
            if capacity_kw is None:
                return None
            availability = _fraction(est.get("availability"))
            return PowerEstimate(capacity_kw * availability, EstimateSource.ESTIMATE)

        return None

    @staticmethod
    def from_telemetry(sample) -> PowerEstimate | None:
        kw = getattr(sample, "kw", None) if sample is not None else None
        if kw is None or not math.isfinite(kw):
            return None
        return PowerEstimate(float(kw), EstimateSource.TELEMETRY)

    def compute(self, device: DeviceRecord | None, sample=None) -> PowerEstimate:
        """
        Resolve a device's present kW.

        Args:
            device: Device record (None yields no estimate)
            sample: Latest telemetry sample, if any

        Returns:
            PowerEstimate with source telemetry, estimate or none
        """
        if device is None:
            return NO_ESTIMATE

        if self.prefer_manual:
            order = (lambda: self.from_estimate(device), lambda: self.from_telemetry(sample))
        else:
            order = (lambda: self.from_telemetry(sample), lambda: self.from_estimate(device))

        for resolve in order:
            estimate = resolve()
            if estimate is not None:
                return estimate
        return NO_ESTIMATE
