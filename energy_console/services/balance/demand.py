"""
Demand Inference

Estimates aggregate demand from aggregate supply when consumers report
no telemetry. Demand is assumed to track supply, never below the manual
estimate, approached with a per-tick step limit and exponential
smoothing:

    raw     = max(manual, supply)
    bounded = previous + clamp(raw - previous, -max_step, +max_step)
    new     = alpha * bounded + (1 - alpha) * previous

The first value after enabling is raw itself.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone

from energy_console.common.exceptions import ValidationError
from energy_console.common.logging_setup import get_service_logger
from energy_console.common.state import AUTO_ESTIMATE_ENABLED_KEY, AUTO_ESTIMATE_TUNING_KEY

logger = get_service_logger("balance.demand")

DEFAULT_ALPHA = 0.35
DEFAULT_MAX_STEP_KW = 1.0
ALPHA_RANGE = (0.05, 0.95)
MAX_STEP_RANGE = (0.1, 20.0)


def _clamped(value, bounds: tuple[float, float], default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(bounds[0], min(bounds[1], number))


def _tuning_value(value, field: str, bounds: tuple[float, float]) -> float:
    """Operator-supplied tuning value: must be a finite number, then clamped"""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be finite", field=field)
    return max(bounds[0], min(bounds[1], number))


@dataclass
class DemandTuning:
    alpha: float = DEFAULT_ALPHA
    max_step_kw: float = DEFAULT_MAX_STEP_KW

    @classmethod
    def from_dict(cls, data: dict | None) -> "DemandTuning":
        data = data or {}
        return cls(
            alpha=_clamped(data.get("alpha"), ALPHA_RANGE, DEFAULT_ALPHA),
            max_step_kw=_clamped(data.get("max_step_kw"), MAX_STEP_RANGE, DEFAULT_MAX_STEP_KW),
        )

    def to_dict(self) -> dict:
        return {"alpha": self.alpha, "max_step_kw": self.max_step_kw}


class DemandInference:
    """Smoothed demand estimate; state resets on every enable/disable"""

    def __init__(self, store):
        self.store = store
        self.enabled = bool(store.get(AUTO_ESTIMATE_ENABLED_KEY, False))
        self.tuning = DemandTuning.from_dict(store.get(AUTO_ESTIMATE_TUNING_KEY))

        self.demand_kw: float | None = None
        self.last_supply_kw: float | None = None
        self.updated_at: datetime | None = None

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = bool(enabled)
        self.store.set(AUTO_ESTIMATE_ENABLED_KEY, self.enabled)
        self.reset()
        logger.info(f"Demand inference {'enabled' if self.enabled else 'disabled'}")

    def set_tuning(self, alpha=None, max_step_kw=None) -> DemandTuning:
        """
        Update tuning; values are clamped into their allowed ranges.

        Raises:
            ValidationError: a value is not a finite number (nothing is changed)
        """
        self.tuning = DemandTuning(
            alpha=_tuning_value(alpha, "alpha", ALPHA_RANGE) if alpha is not None else self.tuning.alpha,
            max_step_kw=(
                _tuning_value(max_step_kw, "max_step_kw", MAX_STEP_RANGE)
                if max_step_kw is not None else self.tuning.max_step_kw
            ),
        )
        self.store.set(AUTO_ESTIMATE_TUNING_KEY, self.tuning.to_dict())
        return self.tuning

    def reset(self) -> None:
        self.demand_kw = None
        self.last_supply_kw = None
        self.updated_at = None

    def infer(self, total_supply_kw: float | None, manual_demand_kw: float | None = None) -> float | None:
        """
        Advance the estimate by one tick.

        Returns:
            Inferred demand kW, or None when disabled or supply is not a
            positive finite number
        """
        if not self.enabled:
            return None
        if total_supply_kw is None or not math.isfinite(total_supply_kw) or total_supply_kw <= 0:
            return None

        manual = manual_demand_kw if manual_demand_kw is not None and math.isfinite(manual_demand_kw) else 0.0
        raw_target = max(max(0.0, manual), total_supply_kw)

        if self.demand_kw is None:
            self.demand_kw = raw_target
        else:
            step = self.tuning.max_step_kw
            previous = self.demand_kw
            bounded = previous + max(-step, min(step, raw_target - previous))
            alpha = self.tuning.alpha
            self.demand_kw = alpha * bounded + (1 - alpha) * previous

        self.last_supply_kw = total_supply_kw
        self.updated_at = datetime.now(timezone.utc)
        return self.demand_kw

    def get_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "demand_kw": self.demand_kw,
            "last_supply_kw": self.last_supply_kw,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            **self.tuning.to_dict(),
        }
