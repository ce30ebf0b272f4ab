"""
Balance State Dataclasses

Data structures shared by the estimator, the connection plan and the
Mode 2 controller.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EstimateSource(str, Enum):
    TELEMETRY = "telemetry"
    ESTIMATE = "estimate"
    NONE = "none"


@dataclass(frozen=True)
class PowerEstimate:
    """Present-value power of one device"""
    kw: float | None
    source: EstimateSource = EstimateSource.NONE

    def to_dict(self) -> dict[str, Any]:
        return {"kw": self.kw, "source": self.source.value}


@dataclass
class ConnectionEdge:
    """Declared provider -> consumer distribution link"""
    from_id: str
    to_id: str
    kw: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"from_id": self.from_id, "to_id": self.to_id, "kw": self.kw}

    @classmethod
    def from_dict(cls, data: dict) -> "ConnectionEdge":
        return cls(
            from_id=str(data.get("from_id") or ""),
            to_id=str(data.get("to_id") or ""),
            kw=edge_kw(data.get("kw")),
        )


def edge_kw(value: Any) -> float:
    """Weight of an edge; anything missing, negative or non-finite counts as 0"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


class Mode2Status(str, Enum):
    """Outcome of one Mode 2 run"""
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    SAFE_MODE = "safe_mode"
    NO_GENERATOR = "no_generator"
    GENERATOR_NOT_CONNECTED = "generator_not_connected"
    BUSY = "busy"
    FAILED = "failed"


@dataclass
class LastApplied:
    """Last setpoint dispatched to a generator"""
    generator_id: str
    target_kw: float
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "generator_id": self.generator_id,
            "target_kw": self.target_kw,
            "at": self.at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "LastApplied | None":
        if not data or not data.get("generator_id"):
            return None
        try:
            at = datetime.fromisoformat(data["at"]) if data.get("at") else datetime.now(timezone.utc)
            return cls(str(data["generator_id"]), float(data["target_kw"]), at)
        except (TypeError, ValueError, KeyError):
            return None


@dataclass
class Mode2Result:
    """Numbers and outcome of one Mode 2 computation"""
    status: Mode2Status
    source: str = "mode2"
    demand_kw: float = 0.0
    other_supply_kw: float = 0.0
    deficit_kw: float = 0.0
    cap_kw: float | None = None
    target_kw: float | None = None
    generator_id: str | None = None
    generator_name: str | None = None
    message: str = ""
    warnings: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dispatched(self) -> bool:
        return self.status == Mode2Status.APPLIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "source": self.source,
            "demand_kw": round(self.demand_kw, 2),
            "other_supply_kw": round(self.other_supply_kw, 2),
            "deficit_kw": round(self.deficit_kw, 2),
            "cap_kw": self.cap_kw,
            "target_kw": self.target_kw,
            "generator_id": self.generator_id,
            "generator_name": self.generator_name,
            "message": self.message,
            "warnings": list(self.warnings),
            "timestamp": self.timestamp.isoformat(),
        }


class BalanceStatus(str, Enum):
    NO_DATA = "no_data"
    SUFFICIENT = "sufficient"
    SLIGHT_DEFICIT = "slight_deficit"
    INSUFFICIENT = "insufficient"


@dataclass
class BalanceSummary:
    """Supply/demand picture after a telemetry sweep"""
    supply_kw: float = 0.0
    demand_kw: float = 0.0
    inferred_demand_kw: float | None = None
    status: BalanceStatus = BalanceStatus.NO_DATA
    per_device: dict[str, dict[str, Any]] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def difference_kw(self) -> float:
        return self.supply_kw - self.demand_kw

    def to_dict(self) -> dict[str, Any]:
        return {
            "supply_kw": round(self.supply_kw, 3),
            "demand_kw": round(self.demand_kw, 3),
            "inferred_demand_kw": self.inferred_demand_kw,
            "difference_kw": round(self.difference_kw, 3),
            "status": self.status.value,
            "devices": self.per_device,
            "timestamp": self.timestamp.isoformat(),
        }
