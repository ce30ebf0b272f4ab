"""
Balance Service (Layer 3) - Supply/Demand Engine

Responsibilities:
- Resolve per-device kW from telemetry or nameplate estimates
- Maintain the provider -> consumer connection plan
- Infer aggregate demand from supply when consumers are silent
- Run Mode 2: set the generator to cover the unmet planned demand
"""

from .controller import BalanceController
from .demand import DemandInference
from .estimator import PowerEstimator
from .graph import ConnectionGraph
from .service import BalanceService
from .state import BalanceSummary, ConnectionEdge, Mode2Result, Mode2Status, PowerEstimate

__all__ = [
    "BalanceController",
    "DemandInference",
    "PowerEstimator",
    "ConnectionGraph",
    "BalanceService",
    "BalanceSummary",
    "ConnectionEdge",
    "Mode2Result",
    "Mode2Status",
    "PowerEstimate",
]
