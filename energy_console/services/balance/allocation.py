"""
Balance Summary and Allocation

- summarize(): supply/demand picture of the connected devices
- apply_demand_requests(): turn per-consumer kW requests into edge weights
- route_surplus(): hand spare supply to one target device
"""

from dataclasses import dataclass

from energy_console.common.config import DeviceRole
from energy_console.common.exceptions import ValidationError
from energy_console.common.logging_setup import get_service_logger

from ..device.models import DeviceRecord
from .demand import DemandInference
from .estimator import PowerEstimator
from .graph import ConnectionGraph
from .state import BalanceStatus, BalanceSummary

logger = get_service_logger("balance.allocation")

# Deficits smaller than this share of demand are reported as slight
SLIGHT_DEFICIT_RATIO = 0.15


def classify(supply_kw: float, demand_kw: float) -> BalanceStatus:
    if supply_kw == 0 and demand_kw == 0:
        return BalanceStatus.NO_DATA
    difference = supply_kw - demand_kw
    if difference >= 0:
        return BalanceStatus.SUFFICIENT
    ratio = abs(difference) / demand_kw if demand_kw > 0 else 0
    if ratio < SLIGHT_DEFICIT_RATIO:
        return BalanceStatus.SLIGHT_DEFICIT
    return BalanceStatus.INSUFFICIENT


def summarize(
    devices: list[DeviceRecord],
    estimator: PowerEstimator,
    samples: dict,
    inference: DemandInference | None = None,
) -> BalanceSummary:
    """
    Total supply over providers and demand over consumers.

    When demand inference yields a value it replaces the summed demand.
    """
    supply_kw = 0.0
    demand_kw = 0.0
    per_device = {}

    for device in devices:
        estimate = estimator.compute(device, samples.get(device.device_id))
        per_device[device.device_id] = {
            "name": device.name,
            "role": device.role.value,
            **estimate.to_dict(),
        }
        if estimate.kw is None:
            continue
        if device.role == DeviceRole.PROVIDER:
            supply_kw += estimate.kw
        else:
            demand_kw += estimate.kw

    inferred = inference.infer(supply_kw, demand_kw) if inference is not None else None
    effective_demand = inferred if inferred is not None else demand_kw

    return BalanceSummary(
        supply_kw=supply_kw,
        demand_kw=effective_demand,
        inferred_demand_kw=inferred,
        status=classify(supply_kw, effective_demand),
        per_device=per_device,
    )


@dataclass
class DemandRequest:
    consumer_id: str
    kw: float


def pick_source(devices: list[DeviceRecord]) -> DeviceRecord | None:
    """Generator first, else the first provider"""
    providers = [d for d in devices if d.is_provider]
    for device in providers:
        if device.is_generator:
            return device
    return providers[0] if providers else None


def apply_demand_requests(
    graph: ConnectionGraph,
    devices: list[DeviceRecord],
    requests: list[DemandRequest],
) -> int:
    """
    Write requested consumer kW onto the plan.

    Rows without a consumer or with kW <= 0 are skipped. A consumer
    without an incoming edge is wired from the preferred source first.
    The requested kW is split evenly over all incoming edges.

    Returns:
        Number of requests applied
    """
    applied = 0
    known = {d.device_id for d in devices}

    for request in requests:
        if not request.consumer_id or request.consumer_id not in known:
            continue
        try:
            kw = float(request.kw)
        except (TypeError, ValueError):
            continue
        if not kw > 0:
            continue

        incoming = graph.incoming(request.consumer_id)
        if not incoming:
            source = pick_source(devices)
            if source is None or source.device_id == request.consumer_id:
                logger.warning(f"No provider to supply {request.consumer_id}")
                continue
            graph.add(source.device_id, request.consumer_id, 0)
            incoming = graph.incoming(request.consumer_id)

        share = round(kw / len(incoming), 2)
        for edge in incoming:
            graph.set_kw(edge.from_id, edge.to_id, share)
        applied += 1

    logger.info(f"Applied {applied} demand request(s)")
    return applied


def surplus_kw(summary: BalanceSummary | None) -> float:
    if summary is None:
        return 0.0
    return max(0.0, summary.supply_kw - summary.demand_kw)


def route_surplus(
    graph: ConnectionGraph,
    devices: list[DeviceRecord],
    target_id: str,
    summary: BalanceSummary | None,
) -> tuple[DeviceRecord, float] | None:
    """
    Point the current surplus at one device on the plan.

    Returns:
        (source device, surplus kW), or None when there is no surplus

    Raises:
        ValidationError: unknown target or no provider to route from
    """
    if target_id not in {d.device_id for d in devices}:
        raise ValidationError(f"unknown device {target_id!r}", field="target_id")

    spare = round(surplus_kw(summary), 2)
    if spare <= 0:
        return None

    source = pick_source([d for d in devices if d.device_id != target_id])
    if source is None:
        raise ValidationError("no provider available to route from", field="target_id")

    graph.upsert(source.device_id, target_id, spare)
    logger.info(f"Routed {spare:.2f} kW surplus {source.name} -> {target_id}")
    return source, spare
