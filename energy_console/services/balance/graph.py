"""
Connection Graph

Operator-declared distribution plan: directed provider -> consumer
edges, each carrying a kW weight. At most one edge per ordered pair.

The plan is normalized before every read: edges whose endpoints no
longer exist are dropped and duplicate pairs collapse to the first
occurrence. Only explicit mutations are persisted.
"""

import math
from typing import Any, Callable, Iterable

from energy_console.common.exceptions import ValidationError
from energy_console.common.logging_setup import get_service_logger
from energy_console.common.state import CONNECTIONS_KEY

from .state import ConnectionEdge, edge_kw

logger = get_service_logger("balance.graph")

KwLookup = Callable[[str], float | None]


def normalize(edges: Iterable[ConnectionEdge], device_ids: set[str]) -> list[ConnectionEdge]:
    """Drop dangling edges and keep the first edge of each (from, to) pair"""
    seen: set[tuple[str, str]] = set()
    result = []
    for edge in edges:
        if edge.from_id not in device_ids or edge.to_id not in device_ids:
            continue
        pair = (edge.from_id, edge.to_id)
        if pair in seen:
            continue
        seen.add(pair)
        result.append(edge)
    return result


def validate_kw(value: Any) -> float:
    """
    Parse an operator-entered edge weight.

    Raises:
        ValidationError: not a finite number >= 0
    """
    if isinstance(value, bool):
        raise ValidationError(f"{value!r} is not a number", field="kw")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{value!r} is not a number", field="kw")
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"{value!r} must be finite and >= 0", field="kw")
    return round(number, 2)


class ConnectionGraph:
    """
    Persisted connection plan.

    Args:
        store: Key-value store holding the edge list
        device_ids: Returns the ids of devices that currently exist
        supply_of / demand_of: Estimated kW of a device on each side,
            used to size new edges
    """

    def __init__(
        self,
        store,
        device_ids: Callable[[], set[str]],
        supply_of: KwLookup,
        demand_of: KwLookup,
    ):
        self.store = store
        self._device_ids = device_ids
        self._supply_of = supply_of
        self._demand_of = demand_of

    def _load(self) -> list[ConnectionEdge]:
        raw = self.store.get(CONNECTIONS_KEY, [])
        if not isinstance(raw, list):
            return []
        return [ConnectionEdge.from_dict(e) for e in raw if isinstance(e, dict)]

    def _save(self, edges: list[ConnectionEdge]) -> None:
        self.store.set(CONNECTIONS_KEY, [e.to_dict() for e in edges])

    def edges(self) -> list[ConnectionEdge]:
        return normalize(self._load(), self._device_ids())

    def find(self, from_id: str, to_id: str) -> ConnectionEdge | None:
        for edge in self.edges():
            if edge.from_id == from_id and edge.to_id == to_id:
                return edge
        return None

    def incoming(self, to_id: str) -> list[ConnectionEdge]:
        return [e for e in self.edges() if e.to_id == to_id]

    def outgoing(self, from_id: str) -> list[ConnectionEdge]:
        return [e for e in self.edges() if e.from_id == from_id]

    def total_kw(self) -> float:
        return sum(edge_kw(e.kw) for e in self.edges())

    def totals(self) -> tuple[dict[str, float], dict[str, float]]:
        """kW given per provider and received per consumer"""
        given: dict[str, float] = {}
        received: dict[str, float] = {}
        for edge in self.edges():
            given[edge.from_id] = given.get(edge.from_id, 0.0) + edge.kw
            received[edge.to_id] = received.get(edge.to_id, 0.0) + edge.kw
        return given, received

    def auto_assign_kw(self, from_id: str, to_id: str) -> float:
        """
        Default weight for a new edge: the consumer's demand, limited to
        what the provider has not yet assigned. 0 when either side is unknown.
        """
        supply = self._supply_of(from_id)
        demand = self._demand_of(to_id)
        if supply is None or demand is None:
            return 0.0
        assigned = sum(e.kw for e in self.outgoing(from_id))
        remaining = max(0.0, supply - assigned)
        return max(0.0, min(remaining, demand))

    def add(self, from_id: str, to_id: str, kw: Any = None) -> ConnectionEdge:
        """
        Create an edge (or return the existing one for the pair).

        Raises:
            ValidationError: unknown endpoint, self-loop or invalid kW
        """
        ids = self._device_ids()
        for field_name, value in (("from_id", from_id), ("to_id", to_id)):
            if value not in ids:
                raise ValidationError(f"unknown device {value!r}", field=field_name)
        if from_id == to_id:
            raise ValidationError("a device cannot supply itself", field="to_id")

        existing = self.find(from_id, to_id)
        if existing is not None:
            return existing

        weight = validate_kw(kw) if kw is not None else round(self.auto_assign_kw(from_id, to_id), 2)
        edge = ConnectionEdge(from_id, to_id, weight)
        edges = self.edges()
        edges.append(edge)
        self._save(edges)
        logger.info(f"Connection {from_id} -> {to_id} ({weight:.2f} kW)")
        return edge

    def upsert(self, from_id: str, to_id: str, kw: Any) -> ConnectionEdge:
        """Create the edge if missing, then set its weight"""
        weight = validate_kw(kw)
        self.add(from_id, to_id, 0)
        return self.set_kw(from_id, to_id, weight)

    def set_kw(self, from_id: str, to_id: str, kw: Any) -> ConnectionEdge:
        """
        Edit an edge weight (rounded to 2 decimals).

        Raises:
            ValidationError: edge missing, or kW not finite and >= 0
        """
        weight = validate_kw(kw)
        edges = self.edges()
        for edge in edges:
            if edge.from_id == from_id and edge.to_id == to_id:
                edge.kw = weight
                self._save(edges)
                return edge
        raise ValidationError(f"no connection {from_id} -> {to_id}", field="edge")

    def remove(self, from_id: str, to_id: str) -> bool:
        edges = self.edges()
        kept = [e for e in edges if not (e.from_id == from_id and e.to_id == to_id)]
        if len(kept) == len(edges):
            return False
        self._save(kept)
        logger.info(f"Removed connection {from_id} -> {to_id}")
        return True

    def replace(self, edges: list[ConnectionEdge]) -> None:
        self._save(normalize(edges, self._device_ids()))

    def clear(self) -> None:
        self._save([])
