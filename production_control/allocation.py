"""Capacity allocation: routes work orders onto production lines.

Two entry points share one occupancy model. ``allocate`` places a single
existing order on the best-scoring line. ``sequence`` plans a batch of
incoming orders greedily by priority and can create them on the way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import AllocationOptions
from .domain import (
    OCCUPYING_STATUSES,
    Alert,
    AlertSeverity,
    EntityType,
    LineOccupancy,
    ProductionLine,
    WorkOrder,
    utcnow,
)
from .errors import CapacityExhausted, PreconditionError, ValidationError
from .history import SYSTEM_USER, HistoryLedger
from .monitoring import SaturationMonitor
from .validation import optional_hours, optional_text, require_int, require_text

logger = logging.getLogger(__name__)

# Planning duration for orders that carry no estimate.
DEFAULT_ORDER_HOURS = 8.0


@dataclass(frozen=True, slots=True)
class ScoredLine:
    """A candidate line together with its allocation score."""

    line_id: str
    name: str
    occupancy: int
    capacity: int
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.line_id,
            "name": self.name,
            "occupancy": self.occupancy,
            "capacity": self.capacity,
            "score": self.score,
        }


@dataclass(slots=True)
class AllocationResult:
    """Outcome of a successful allocation.

    ``assigned_line`` reports the occupancy the decision was based on, i.e.
    before the order was placed; ``lines`` holds the post-assignment
    snapshot of every active line.
    """

    order_id: str
    assigned_line: ScoredLine
    lines: List[LineOccupancy] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        by_id = {line.line_id: line for line in self.lines}
        alerts = []
        for alert in self.alerts:
            line = by_id.get(alert.related_line_id or "")
            if line is None:
                continue
            alerts.append(
                {
                    "lineName": line.name,
                    "occupancy": line.occupancy,
                    "capacity": line.capacity,
                    "rate": round(line.rate * 100, 1),
                    "severity": alert.severity.value,
                }
            )
        return {
            "success": True,
            "assignedLine": self.assigned_line.to_dict(),
            "allLines": [line.to_dict() for line in self.lines],
            "alerts": alerts,
        }


class ConflictType(str, Enum):
    """Reasons a candidate could not be sequenced, or a line was passed over."""

    MATERIALS_UNAVAILABLE = "MATERIALS_UNAVAILABLE"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    NO_LINE_AVAILABLE = "NO_LINE_AVAILABLE"


@dataclass(frozen=True, slots=True)
class SequenceCandidate:
    """An incoming order to be planned onto a line."""

    id: str
    customer: str
    priority: int = 0
    estimated_hours: Optional[float] = None
    materials_available: bool = True
    reference: Optional[str] = None
    material_type: Optional[str] = None

    @property
    def hours(self) -> float:
        return self.estimated_hours or DEFAULT_ORDER_HOURS


@dataclass(frozen=True, slots=True)
class SequencedOrder:
    order_id: str
    line_id: str
    line_name: str
    position: int
    estimated_start: datetime
    estimated_end: datetime
    created_order_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "lineId": self.line_id,
            "lineName": self.line_name,
            "position": self.position,
            "estimatedStart": self.estimated_start.isoformat(),
            "estimatedEnd": self.estimated_end.isoformat(),
            "createdOrderId": self.created_order_id,
        }


@dataclass(frozen=True, slots=True)
class SequenceConflict:
    type: ConflictType
    severity: AlertSeverity
    message: str
    affected_orders: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "affectedOrders": list(self.affected_orders),
        }


@dataclass(frozen=True, slots=True)
class SequenceMetrics:
    """Batch figures; waits are in hours, utilization in percent."""

    total_orders: int
    avg_wait_time: float
    capacity_utilization: float
    estimated_completion: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalOrders": self.total_orders,
            "avgWaitTime": self.avg_wait_time,
            "capacityUtilization": self.capacity_utilization,
            "estimatedCompletion": self.estimated_completion.isoformat(),
        }


@dataclass(slots=True)
class SequenceResult:
    sequence: List[SequencedOrder]
    conflicts: List[SequenceConflict]
    metrics: SequenceMetrics
    alerts: List[Alert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "sequence": [entry.to_dict() for entry in self.sequence],
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "metrics": self.metrics.to_dict(),
        }


def score_line(line: LineOccupancy, priority: int, options: AllocationOptions) -> float:
    """Free capacity dominates, balance is secondary, priority is a flat bonus."""

    available = line.capacity - line.occupancy
    return (
        available * options.capacity_weight
        + (1 - line.rate) * options.balance_weight
        + priority * options.priority_weight
    )


def select_line(
    snapshot: Sequence[LineOccupancy], priority: int, options: AllocationOptions
) -> Optional[ScoredLine]:
    """Return the best line with free capacity, or ``None`` if there is none.

    Ties on score go to the lowest line name, then the lowest line id, so
    the choice is reproducible for a given snapshot.
    """

    candidates = [
        ScoredLine(
            line_id=line.line_id,
            name=line.name,
            occupancy=line.occupancy,
            capacity=line.capacity,
            score=score_line(line, priority, options),
        )
        for line in snapshot
        if line.has_free_capacity
    ]
    if not candidates:
        return None

    def ranking(candidate: ScoredLine) -> Tuple[float, str, str]:
        return (-candidate.score, candidate.name, candidate.line_id)

    return min(candidates, key=ranking)


class CapacityAllocator:
    """Selects a line for an unassigned order and performs the assignment.

    The occupancy read, the capacity check and the write all happen inside
    one store transaction. Transactions are serialized by the store, so two
    concurrent requests can never both observe the last free slot of a line.
    """

    def __init__(
        self,
        store,
        monitor: SaturationMonitor,
        history: HistoryLedger,
        options: Optional[AllocationOptions] = None,
        order_factory: Optional[Callable[..., WorkOrder]] = None,
    ) -> None:
        self._store = store
        self._monitor = monitor
        self._history = history
        self._order_factory = order_factory
        self.options = options or AllocationOptions()

    def occupancy_snapshot(self, *, active_only: bool = True) -> List[LineOccupancy]:
        """Count occupying orders per line; lines are returned sorted by name."""

        lines: List[ProductionLine] = self._store.lines.list()
        if active_only:
            lines = [line for line in lines if line.is_active]
        counts: Dict[str, int] = {line.id: 0 for line in lines}
        for order in self._store.orders.filter(
            lambda order: order.line_id is not None and order.status in OCCUPYING_STATUSES
        ):
            if order.line_id in counts:
                counts[order.line_id] += 1
        snapshot = [
            LineOccupancy(
                line_id=line.id,
                name=line.name,
                occupancy=counts[line.id],
                capacity=line.capacity,
            )
            for line in lines
        ]
        snapshot.sort(key=lambda line: (line.name, line.line_id))
        return snapshot

    def allocate(
        self,
        order_id: str,
        priority: int = 0,
        *,
        material_type: Optional[str] = None,
        estimated_hours: Optional[float] = None,
        acting_user: str = SYSTEM_USER,
    ) -> AllocationResult:
        order_id = require_text("order_id", order_id)
        priority = require_int("priority", priority)
        material_type = optional_text("material_type", material_type)
        hours = optional_hours("estimated_hours", estimated_hours)
        logger.info("Allocation requested for order %s (priority %d)", order_id, priority)

        with self._store.transaction():
            order = self._store.orders.get(order_id)
            if order.line_id is not None:
                raise PreconditionError(
                    f"Order {order_id!r} is already assigned to line {order.line_id!r}",
                    {"order_id": order_id, "line_id": order.line_id},
                )
            if order.status not in OCCUPYING_STATUSES:
                raise PreconditionError(
                    f"Order {order_id!r} in status {order.status.value!r} cannot be allocated",
                    {"order_id": order_id, "status": order.status.value},
                )

            snapshot = self.occupancy_snapshot()
            logger.debug("Occupancy before allocation: %s", snapshot)
            selected = select_line(snapshot, priority, self.options)
            if selected is None:
                logger.warning(
                    "No free capacity for order %s across %d active line(s)",
                    order_id,
                    len(snapshot),
                )
                raise CapacityExhausted(
                    "No active production line has free capacity", snapshot
                )

            order.line_id = selected.line_id
            order.updated_at = utcnow()
            if material_type is not None:
                order.material_type = material_type
            if hours is not None:
                order.estimated_hours = hours
            self._store.orders.upsert(order.id, order)
            self._history.record(
                EntityType.WORK_ORDER,
                order.id,
                "line_assigned",
                None,
                selected.line_id,
                acting_user=acting_user,
            )

            after = self.occupancy_snapshot()
            alerts = self._monitor.evaluate(after, order.id)

        logger.info(
            "Order %s assigned to line %s (score %.2f)",
            order_id,
            selected.name,
            selected.score,
        )
        return AllocationResult(
            order_id=order_id, assigned_line=selected, lines=after, alerts=alerts
        )

    def sequence(
        self,
        candidates: Sequence[SequenceCandidate],
        *,
        auto_create: bool = False,
        now: Optional[datetime] = None,
        acting_user: str = SYSTEM_USER,
    ) -> SequenceResult:
        """Plan a batch of incoming orders onto the active lines.

        Candidates are taken by descending priority (stable for equal
        priorities). Each one goes to the active line with the fewest
        occupying orders that still has room, ties going to the line that
        sorts first by name. Its position is the line's load at that moment
        and its start is offset by ``position * estimated_hours`` from
        ``now``. Candidates without materials are skipped.

        Without ``auto_create`` nothing is written. With it, every placed
        candidate becomes a pending work order already assigned to its
        line; the whole batch commits or rolls back as one.
        """

        if auto_create and self._order_factory is None:
            raise PreconditionError("Automatic order creation is not configured")
        checked = [_checked_candidate(candidate) for candidate in candidates]
        now = now or utcnow()
        logger.info(
            "Sequencing %d order(s) (auto_create=%s)", len(checked), auto_create
        )

        with self._store.transaction():
            lines = self.occupancy_snapshot()
            load: Dict[str, int] = {line.line_id: line.occupancy for line in lines}
            placed: List[SequencedOrder] = []
            conflicts: List[SequenceConflict] = []

            for candidate in sorted(checked, key=lambda item: -item.priority):
                if not candidate.materials_available:
                    conflicts.append(
                        SequenceConflict(
                            type=ConflictType.MATERIALS_UNAVAILABLE,
                            severity=AlertSeverity.CRITICAL,
                            message=(
                                f"Order {candidate.id} for {candidate.customer} "
                                "has no materials available"
                            ),
                            affected_orders=(candidate.id,),
                        )
                    )
                    continue

                selected: Optional[LineOccupancy] = None
                for line in lines:
                    if load[line.line_id] >= line.capacity:
                        conflicts.append(
                            SequenceConflict(
                                type=ConflictType.CAPACITY_EXCEEDED,
                                severity=AlertSeverity.WARNING,
                                message=f"{line.name} has no free capacity",
                                affected_orders=(candidate.id,),
                            )
                        )
                        continue
                    if selected is None or load[line.line_id] < load[selected.line_id]:
                        selected = line

                if selected is None:
                    conflicts.append(
                        SequenceConflict(
                            type=ConflictType.NO_LINE_AVAILABLE,
                            severity=AlertSeverity.CRITICAL,
                            message=(
                                f"No line available for order {candidate.id} "
                                f"({candidate.customer})"
                            ),
                            affected_orders=(candidate.id,),
                        )
                    )
                    continue

                position = load[selected.line_id]
                start = now + timedelta(hours=position * candidate.hours)
                created_id = None
                if auto_create:
                    created_id = self._create_assigned(
                        candidate, selected.line_id, acting_user
                    )
                placed.append(
                    SequencedOrder(
                        order_id=candidate.id,
                        line_id=selected.line_id,
                        line_name=selected.name,
                        position=position + 1,
                        estimated_start=start,
                        estimated_end=start + timedelta(hours=candidate.hours),
                        created_order_id=created_id,
                    )
                )
                load[selected.line_id] = position + 1

            alerts: List[Alert] = []
            if auto_create and placed:
                alerts = self._monitor.evaluate(self.occupancy_snapshot())

        metrics = _sequence_metrics(len(checked), placed, lines, load, now)
        for conflict in conflicts:
            logger.debug("Sequencing conflict %s: %s", conflict.type.value, conflict.message)
        logger.info(
            "Sequenced %d/%d order(s), %d conflict(s)",
            len(placed),
            len(checked),
            len(conflicts),
        )
        return SequenceResult(
            sequence=placed, conflicts=conflicts, metrics=metrics, alerts=alerts
        )

    def _create_assigned(
        self, candidate: SequenceCandidate, line_id: str, acting_user: str
    ) -> str:
        order = self._order_factory(
            candidate.reference or candidate.id,
            candidate.customer,
            candidate.priority,
            material_type=candidate.material_type,
            estimated_hours=candidate.estimated_hours,
            acting_user=acting_user,
        )
        order.line_id = line_id
        order.updated_at = utcnow()
        self._store.orders.upsert(order.id, order)
        self._history.record(
            EntityType.WORK_ORDER,
            order.id,
            "line_assigned",
            None,
            line_id,
            acting_user=acting_user,
        )
        return order.id


def _checked_candidate(candidate: SequenceCandidate) -> SequenceCandidate:
    if not isinstance(candidate.materials_available, bool):
        raise ValidationError("materials_available", "must be a boolean")
    return replace(
        candidate,
        id=require_text("id", candidate.id),
        customer=require_text("customer", candidate.customer),
        priority=require_int("priority", candidate.priority),
        estimated_hours=optional_hours("estimated_hours", candidate.estimated_hours),
        reference=optional_text("reference", candidate.reference),
        material_type=optional_text("material_type", candidate.material_type),
    )


def _sequence_metrics(
    total: int,
    placed: Sequence[SequencedOrder],
    lines: Sequence[LineOccupancy],
    load: Dict[str, int],
    now: datetime,
) -> SequenceMetrics:
    waits = [(entry.estimated_start - now).total_seconds() / 3600 for entry in placed]
    capacity = sum(line.capacity for line in lines) or 1
    return SequenceMetrics(
        total_orders=total,
        avg_wait_time=round(sum(waits) / (len(waits) or 1), 1),
        capacity_utilization=round(sum(load.values()) / capacity * 100, 1),
        estimated_completion=max((entry.estimated_end for entry in placed), default=now),
    )


__all__ = [
    "AllocationResult",
    "CapacityAllocator",
    "ConflictType",
    "DEFAULT_ORDER_HOURS",
    "ScoredLine",
    "SequenceCandidate",
    "SequenceConflict",
    "SequenceMetrics",
    "SequenceResult",
    "SequencedOrder",
    "score_line",
    "select_line",
]
