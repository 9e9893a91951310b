"""Core data structures for production line coordination."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LineStatus(str, Enum):
    """Operational state of a production line."""

    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class OrderStatus(str, Enum):
    """Lifecycle stages for a work order, in their only legal order."""

    PENDING = "pending"
    IN_PROCESS = "in_process"
    COMPLETED = "completed"
    VALIDATED = "validated"
    DELIVERED = "delivered"

    @property
    def next(self) -> Optional["OrderStatus"]:
        flow = list(OrderStatus)
        position = flow.index(self)
        if position + 1 < len(flow):
            return flow[position + 1]
        return None

    @property
    def is_terminal(self) -> bool:
        return self.next is None


# Orders in these states count against a line's capacity.
OCCUPYING_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.IN_PROCESS})


class StepStatus(str, Enum):
    """Lifecycle stages for a single process step."""

    PENDING = "pending"
    IN_PROCESS = "in_process"
    DONE = "done"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EntityType(str, Enum):
    """Entity families recorded in the history ledger."""

    WORK_ORDER = "work_order"
    PROCESS_STEP = "process_step"
    PRODUCTION_LINE = "production_line"
    ALERT = "alert"


@dataclass(frozen=True, slots=True)
class StageDescriptor:
    """One stage of the processing pipeline every order passes through."""

    name: str
    position: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("A stage requires a name")
        if self.position < 1:
            raise ValueError("Stage positions start at 1")


@dataclass(slots=True)
class ProductionLine:
    """A finite-capacity resource hosting concurrently active orders."""

    id: str
    name: str
    capacity: int
    status: LineStatus = LineStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == LineStatus.ACTIVE


@dataclass(slots=True)
class WorkOrder:
    """A unit of production work routed onto a line and through its steps."""

    id: str
    reference: str
    customer: str
    priority: int = 0
    status: OrderStatus = OrderStatus.PENDING
    line_id: Optional[str] = None
    material_type: Optional[str] = None
    estimated_hours: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def occupies_line(self) -> bool:
        return self.line_id is not None and self.status in OCCUPYING_STATUSES


@dataclass(slots=True)
class ProcessStep:
    """One stage of the fixed pipeline for a specific order."""

    id: str
    order_id: str
    step_number: int
    name: str
    status: StepStatus = StepStatus.PENDING
    assigned_operator: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    photos: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(slots=True)
class Alert:
    """Operator-facing notice, resolved only by explicit action."""

    id: str
    type: str
    severity: AlertSeverity
    message: str
    related_order_id: Optional[str] = None
    related_line_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """Immutable audit record of a single state change."""

    id: str
    sequence: int
    entity_type: EntityType
    entity_id: str
    action: str
    old_value: Optional[str]
    new_value: Optional[str]
    acting_user: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class LineOccupancy:
    """Occupancy of a single line at a point in time."""

    line_id: str
    name: str
    occupancy: int
    capacity: int

    @property
    def rate(self) -> float:
        return self.occupancy / self.capacity

    @property
    def has_free_capacity(self) -> bool:
        return self.occupancy < self.capacity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.line_id,
            "name": self.name,
            "occupancy": self.occupancy,
            "capacity": self.capacity,
            "occupancyRate": round(self.rate * 100, 1),
        }


def stage_tuple(names: List[str]) -> Tuple[StageDescriptor, ...]:
    """Build consecutive stage descriptors from an ordered list of names."""

    return tuple(
        StageDescriptor(name=name, position=index)
        for index, name in enumerate(names, start=1)
    )


__all__ = [
    "LineStatus",
    "OrderStatus",
    "OCCUPYING_STATUSES",
    "StepStatus",
    "AlertSeverity",
    "EntityType",
    "StageDescriptor",
    "ProductionLine",
    "WorkOrder",
    "ProcessStep",
    "Alert",
    "HistoryEntry",
    "LineOccupancy",
    "stage_tuple",
    "utcnow",
]
