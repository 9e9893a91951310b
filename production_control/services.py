"""Service facade that wires the production control components together."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, Optional, Sequence
from uuid import uuid4

from .allocation import (
    AllocationResult,
    CapacityAllocator,
    SequenceCandidate,
    SequenceResult,
)
from .config import DEFAULT_STAGES, AllocationOptions, SaturationOptions, Settings
from .domain import (
    Alert,
    AlertSeverity,
    EntityType,
    HistoryEntry,
    LineOccupancy,
    LineStatus,
    ProcessStep,
    ProductionLine,
    StageDescriptor,
    WorkOrder,
    utcnow,
)
from .errors import ValidationError
from .events import AlertRaised, EventDispatcher
from .history import SYSTEM_USER, HistoryLedger
from .lifecycle import OrderLifecycle, StepAssignmentRegistry
from .monitoring import SaturationMonitor
from .repository import InMemoryStore
from .storage import ProductionDatabase
from .validation import require_positive_int, require_text

logger = logging.getLogger(__name__)


class ProductionService:
    """Facade that exposes the production control use-cases to clients."""

    def __init__(
        self,
        store=None,
        *,
        stages: Sequence[StageDescriptor] = DEFAULT_STAGES,
        allocation_options: Optional[AllocationOptions] = None,
        saturation_options: Optional[SaturationOptions] = None,
        events: Optional[EventDispatcher] = None,
    ) -> None:
        self.store = store if store is not None else InMemoryStore()
        self.events = events or EventDispatcher()
        self.history = HistoryLedger(self.store)
        self.monitor = SaturationMonitor(self.store, self.history, saturation_options)
        self.lifecycle = OrderLifecycle(self.store, self.history, self.events, stages)
        self.allocator = CapacityAllocator(
            self.store,
            self.monitor,
            self.history,
            allocation_options,
            order_factory=self.lifecycle.create_order,
        )
        self.assignments = StepAssignmentRegistry(self.store, self.history)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProductionService":
        store = (
            ProductionDatabase(settings.db)
            if settings.db
            else InMemoryStore()
        )
        return cls(store, stages=settings.stage_descriptors)

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Line administration
    # ------------------------------------------------------------------
    def register_line(
        self, name: str, capacity: int, *, acting_user: str = SYSTEM_USER
    ) -> ProductionLine:
        name = require_text("name", name)
        capacity = require_positive_int("capacity", capacity)
        with self.store.transaction():
            if self.store.lines.filter(lambda line: line.name == name):
                raise ValidationError("name", f"line {name!r} already exists")
            line = ProductionLine(id=str(uuid4()), name=name, capacity=capacity)
            self.store.lines.add(line.id, line)
            self.history.record(
                EntityType.PRODUCTION_LINE,
                line.id,
                "created",
                None,
                line.status,
                acting_user=acting_user,
            )
        logger.info("Line %s registered with capacity %d", name, capacity)
        return line

    def set_line_status(
        self, line_id: str, status: LineStatus, *, acting_user: str = SYSTEM_USER
    ) -> ProductionLine:
        """Change a line's status; orders already on the line stay where they are."""

        try:
            status = LineStatus(status)
        except ValueError as exc:
            raise ValidationError("status", f"unknown line status {status!r}") from exc
        with self.store.transaction():
            line = self.store.lines.get(line_id)
            previous = line.status
            line.status = status
            line.updated_at = utcnow()
            self.store.lines.upsert(line.id, line)
            self.history.record(
                EntityType.PRODUCTION_LINE,
                line.id,
                "status_changed",
                previous,
                status,
                acting_user=acting_user,
            )
        logger.info("Line %s: %s -> %s", line.name, previous.value, status.value)
        return line

    def list_lines(self) -> List[ProductionLine]:
        lines = self.store.lines.list()
        lines.sort(key=lambda line: (line.name, line.id))
        return lines

    def line_occupancy(self, *, active_only: bool = False) -> List[LineOccupancy]:
        return self.allocator.occupancy_snapshot(active_only=active_only)

    # ------------------------------------------------------------------
    # Orders and allocation
    # ------------------------------------------------------------------
    def create_order(
        self,
        reference: str,
        customer: str,
        priority: int = 0,
        *,
        material_type: Optional[str] = None,
        estimated_hours: Optional[float] = None,
        acting_user: str = SYSTEM_USER,
    ) -> WorkOrder:
        return self.lifecycle.create_order(
            reference,
            customer,
            priority,
            material_type=material_type,
            estimated_hours=estimated_hours,
            acting_user=acting_user,
        )

    def get_order(self, order_id: str) -> WorkOrder:
        return self.lifecycle.get_order(order_id)

    def list_orders(self, *, line_id: Optional[str] = None) -> List[WorkOrder]:
        return self.lifecycle.list_orders(line_id=line_id)

    def allocate_order(
        self,
        order_id: str,
        priority: int = 0,
        *,
        material_type: Optional[str] = None,
        estimated_hours: Optional[float] = None,
        acting_user: str = SYSTEM_USER,
    ) -> AllocationResult:
        """Route an order onto a line.

        Raises ``CapacityExhausted`` when no active line has room. Alert
        notifications go out only after the assignment has been committed.
        """

        result = self.allocator.allocate(
            order_id,
            priority,
            material_type=material_type,
            estimated_hours=estimated_hours,
            acting_user=acting_user,
        )
        self._notify(result.alerts)
        return result

    def sequence_orders(
        self,
        candidates: Sequence[SequenceCandidate],
        *,
        auto_create: bool = False,
        acting_user: str = SYSTEM_USER,
    ) -> SequenceResult:
        """Plan a batch of incoming orders; with ``auto_create`` they are also created."""

        result = self.allocator.sequence(
            candidates, auto_create=auto_create, acting_user=acting_user
        )
        self._notify(result.alerts)
        return result

    def _notify(self, alerts: List[Alert]) -> None:
        for alert in alerts:
            try:
                self.events.publish(AlertRaised(alert=alert))
            except Exception:
                # The assignment is committed; a dispatcher outage must not undo it.
                logger.exception("Notification for alert %s failed", alert.id)

    def subscribe_alerts(self, handler: Callable[[AlertRaised], None]) -> None:
        """Register a notification dispatcher for newly raised alerts."""

        self.events.subscribe(AlertRaised, handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def advance_order_status(
        self, order_id: str, *, acting_user: str = SYSTEM_USER
    ) -> WorkOrder:
        return self.lifecycle.advance_order(order_id, acting_user=acting_user)

    def advance_step(self, step_id: str, *, acting_user: str = SYSTEM_USER) -> ProcessStep:
        return self.lifecycle.advance_step(step_id, acting_user=acting_user)

    def assign_operator(
        self,
        step_id: str,
        operator_id: Optional[str],
        *,
        acting_user: str = SYSTEM_USER,
    ) -> ProcessStep:
        return self.assignments.assign_operator(
            step_id, operator_id, acting_user=acting_user
        )

    def record_step_data(
        self, step_id: str, data: Mapping[str, Any], *, acting_user: str = SYSTEM_USER
    ) -> ProcessStep:
        return self.lifecycle.record_step_data(step_id, data, acting_user=acting_user)

    def add_step_photo(
        self, step_id: str, url: str, *, acting_user: str = SYSTEM_USER
    ) -> ProcessStep:
        return self.lifecycle.add_step_photo(step_id, url, acting_user=acting_user)

    def steps_for(self, order_id: str) -> List[ProcessStep]:
        self.store.orders.get(order_id)
        return self.lifecycle.steps_for(order_id)

    def steps_for_operator(self, operator_id: str) -> List[ProcessStep]:
        return self.assignments.steps_for_operator(operator_id)

    def reconcile(self) -> List[str]:
        return self.lifecycle.reconcile_all()

    # ------------------------------------------------------------------
    # Alerts and history
    # ------------------------------------------------------------------
    def open_alerts(self, severity: Optional[AlertSeverity] = None) -> List[Alert]:
        return self.monitor.open_alerts(severity)

    def resolve_alert(self, alert_id: str, *, acting_user: str = SYSTEM_USER) -> Alert:
        return self.monitor.resolve(alert_id, acting_user=acting_user)

    def history_for(self, entity_id: str) -> List[HistoryEntry]:
        return self.history.entries_for(entity_id)

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------
    def update_allocation_options(
        self,
        *,
        capacity_weight: float,
        balance_weight: float,
        priority_weight: float,
    ) -> AllocationOptions:
        """Apply new scoring weights for subsequent allocations."""

        self.allocator.options = AllocationOptions(
            capacity_weight=max(capacity_weight, 0.0),
            balance_weight=max(balance_weight, 0.0),
            priority_weight=max(priority_weight, 0.0),
        )
        return self.allocator.options

    def update_saturation_options(
        self, *, warning_threshold: float, critical_threshold: float
    ) -> SaturationOptions:
        try:
            options = SaturationOptions(
                warning_threshold=warning_threshold,
                critical_threshold=critical_threshold,
            )
        except ValueError as exc:
            raise ValidationError("thresholds", str(exc)) from exc
        self.monitor.options = options
        return options


__all__ = ["ProductionService"]
