"""Order and step lifecycle: the state machine behind the shop floor."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence
from uuid import uuid4

from .config import DEFAULT_STAGES
from .domain import (
    OCCUPYING_STATUSES,
    EntityType,
    OrderStatus,
    ProcessStep,
    StageDescriptor,
    StepStatus,
    WorkOrder,
    utcnow,
)
from .errors import PreconditionError, ValidationError
from .events import EventDispatcher, StepCompleted
from .history import SYSTEM_USER, HistoryLedger
from .validation import optional_hours, optional_text, require_int, require_text

logger = logging.getLogger(__name__)


class OrderLifecycle:
    """Governs WorkOrder and ProcessStep status transitions.

    Orders move strictly along ``pending -> in_process -> completed ->
    validated -> delivered``. A step may only start once its predecessor is
    done. Completing the last step of an order publishes ``StepCompleted``;
    the listener registered here completes the order inside the same
    transaction as the step write.
    """

    def __init__(
        self,
        store,
        history: HistoryLedger,
        events: EventDispatcher,
        stages: Sequence[StageDescriptor] = DEFAULT_STAGES,
    ) -> None:
        if not stages:
            raise ValueError("At least one stage is required")
        positions = [stage.position for stage in stages]
        if sorted(positions) != list(range(1, len(stages) + 1)):
            raise ValueError("Stage positions must be consecutive starting at 1")
        self._store = store
        self._history = history
        self._events = events
        self.stages = tuple(sorted(stages, key=lambda stage: stage.position))
        events.subscribe(StepCompleted, self._on_step_completed)

    # ------------------------------------------------------------------
    # Orders
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
        order = WorkOrder(
            id=str(uuid4()),
            reference=require_text("reference", reference),
            customer=require_text("customer", customer),
            priority=require_int("priority", priority),
            material_type=optional_text("material_type", material_type),
            estimated_hours=optional_hours("estimated_hours", estimated_hours),
        )
        with self._store.transaction():
            self._store.orders.add(order.id, order)
            for stage in self.stages:
                step = ProcessStep(
                    id=str(uuid4()),
                    order_id=order.id,
                    step_number=stage.position,
                    name=stage.name,
                )
                self._store.steps.add(step.id, step)
            self._history.record(
                EntityType.WORK_ORDER,
                order.id,
                "created",
                None,
                order.status,
                acting_user=acting_user,
            )
        logger.info(
            "Order %s (%s) created with %d steps", order.id, order.reference, len(self.stages)
        )
        return order

    def get_order(self, order_id: str) -> WorkOrder:
        """Return the order, first repairing an interrupted completion cascade."""

        with self._store.transaction():
            self.reconcile_order(order_id)
            return self._store.orders.get(order_id)

    def list_orders(self, *, line_id: Optional[str] = None) -> List[WorkOrder]:
        orders = self._store.orders.filter(
            lambda order: line_id is None or order.line_id == line_id
        )
        orders.sort(key=lambda order: (-order.priority, order.created_at))
        return orders

    def advance_order(self, order_id: str, *, acting_user: str = SYSTEM_USER) -> WorkOrder:
        with self._store.transaction():
            order = self._store.orders.get(order_id)
            target = order.status.next
            if target is None:
                raise PreconditionError(
                    f"Order {order_id!r} is {order.status.value} and cannot advance",
                    {"order_id": order_id, "status": order.status.value},
                )
            self._move_order(order, target, acting_user=acting_user)
        return order

    def _move_order(
        self,
        order: WorkOrder,
        target: OrderStatus,
        *,
        acting_user: str,
        action: str = "status_changed",
    ) -> None:
        if order.status.next != target:
            raise PreconditionError(
                f"Order {order.id!r} cannot move from {order.status.value} to {target.value}",
                {"order_id": order.id, "status": order.status.value},
            )
        now = utcnow()
        previous = order.status
        order.status = target
        order.updated_at = now
        if target == OrderStatus.IN_PROCESS and order.started_at is None:
            order.started_at = now
        elif target == OrderStatus.COMPLETED and order.completed_at is None:
            order.completed_at = now
        self._store.orders.upsert(order.id, order)
        self._history.record(
            EntityType.WORK_ORDER,
            order.id,
            action,
            previous,
            target,
            acting_user=acting_user,
        )
        logger.info("Order %s: %s -> %s", order.id, previous.value, target.value)

    def _complete_order(self, order: WorkOrder, *, acting_user: str, action: str) -> None:
        if order.status == OrderStatus.PENDING:
            self._move_order(order, OrderStatus.IN_PROCESS, acting_user=acting_user, action=action)
        if order.status == OrderStatus.IN_PROCESS:
            self._move_order(order, OrderStatus.COMPLETED, acting_user=acting_user, action=action)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def steps_for(self, order_id: str) -> List[ProcessStep]:
        steps = self._store.steps.filter(lambda step: step.order_id == order_id)
        steps.sort(key=lambda step: step.step_number)
        return steps

    def get_step(self, step_id: str) -> ProcessStep:
        return self._store.steps.get(step_id)

    def advance_step(self, step_id: str, *, acting_user: str = SYSTEM_USER) -> ProcessStep:
        with self._store.transaction():
            step = self._store.steps.get(step_id)
            now = utcnow()
            previous = step.status
            if step.status == StepStatus.PENDING:
                self._check_predecessor_done(step)
                step.status = StepStatus.IN_PROCESS
                step.started_at = step.started_at or now
            elif step.status == StepStatus.IN_PROCESS:
                step.status = StepStatus.DONE
                step.completed_at = now
            else:
                raise PreconditionError(
                    f"Step {step.step_number} ({step.name}) is already done",
                    {"step_id": step.id, "status": step.status.value},
                )
            self._store.steps.upsert(step.id, step)
            self._history.record(
                EntityType.PROCESS_STEP,
                step.id,
                "status_changed",
                previous,
                step.status,
                acting_user=acting_user,
            )
            logger.info(
                "Order %s step %d (%s): %s -> %s",
                step.order_id,
                step.step_number,
                step.name,
                previous.value,
                step.status.value,
            )
            if step.status == StepStatus.DONE:
                self._events.publish(
                    StepCompleted(
                        order_id=step.order_id,
                        step_id=step.id,
                        step_number=step.step_number,
                        acting_user=acting_user,
                    )
                )
        return step

    def _check_predecessor_done(self, step: ProcessStep) -> None:
        if step.step_number == 1:
            return
        predecessor = next(
            (
                candidate
                for candidate in self.steps_for(step.order_id)
                if candidate.step_number == step.step_number - 1
            ),
            None,
        )
        if predecessor is None or predecessor.status != StepStatus.DONE:
            raise PreconditionError(
                f"Step {step.step_number} ({step.name}) cannot start before "
                f"step {step.step_number - 1} is done",
                {"step_id": step.id, "blocked_by": predecessor.id if predecessor else None},
            )

    def _on_step_completed(self, event: StepCompleted) -> None:
        order = self._store.orders.get(event.order_id)
        last_step = max(step.step_number for step in self.steps_for(order.id))
        if event.step_number == last_step:
            self._complete_order(order, acting_user=event.acting_user, action="status_changed")
        elif order.status == OrderStatus.PENDING:
            self._move_order(order, OrderStatus.IN_PROCESS, acting_user=event.acting_user)

    def record_step_data(
        self,
        step_id: str,
        data: Mapping[str, Any],
        *,
        acting_user: str = SYSTEM_USER,
    ) -> ProcessStep:
        if not isinstance(data, Mapping):
            raise ValidationError("data", "must be a key/value mapping")
        with self._store.transaction():
            step = self._store.steps.get(step_id)
            step.data.update(data)
            self._store.steps.upsert(step.id, step)
            self._history.record(
                EntityType.PROCESS_STEP,
                step.id,
                "data_recorded",
                None,
                ",".join(sorted(str(key) for key in data)),
                acting_user=acting_user,
            )
        return step

    def add_step_photo(
        self, step_id: str, url: str, *, acting_user: str = SYSTEM_USER
    ) -> ProcessStep:
        url = require_text("url", url)
        with self._store.transaction():
            step = self._store.steps.get(step_id)
            step.photos.append(url)
            self._store.steps.upsert(step.id, step)
            self._history.record(
                EntityType.PROCESS_STEP,
                step.id,
                "photo_added",
                None,
                url,
                acting_user=acting_user,
            )
        return step

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def reconcile_order(self, order_id: str) -> bool:
        """Complete an order whose steps are all done but which is not completed.

        Returns ``True`` if a repair was made.
        """

        with self._store.transaction():
            order = self._store.orders.get(order_id)
            if order.status not in OCCUPYING_STATUSES:
                return False
            steps = self.steps_for(order_id)
            if not steps or any(step.status != StepStatus.DONE for step in steps):
                return False
            logger.warning(
                "Order %s has all steps done but status %s; repairing",
                order_id,
                order.status.value,
            )
            self._complete_order(order, acting_user=SYSTEM_USER, action="status_reconciled")
            return True

    def reconcile_all(self) -> List[str]:
        repaired = []
        for order in self._store.orders.filter(
            lambda order: order.status in OCCUPYING_STATUSES
        ):
            if self.reconcile_order(order.id):
                repaired.append(order.id)
        return repaired


class StepAssignmentRegistry:
    """Associates operators with steps, whatever the step's status."""

    def __init__(self, store, history: HistoryLedger) -> None:
        self._store = store
        self._history = history

    def assign_operator(
        self,
        step_id: str,
        operator_id: Optional[str],
        *,
        acting_user: str = SYSTEM_USER,
    ) -> ProcessStep:
        operator_id = optional_text("operator_id", operator_id)
        with self._store.transaction():
            step = self._store.steps.get(step_id)
            previous = step.assigned_operator
            step.assigned_operator = operator_id
            self._store.steps.upsert(step.id, step)
            self._history.record(
                EntityType.PROCESS_STEP,
                step.id,
                "operator_assigned" if operator_id else "operator_unassigned",
                previous,
                operator_id,
                acting_user=acting_user,
            )
        logger.info("Step %s operator: %s -> %s", step_id, previous, operator_id)
        return step

    def steps_for_operator(self, operator_id: str) -> List[ProcessStep]:
        steps = self._store.steps.filter(lambda step: step.assigned_operator == operator_id)
        steps.sort(key=lambda step: (step.order_id, step.step_number))
        return steps


__all__ = ["OrderLifecycle", "StepAssignmentRegistry"]
