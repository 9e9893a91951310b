"""
Unit tests for the capacity allocator.

Covers line scoring, selection and tie-breaking, the bottleneck outcome,
preconditions, and rollback when persistence fails mid-allocation.
"""

import pytest

from production_control import (
    CapacityExhausted,
    ErrorKind,
    LineStatus,
    NotFoundError,
    OrderStatus,
    PersistenceError,
    PreconditionError,
    ProductionService,
    ValidationError,
)
from production_control.allocation import score_line, select_line
from production_control.config import AllocationOptions
from production_control.domain import LineOccupancy


def occupancy(name, occupied, capacity, line_id=None):
    return LineOccupancy(
        line_id=line_id or f"id-{name}", name=name, occupancy=occupied, capacity=capacity
    )


class TestScoring:
    """Test the scoring formula and the pure selection function."""

    def test_scenario_a_scores(self):
        options = AllocationOptions()
        busy = occupancy("Busy", 3, 4)
        quiet = occupancy("Quiet", 1, 4)

        assert score_line(busy, 0, options) == pytest.approx(11.25)
        assert score_line(quiet, 0, options) == pytest.approx(33.75)

    def test_priority_adds_linear_bonus(self):
        options = AllocationOptions()
        line = occupancy("Any", 0, 5)

        assert score_line(line, 3, options) - score_line(line, 0, options) == pytest.approx(6.0)

    def test_full_lines_are_not_candidates(self):
        snapshot = [occupancy("Full", 4, 4), occupancy("Free", 3, 4)]

        selected = select_line(snapshot, 0, AllocationOptions())

        assert selected.name == "Free"

    def test_no_free_line_selects_nothing(self):
        snapshot = [occupancy("A", 2, 2), occupancy("B", 5, 5)]

        assert select_line(snapshot, 10, AllocationOptions()) is None

    def test_ties_broken_by_name_then_id(self):
        snapshot = [
            occupancy("Beta", 1, 4, "id-1"),
            occupancy("Alpha", 1, 4, "id-9"),
            occupancy("Alpha", 1, 4, "id-3"),
        ]

        for ordering in (snapshot, list(reversed(snapshot))):
            for _ in range(20):
                selected = select_line(ordering, 0, AllocationOptions())
                assert (selected.name, selected.line_id) == ("Alpha", "id-3")

    def test_capacity_dominates_balance(self):
        # 3 free of 10 beats 2 free of 2 even though the small line is emptier
        snapshot = [occupancy("Big", 7, 10), occupancy("Small", 0, 2)]

        selected = select_line(snapshot, 0, AllocationOptions())

        assert selected.name == "Big"


class TestAllocation:
    """Test allocation end to end through the service."""

    def test_scenario_a_selects_least_occupied_line(self, service, fill_line):
        busy = service.register_line("Line A", 4)
        quiet = service.register_line("Line B", 4)
        fill_line(service, busy, 3)
        fill_line(service, quiet, 1)
        order = service.create_order("SO-1", "Acme")

        result = service.allocate_order(order.id, 0)

        assert result.assigned_line.line_id == quiet.id
        assert result.assigned_line.occupancy == 1
        assert result.assigned_line.score == pytest.approx(33.75)
        assert service.get_order(order.id).line_id == quiet.id

    def test_scenario_b_bottleneck(self, service, fill_line):
        first = service.register_line("Line A", 2)
        second = service.register_line("Line B", 3)
        fill_line(service, first, 2)
        fill_line(service, second, 3)
        order = service.create_order("SO-2", "Acme")

        with pytest.raises(CapacityExhausted) as excinfo:
            service.allocate_order(order.id)

        error = excinfo.value
        assert error.kind == ErrorKind.CAPACITY_EXHAUSTED
        body = error.to_dict()
        assert body["success"] is False
        assert body["bottleneck"] is True
        assert {line.name for line in error.snapshot} == {"Line A", "Line B"}
        assert service.get_order(order.id).line_id is None

    def test_no_active_lines_is_a_bottleneck(self, service):
        line = service.register_line("Line A", 5)
        service.set_line_status(line.id, LineStatus.PAUSED)
        order = service.create_order("SO-3", "Acme")

        with pytest.raises(CapacityExhausted):
            service.allocate_order(order.id)

    def test_inactive_lines_are_skipped(self, service):
        broken = service.register_line("Aaa broken", 10)
        working = service.register_line("Zzz working", 1)
        service.set_line_status(broken.id, LineStatus.ERROR)
        order = service.create_order("SO-4", "Acme")

        result = service.allocate_order(order.id)

        assert result.assigned_line.line_id == working.id
        assert [line.line_id for line in result.lines] == [working.id]

    def test_repeated_runs_choose_same_line(self):
        chosen = set()
        for _ in range(5):
            service = ProductionService()
            service.register_line("Line B", 4)
            service.register_line("Line A", 4)
            order = service.create_order("SO-0", "Acme")
            chosen.add(service.allocate_order(order.id).assigned_line.name)

        assert chosen == {"Line A"}

    def test_already_assigned_order_rejected(self, service):
        service.register_line("Line A", 4)
        order = service.create_order("SO-5", "Acme")
        service.allocate_order(order.id)

        with pytest.raises(PreconditionError):
            service.allocate_order(order.id)

    def test_order_past_production_rejected(self, service):
        service.register_line("Line A", 4)
        order = service.create_order("SO-6", "Acme")
        service.advance_order_status(order.id)
        service.advance_order_status(order.id)

        with pytest.raises(PreconditionError) as excinfo:
            service.allocate_order(order.id)

        assert excinfo.value.details["status"] == OrderStatus.COMPLETED.value

    def test_unknown_order(self, service):
        service.register_line("Line A", 4)

        with pytest.raises(NotFoundError):
            service.allocate_order("missing")

    @pytest.mark.parametrize("priority", ["high", 1.5, None, True])
    def test_priority_must_be_integer(self, service, priority):
        service.register_line("Line A", 4)
        order = service.create_order("SO-7", "Acme")

        with pytest.raises(ValidationError):
            service.allocate_order(order.id, priority)

    def test_negative_estimated_hours_rejected(self, service):
        service.register_line("Line A", 4)
        order = service.create_order("SO-8", "Acme")

        with pytest.raises(ValidationError):
            service.allocate_order(order.id, estimated_hours=-1)

    def test_planning_hints_are_stored(self, service):
        service.register_line("Line A", 4)
        order = service.create_order("SO-9", "Acme")

        service.allocate_order(order.id, material_type="denim", estimated_hours=6)

        stored = service.get_order(order.id)
        assert stored.material_type == "denim"
        assert stored.estimated_hours == 6.0

    def test_completed_orders_free_capacity(self, service):
        line = service.register_line("Line A", 1)
        first = service.create_order("SO-10", "Acme")
        service.allocate_order(first.id)
        service.advance_order_status(first.id)
        service.advance_order_status(first.id)
        second = service.create_order("SO-11", "Acme")

        result = service.allocate_order(second.id)

        assert result.assigned_line.line_id == line.id

    def test_assignment_recorded_in_history(self, service):
        line = service.register_line("Line A", 4)
        order = service.create_order("SO-12", "Acme")

        service.allocate_order(order.id, acting_user="planner-1")

        entry = [e for e in service.history_for(order.id) if e.action == "line_assigned"][0]
        assert entry.new_value == line.id
        assert entry.old_value is None
        assert entry.acting_user == "planner-1"

    def test_result_wire_shape(self, service, fill_line):
        line = service.register_line("Line A", 5)
        fill_line(service, line, 3)
        order = service.create_order("SO-13", "Acme")

        body = service.allocate_order(order.id).to_dict()

        assert body["success"] is True
        assert body["assignedLine"]["id"] == line.id
        assert body["assignedLine"]["occupancy"] == 3
        assert body["allLines"] == [
            {
                "id": line.id,
                "name": "Line A",
                "occupancy": 4,
                "capacity": 5,
                "occupancyRate": 80.0,
            }
        ]
        assert body["alerts"] == []

    def test_persistence_failure_leaves_no_partial_state(self, service, monkeypatch):
        service.register_line("Line A", 1)
        order = service.create_order("SO-14", "Acme")

        def failing_add(item_id, item):
            raise PersistenceError("disk full")

        # Filling the only slot raises a critical alert, whose write fails.
        monkeypatch.setattr(service.store.alerts, "add", failing_add)

        with pytest.raises(PersistenceError):
            service.allocate_order(order.id)

        monkeypatch.undo()
        assert service.get_order(order.id).line_id is None
        assert all(e.action != "line_assigned" for e in service.history_for(order.id))
        assert service.open_alerts() == []

    def test_updated_weights_apply(self, service, fill_line):
        big = service.register_line("Big", 10)
        small = service.register_line("Small", 2)
        fill_line(service, big, 7)
        service.update_allocation_options(
            capacity_weight=0, balance_weight=5, priority_weight=2
        )
        order = service.create_order("SO-15", "Acme")

        result = service.allocate_order(order.id)

        assert result.assigned_line.line_id == small.id
