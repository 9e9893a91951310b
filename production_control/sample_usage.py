"""Demonstration script for the production control core."""

from __future__ import annotations

from pprint import pprint

from . import CapacityExhausted, ProductionService
from .config import configure_logging


def main() -> None:
    configure_logging("INFO")
    service = ProductionService()
    service.subscribe_alerts(lambda event: print(f"[notify] {event.alert.message}"))

    # Lines
    service.register_line("Line North", capacity=4)
    service.register_line("Line South", capacity=4)
    annex = service.register_line("Line Annex", capacity=2)
    service.set_line_status(annex.id, "paused", acting_user="supervisor-1")

    # Orders
    orders = [
        service.create_order(f"SO-2024-{number:03d}", "Confecciones Levante", priority=number % 3)
        for number in range(1, 11)
    ]

    for order in orders:
        try:
            result = service.allocate_order(order.id, order.priority, acting_user="planner-1")
        except CapacityExhausted as exc:
            print(f"Bottleneck for {order.reference}: {exc.message}")
            pprint([line.to_dict() for line in exc.snapshot])
            continue
        print(f"{order.reference} -> {result.assigned_line.name}")

    pprint([line.to_dict() for line in service.line_occupancy()])

    # Walk the first order through its steps
    first = orders[0]
    for step in service.steps_for(first.id):
        service.assign_operator(step.id, "operator-7", acting_user="supervisor-1")
        service.advance_step(step.id, acting_user="operator-7")
        service.record_step_data(step.id, {"quantity_produced": 120}, acting_user="operator-7")
        service.advance_step(step.id, acting_user="operator-7")

    print(f"{first.reference}: {service.get_order(first.id).status.value}")
    service.advance_order_status(first.id, acting_user="quality-1")
    service.advance_order_status(first.id, acting_user="logistics-1")

    for entry in service.history_for(first.id):
        print(
            entry.timestamp.isoformat(),
            entry.action,
            entry.old_value,
            "->",
            entry.new_value,
            entry.acting_user,
        )

    for alert in service.open_alerts():
        print(alert.severity.value, alert.message)


if __name__ == "__main__":
    main()
