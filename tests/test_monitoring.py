"""Tests for saturation alerting and alert resolution."""

import pytest

from production_control import (
    AlertSeverity,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from production_control.config import SaturationOptions
from production_control.monitoring import LINE_SATURATION


class TestClassification:
    @pytest.mark.parametrize(
        "rate, expected",
        [
            (0.0, None),
            (0.8, None),
            (0.81, AlertSeverity.WARNING),
            (0.89, AlertSeverity.WARNING),
            (0.9, AlertSeverity.CRITICAL),
            (1.0, AlertSeverity.CRITICAL),
        ],
    )
    def test_thresholds(self, service, rate, expected):
        assert service.monitor.classify(rate) == expected

    @pytest.mark.parametrize("warning, critical", [(0.9, 0.8), (0, 0.5), (0.5, 1.2)])
    def test_invalid_thresholds_rejected(self, warning, critical):
        with pytest.raises(ValueError):
            SaturationOptions(warning_threshold=warning, critical_threshold=critical)

    def test_invalid_update_is_a_validation_error(self, service):
        with pytest.raises(ValidationError):
            service.update_saturation_options(warning_threshold=0.95, critical_threshold=0.9)

    def test_updated_thresholds_apply(self, service):
        service.update_saturation_options(warning_threshold=0.2, critical_threshold=0.5)

        assert service.monitor.classify(0.3) == AlertSeverity.WARNING


class TestAlertsOnAllocation:
    def test_scenario_e_critical_alert(self, service, fill_line):
        line = service.register_line("Line A", 10)
        fill_line(service, line, 8)
        order = service.create_order("SO-1", "Acme")

        result = service.allocate_order(order.id)

        assert len(result.alerts) == 1
        alert = result.alerts[0]
        assert alert.type == LINE_SATURATION
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.related_line_id == line.id
        assert alert.related_order_id == order.id
        assert "90.0%" in alert.message
        assert result.to_dict()["alerts"] == [
            {
                "lineName": "Line A",
                "occupancy": 9,
                "capacity": 10,
                "rate": 90.0,
                "severity": "critical",
            }
        ]

    def test_warning_alert(self, service, fill_line):
        line = service.register_line("Line A", 20)
        fill_line(service, line, 16)
        order = service.create_order("SO-2", "Acme")

        result = service.allocate_order(order.id)

        assert [alert.severity for alert in result.alerts] == [AlertSeverity.WARNING]

    def test_exactly_at_warning_threshold_is_quiet(self, service, fill_line):
        line = service.register_line("Line A", 10)
        fill_line(service, line, 7)
        order = service.create_order("SO-3", "Acme")

        result = service.allocate_order(order.id)

        assert result.alerts == []
        assert service.open_alerts() == []

    def test_every_saturated_line_is_reported(self, service, fill_line):
        full = service.register_line("Full", 5)
        service.register_line("Empty", 5)
        fill_line(service, full, 5)
        order = service.create_order("SO-4", "Acme")

        result = service.allocate_order(order.id)

        assert [alert.related_line_id for alert in result.alerts] == [full.id]
        assert result.alerts[0].related_order_id == order.id

    def test_alerts_are_not_deduplicated(self, service, fill_line):
        line = service.register_line("Line A", 10)
        fill_line(service, line, 8)

        for number in range(2):
            order = service.create_order(f"SO-{number}", "Acme")
            service.allocate_order(order.id)

        alerts = service.monitor.alerts_for_line(line.id)
        assert len(alerts) == 2
        assert all(not alert.is_resolved for alert in alerts)

    def test_notification_after_commit(self, service, fill_line):
        line = service.register_line("Line A", 10)
        fill_line(service, line, 8)
        order = service.create_order("SO-5", "Acme")
        seen = []

        def notify(event):
            # The assignment is already visible to other readers.
            seen.append((event.alert.id, service.store.orders.get(order.id).line_id))

        service.subscribe_alerts(notify)
        result = service.allocate_order(order.id)

        assert seen == [(result.alerts[0].id, line.id)]

    def test_failing_notifier_keeps_allocation(self, service, fill_line):
        line = service.register_line("Line A", 10)
        fill_line(service, line, 8)
        order = service.create_order("SO-6", "Acme")

        def broken(event):
            raise RuntimeError("mail server down")

        service.subscribe_alerts(broken)
        result = service.allocate_order(order.id)

        assert result.assigned_line.line_id == line.id
        assert service.get_order(order.id).line_id == line.id
        assert len(service.open_alerts()) == 1


class TestResolution:
    def _raise_alert(self, service, fill_line):
        line = service.register_line("Line A", 10)
        fill_line(service, line, 8)
        order = service.create_order("SO-1", "Acme")
        return service.allocate_order(order.id).alerts[0]

    def test_resolve(self, service, fill_line):
        alert = self._raise_alert(service, fill_line)

        resolved = service.resolve_alert(alert.id, acting_user="supervisor-1")

        assert resolved.is_resolved
        assert resolved.resolved_by == "supervisor-1"
        assert resolved.resolved_at is not None
        assert service.open_alerts() == []
        [entry] = service.history_for(alert.id)
        assert entry.action == "resolved"
        assert entry.acting_user == "supervisor-1"

    def test_double_resolve_rejected(self, service, fill_line):
        alert = self._raise_alert(service, fill_line)
        service.resolve_alert(alert.id)

        with pytest.raises(PreconditionError):
            service.resolve_alert(alert.id)

    def test_unknown_alert(self, service):
        with pytest.raises(NotFoundError):
            service.resolve_alert("missing")

    def test_open_alerts_filter_by_severity(self, service, fill_line):
        self._raise_alert(service, fill_line)

        assert len(service.open_alerts(AlertSeverity.CRITICAL)) == 1
        assert service.open_alerts(AlertSeverity.WARNING) == []
