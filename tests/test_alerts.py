"""Tests del evaluador de alertas y de los sinks.

Ejecutar:
    pytest tests/test_alerts.py -v
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from compliance_api.aggregation.thresholds import ThresholdTable
from compliance_api.alerts.evaluator import AlertEvaluator, AlertToggles
from compliance_api.alerts.sink import (
    CallbackAlertSink,
    CompositeAlertSink,
    WebhookAlertSink,
    sink_from_env,
)
from compliance_api.core.domain.alerts import AlertEvent, AlertKind
from compliance_api.core.domain.snapshot import ComplianceSnapshot

from conftest import NOW


def snapshot(score: float, open_violations: int = 0, critical: int = 0, due=None) -> ComplianceSnapshot:
    table = ThresholdTable()
    return ComplianceSnapshot(
        building_id="14",
        score=score,
        risk_level=table.risk_for(score),
        status=table.status_for(score),
        open_violations=open_violations,
        critical_violations=critical,
        last_updated=NOW,
        next_inspection_due=due,
    )


@pytest.fixture
def evaluator() -> AlertEvaluator:
    return AlertEvaluator(clock=lambda: NOW)


def kinds(alerts):
    return [a.kind for a in alerts]


# =============================================================================
# FLANCOS DE SCORE
# =============================================================================

class TestScoreCrossing:
    """Una alerta por línea cruzada, nunca en cada poll."""

    def test_first_snapshot_emits_nothing(self, evaluator):
        assert evaluator.evaluate(None, snapshot(40, open_violations=12)) == []

    def test_no_crossing_no_alert(self, evaluator):
        alerts = evaluator.evaluate(snapshot(85, 3), snapshot(80, 4))
        assert AlertKind.COMPLIANCE_SCORE_CHANGED not in kinds(alerts)

    def test_crossing_warning_line_down(self, evaluator):
        alerts = evaluator.evaluate(snapshot(80, 4), snapshot(65, 7))
        score_alerts = [a for a in alerts if a.kind == AlertKind.COMPLIANCE_SCORE_CHANGED]

        assert len(score_alerts) == 1
        alert = score_alerts[0]
        assert alert.threshold_name == "warning"
        assert alert.previous_score == 80
        assert alert.new_score == 65
        assert alert.details["direction"] == "down"
        assert alert.details["risk_level"] == "medium"

    def test_crossing_multiple_lines_emits_one_per_line(self, evaluator):
        alerts = evaluator.evaluate(snapshot(95, 1), snapshot(45, 11))
        names = sorted(
            a.threshold_name for a in alerts if a.kind == AlertKind.COMPLIANCE_SCORE_CHANGED
        )
        assert names == ["critical", "good", "warning"]

    def test_recovery_crossing_up(self, evaluator):
        alerts = evaluator.evaluate(snapshot(65, 7), snapshot(75, 5))
        score_alerts = [a for a in alerts if a.kind == AlertKind.COMPLIANCE_SCORE_CHANGED]
        assert score_alerts[0].details["direction"] == "up"

    def test_same_snapshot_twice_is_silent(self, evaluator):
        current = snapshot(65, 7)
        assert evaluator.evaluate(current, current) == []


# =============================================================================
# CONTEOS, INSPECCIONES Y EMERGENCIAS
# =============================================================================

class TestCountAlerts:

    def test_violation_added_and_resolved(self, evaluator):
        added = evaluator.evaluate(snapshot(85, 3), snapshot(80, 4))
        resolved = evaluator.evaluate(snapshot(80, 4), snapshot(90, 2))

        assert kinds(added) == [AlertKind.VIOLATION_ADDED]
        assert added[0].details["count"] == 1
        assert AlertKind.VIOLATION_RESOLVED in kinds(resolved)
        assert [a for a in resolved if a.kind == AlertKind.VIOLATION_RESOLVED][0].details["count"] == 2

    def test_inspection_scheduled_on_new_due_date(self, evaluator):
        due = datetime(2024, 7, 1, tzinfo=timezone.utc)
        alerts = evaluator.evaluate(snapshot(85, 3), snapshot(85, 3, due=due))
        assert kinds(alerts) == [AlertKind.INSPECTION_SCHEDULED]
        assert alerts[0].details["due"] == due.isoformat()

    def test_emergency_when_critical_count_rises(self, evaluator):
        alerts = evaluator.evaluate(snapshot(85, 3, critical=0), snapshot(80, 4, critical=1))
        assert AlertKind.EMERGENCY in kinds(alerts)

    def test_toggles_disable_categories(self):
        toggles = AlertToggles(violation_added=False, emergency=False)
        evaluator = AlertEvaluator(toggles=toggles, clock=lambda: NOW)
        alerts = evaluator.evaluate(snapshot(85, 3), snapshot(80, 4, critical=1))
        assert alerts == []

    def test_toggles_from_env(self, monkeypatch):
        monkeypatch.setenv("ALERT_SCORE_CHANGED", "0")
        toggles = AlertToggles.from_env()
        assert toggles.enabled(AlertKind.COMPLIANCE_SCORE_CHANGED) is False
        assert toggles.enabled(AlertKind.VIOLATION_ADDED) is True


# =============================================================================
# ENTREGA
# =============================================================================

class TestDelivery:
    """Los sinks nunca hacen fallar el ciclo."""

    def test_process_sends_to_sink(self):
        received = []
        evaluator = AlertEvaluator(sink=CallbackAlertSink(received.append), clock=lambda: NOW)
        alerts = evaluator.process(snapshot(80, 4), snapshot(65, 7))
        assert received == alerts

    def test_sink_failure_swallowed(self):
        sink = MagicMock()
        sink.send.side_effect = RuntimeError("boom")
        evaluator = AlertEvaluator(sink=sink, clock=lambda: NOW)

        alerts = evaluator.process(snapshot(80, 4), snapshot(65, 7))
        assert len(alerts) == sink.send.call_count

    def test_composite_isolates_sinks(self):
        failing = MagicMock()
        failing.send.side_effect = RuntimeError("boom")
        received = []
        composite = CompositeAlertSink([failing, CallbackAlertSink(received.append)])
        alert = AlertEvent("14", AlertKind.EMERGENCY, None, 80.0, 60.0, NOW)

        composite.send(alert)
        assert received == [alert]

    def test_webhook_posts_camel_case_json(self):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=True, status_code=200, text="")
        sink = WebhookAlertSink("https://hooks.example/alerts", session=session)
        alert = AlertEvent("14", AlertKind.COMPLIANCE_SCORE_CHANGED, "warning", 80.0, 65.0, NOW)

        sink.send(alert)

        args, kwargs = session.post.call_args
        assert args[0] == "https://hooks.example/alerts"
        assert kwargs["json"]["buildingId"] == "14"
        assert kwargs["json"]["thresholdName"] == "warning"
        assert kwargs["json"]["kind"] == "compliance_score_changed"

    def test_sink_from_env_adds_webhook(self, monkeypatch):
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example/alerts")
        sink = sink_from_env()
        assert isinstance(sink, CompositeAlertSink)
        assert any(isinstance(s, WebhookAlertSink) for s in sink._sinks)
