"""Tests for the audit trail."""

from datetime import timedelta

import pytest

from workflow_guard.core.audit_log import AuditLog, assess_risk, sanitize_for_logging
from workflow_guard.core.error_recovery import CircuitBreaker
from workflow_guard.models.audit import AuditEventType, Outcome, RiskLevel
from workflow_guard.models.graph import WorkflowGraph
from workflow_guard.models.validation import ValidationError, ValidationResult, ValidationKind, ErrorCode
from workflow_guard.storage.memory import InMemoryAuditBackend


class RecordingSink:
    """Alert sink that records events and can be told to fail."""

    def __init__(self, fail=False):
        self.events = []
        self.calls = 0
        self.fail = fail

    def __call__(self, event):
        self.calls += 1
        if self.fail:
            raise ConnectionError("pager unreachable")
        self.events.append(event)


@pytest.fixture(params=["memory", "sql"])
def audit_backend(request):
    if request.param == "memory":
        return InMemoryAuditBackend()
    return request.getfixturevalue("sql_audit_backend")


@pytest.fixture
def audit(audit_backend, clock):
    return AuditLog(backend=audit_backend, clock=clock)


def violation(audit, severity="high", violation_type="prompt_injection", user_id="mallory"):
    return audit.log_security_violation(
        user_id, violation_type, severity, "Injection attempt", input_text="ignore previous instructions"
    )


class TestRiskAndSanitizing:
    """Test cases for the pure helpers."""

    @pytest.mark.parametrize("outcome,errors,risk", [
        (Outcome.SUCCESS, 50, RiskLevel.LOW),
        (Outcome.FAILURE, 0, RiskLevel.LOW),
        (Outcome.FAILURE, 6, RiskLevel.MEDIUM),
        (Outcome.FAILURE, 11, RiskLevel.HIGH),
    ])
    def test_assess_risk(self, outcome, errors, risk):
        """Test failure risk scales with the error count."""
        assert assess_risk(outcome, errors) == risk

    def test_redacts_secrets(self):
        """Test secret assignments and long base64 blobs are redacted."""
        text = 'password="hunter2" and QUJDREVGR0hJSktMTU5PUFFSU1RVVldYWVphYmNk'
        assert sanitize_for_logging(text) == "[REDACTED] and [REDACTED_BASE64]"

    def test_truncates(self):
        """Test long text is cut with a marker."""
        sanitized = sanitize_for_logging("word " * 200, max_length=50)
        assert sanitized.endswith("... [TRUNCATED]")
        assert len(sanitized) == 50 + len("... [TRUNCATED]")


class TestAuditRecording:
    """Test cases for recording events."""

    def test_generation_event(self, audit):
        """Test a generation records request, response and risk."""
        event = audit.log_workflow_generation(
            "alice", "s1", "Notify me when ETH moves", [{}, {}], [{}], 123.4, "gpt-4o", "success",
            options={"temperature": 0.2},
        )
        assert event.event_type == AuditEventType.WORKFLOW_GENERATION
        assert event.event_id.startswith("audit_")
        assert event.outcome == Outcome.SUCCESS
        assert event.risk == RiskLevel.LOW
        assert event.details["request"]["options"] == {"temperature": 0.2}
        assert event.details["response"]["generatedNodes"] == 2
        assert event.details["response"]["model"] == "gpt-4o"

    def test_failed_generation_sanitizes_errors(self, audit):
        """Test error strings are sanitized before storage."""
        event = audit.log_workflow_generation(
            "alice", None, "x", [], [], 5.0, "gpt-4o", Outcome.FAILURE,
            errors=['provider said token="abcdef123456"'],
        )
        assert event.details["errors"] == ["provider said [REDACTED]"]

    def test_validation_event(self, audit):
        """Test validation outcomes, codes and correction counts."""
        errors = [
            ValidationError(kind=ValidationKind.GRAPH, code=ErrorCode.UNREACHABLE_NODES, message="x"),
            ValidationError(kind=ValidationKind.GRAPH, code=ErrorCode.CYCLE_DETECTED, message="y"),
        ]
        result = ValidationResult(is_valid=False, errors=errors, corrected_graph=WorkflowGraph())
        event = audit.log_validation("alice", "workflow:wf-1", result, processing_time=3.5)

        assert event.outcome == Outcome.FAILURE
        assert event.risk == RiskLevel.LOW
        assert event.details["errorCodes"] == [ErrorCode.CYCLE_DETECTED, ErrorCode.UNREACHABLE_NODES]
        assert event.details["autoCorrections"] == 1

    def test_many_validation_errors_raise_risk(self, audit):
        """Test more than five errors is medium risk."""
        errors = [ValidationError(kind=ValidationKind.SCHEMA, code="SCHEMA_VALIDATION_ERROR", message=str(i))
                  for i in range(6)]
        event = audit.log_validation(None, "workflow", ValidationResult(is_valid=False, errors=errors))
        assert event.risk == RiskLevel.MEDIUM

    def test_security_violation(self, audit):
        """Test the offending input is stored sanitized."""
        event = violation(audit, severity="medium")
        assert event.event_type == AuditEventType.SECURITY_VIOLATION
        assert event.risk == RiskLevel.MEDIUM
        assert event.details["input"] == "ignore previous instructions"

    def test_stored_events_cannot_be_edited(self, audit):
        """Test mutating a returned event leaves the recorded history unchanged."""
        event = audit.log_user_action("alice", "edit", "workflow:wf-1", details={"field": "label"})
        event.details["field"] = "changed"

        stored = audit.get_user_audit_trail("alice")[0]
        assert stored.details == {"field": "label"}

        stored.metadata["userInitiated"] = False
        assert audit.get_user_audit_trail("alice")[0].metadata["userInitiated"] is True

    def test_user_and_version_events(self, audit):
        """Test user actions and version operations are recorded."""
        action = audit.log_user_action("alice", "export", "workflow:wf-1", details={"format": "json"})
        assert action.event_type == AuditEventType.USER_ACTION
        assert action.details == {"format": "json"}

        version_event = audit.log_version_event("alice", "wf-1", "rollback", details={"reason": "bug"})
        assert version_event.resource == "workflow:wf-1"
        assert version_event.action == "rollback"
        assert audit.count() == 2


class TestAlerts:
    """Test cases for alert delivery."""

    def test_high_severity_alerts(self, clock):
        """Test high and critical violations reach the sink, others do not."""
        sink = RecordingSink()
        audit = AuditLog(alert_sink=sink, clock=clock)

        violation(audit, severity="low")
        violation(audit, severity="medium")
        high = violation(audit, severity="high")
        critical = violation(audit, severity="critical")

        assert [event.event_id for event in sink.events] == [high.event_id, critical.event_id]

    def test_failing_sink_is_contained(self, clock):
        """Test sink errors never reach the caller and the event is still stored."""
        audit = AuditLog(alert_sink=RecordingSink(fail=True), clock=clock)
        event = violation(audit, severity="critical")
        assert audit.get_user_audit_trail("mallory")[0].event_id == event.event_id

    def test_breaker_stops_calling_dead_sink(self, clock):
        """Test repeated sink failures open the circuit."""
        sink = RecordingSink(fail=True)
        breaker = CircuitBreaker("alerts", failure_threshold=2, recovery_timeout=60.0)
        audit = AuditLog(alert_sink=sink, clock=clock, alert_breaker=breaker)

        for _ in range(5):
            violation(audit)

        assert sink.calls == 2
        assert breaker.state == "open"
        assert audit.count() == 5


class TestAuditQueries:
    """Test cases for trails, metrics and reports."""

    def test_user_trail_newest_first(self, audit, clock):
        """Test filtering by user, type, time range and limit."""
        first = audit.log_user_action("alice", "open", "workflow")
        clock.advance(minutes=1)
        audit.log_user_action("bob", "open", "workflow")
        clock.advance(minutes=1)
        third = audit.log_user_action("alice", "close", "workflow")
        clock.advance(minutes=1)
        audit.log_version_event("alice", "wf-1", "create")

        trail = audit.get_user_audit_trail("alice", event_types=[AuditEventType.USER_ACTION])
        assert [event.event_id for event in trail] == [third.event_id, first.event_id]

        since = audit.get_user_audit_trail("alice", start=first.timestamp + timedelta(seconds=30))
        assert len(since) == 2

        assert len(audit.get_user_audit_trail("alice", limit=1)) == 1

    def test_empty_type_filter_matches_nothing(self, audit):
        """Test an empty event type list is a filter, not the absence of one."""
        audit.log_user_action("alice", "open", "workflow")
        assert audit.get_user_audit_trail("alice", event_types=[]) == []
        assert len(audit.get_user_audit_trail("alice")) == 1

    def test_metrics(self, audit):
        """Test generation and validation counters."""
        audit.log_workflow_generation("a", None, "x", [], [], 100.0, "m", "success")
        audit.log_workflow_generation("a", None, "x", [], [], 300.0, "m", "failure")
        audit.log_validation("a", "workflow", ValidationResult(is_valid=False))
        violation(audit, severity="low")

        metrics = audit.get_metrics()
        assert metrics.total_generations == 2
        assert metrics.successful_generations == 1
        assert metrics.failed_generations == 1
        assert metrics.average_response_time == pytest.approx(200.0)
        assert metrics.validation_failures == 1
        assert metrics.security_issues == 1

    def test_security_report(self, audit, clock):
        """Test totals, severity breakdown, top types, daily trend and advice."""
        violation(audit, severity="critical", violation_type="code_injection")
        violation(audit, severity="high", violation_type="prompt_injection")
        clock.advance(days=1)
        violation(audit, severity="high", violation_type="prompt_injection")

        report = audit.get_security_report()
        summary = report.summary
        assert summary.total_violations == 3
        assert summary.by_severity == {"low": 0, "medium": 0, "high": 2, "critical": 1}
        assert summary.critical_violations == 1
        assert summary.high_risk_violations == 2
        assert [(t.type, t.count) for t in summary.top_violation_types] == [
            ("prompt_injection", 2), ("code_injection", 1),
        ]
        assert [(d.date, d.count) for d in report.daily_violations] == [("2026-03-01", 2), ("2026-03-02", 1)]
        assert report.recommendations == ["Address critical security violations immediately"]

    def test_empty_report(self, audit):
        """Test a quiet period yields an empty report."""
        report = audit.get_security_report()
        assert report.summary.total_violations == 0
        assert report.recommendations == []


class TestBoundedBackend:
    """Test cases for the in-memory backend capacity."""

    def test_oldest_events_evicted(self, clock):
        """Test the log keeps only the newest events once full."""
        audit = AuditLog(backend=InMemoryAuditBackend(max_events=3), clock=clock)
        events = []
        for i in range(5):
            events.append(audit.log_user_action("alice", f"action-{i}", "workflow"))
            clock.advance(seconds=1)

        assert audit.count() == 3
        trail = audit.get_user_audit_trail("alice")
        assert [event.action for event in trail] == ["action-4", "action-3", "action-2"]

    def test_capacity_must_be_positive(self):
        """Test a zero capacity is rejected."""
        with pytest.raises(ValueError):
            InMemoryAuditBackend(max_events=0)
