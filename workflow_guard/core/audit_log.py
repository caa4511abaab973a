"""Structured, queryable audit trail with risk scoring and security reporting."""

import re
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from ..models.audit import (
    AuditEvent,
    AuditEventType,
    Outcome,
    RiskLevel,
    GenerationMetrics,
    ViolationCount,
    DailyCount,
    SecuritySummary,
    SecurityReport,
)
from ..models.validation import ValidationResult
from ..models.version import WorkflowVersion
from ..storage.base import AuditBackend
from ..storage.memory import InMemoryAuditBackend
from .error_recovery import CircuitBreaker, CircuitOpenError
from .logging import get_logger

logger = get_logger(__name__)

AlertSink = Callable[[AuditEvent], None]

SECRET_ASSIGNMENT = re.compile(
    r"(?:password|secret|key|token)\s{0,10}[:=]\s{0,10}[\"'][^\"']{0,256}[\"']", re.IGNORECASE
)
BASE64_BLOB = re.compile(r"[A-Za-z0-9+/]{32,}={0,2}")

TOP_VIOLATION_TYPES = 5
FOCUS_TYPE_THRESHOLD = 10
RATE_LIMIT_THRESHOLD = 100


def sanitize_for_logging(text: str, max_length: int = 500) -> str:
    """Redact secret-looking fragments and truncate free text before storage."""
    # Redaction patterns only need a bounded window beyond the kept length.
    sanitized = str(text)[:max_length * 4]
    sanitized = SECRET_ASSIGNMENT.sub("[REDACTED]", sanitized)
    sanitized = BASE64_BLOB.sub("[REDACTED_BASE64]", sanitized)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "... [TRUNCATED]"
    return sanitized


def assess_risk(outcome: Outcome, error_count: int) -> RiskLevel:
    if outcome == Outcome.FAILURE and error_count > 10:
        return RiskLevel.HIGH
    if outcome == Outcome.FAILURE and error_count > 5:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLog:
    """
    Records generation, validation, security, version and user events.

    Events are immutable once appended. High and critical security
    violations are forwarded to the alert sink synchronously; a failing sink
    is logged, never propagated, and a circuit breaker stops calling it
    after repeated failures.
    """

    def __init__(
        self,
        backend: Optional[AuditBackend] = None,
        alert_sink: Optional[AlertSink] = None,
        app_version: str = "1.0.0",
        clock: Optional[Callable[[], datetime]] = None,
        alert_breaker: Optional[CircuitBreaker] = None,
    ):
        self._backend = backend or InMemoryAuditBackend()
        self._alert_sink = alert_sink
        self._app_version = app_version
        self._clock = clock or _utcnow
        self._alert_breaker = alert_breaker or CircuitBreaker(
            name="alert_sink", failure_threshold=3, recovery_timeout=60.0
        )

    def _record(
        self,
        event_type: AuditEventType,
        resource: str,
        action: str,
        outcome: Outcome,
        risk: RiskLevel,
        details: Dict[str, Any],
        metadata: Dict[str, Any],
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            event_id=f"audit_{uuid.uuid4().hex}",
            event_type=event_type,
            timestamp=self._clock(),
            user_id=user_id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
            resource=resource,
            action=action,
            details=details,
            outcome=outcome,
            risk=risk,
            metadata=metadata,
        )
        self._backend.append(event)
        return event

    def log_workflow_generation(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        description: str,
        nodes: Sequence[Any],
        edges: Sequence[Any],
        processing_time: float,
        model: str,
        outcome: Union[Outcome, str],
        errors: Optional[List[Any]] = None,
        options: Optional[Dict[str, Any]] = None,
        validation_result: Optional[ValidationResult] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditEvent:
        """Record one generation request and its response."""
        outcome = Outcome(outcome)
        errors = [str(error) for error in (errors or [])]

        event = self._record(
            AuditEventType.WORKFLOW_GENERATION,
            resource="workflow",
            action="generate",
            outcome=outcome,
            risk=assess_risk(outcome, len(errors)),
            details={
                "request": {
                    "description": sanitize_for_logging(description),
                    "options": options or {},
                },
                "response": {
                    "generatedNodes": len(nodes),
                    "generatedEdges": len(edges),
                    "processingTime": processing_time,
                    "model": model,
                    "hasValidationIssues": bool(validation_result and validation_result.errors),
                },
                "errors": [sanitize_for_logging(error, 200) for error in errors],
            },
            metadata={"version": self._app_version},
            user_id=user_id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.info(f"Workflow generation audit: {event.event_id} - {event.outcome.value}")
        return event

    def log_validation(
        self,
        user_id: Optional[str],
        resource: str,
        result: ValidationResult,
        session_id: Optional[str] = None,
        processing_time: Optional[float] = None,
    ) -> AuditEvent:
        """Record a pipeline result."""
        corrections = len(result.healable_errors()) if result.corrected_graph is not None else 0
        event = self._record(
            AuditEventType.WORKFLOW_VALIDATION,
            resource=resource,
            action="validate",
            outcome=Outcome.SUCCESS if result.is_valid else Outcome.FAILURE,
            risk=RiskLevel.MEDIUM if len(result.errors) > 5 else RiskLevel.LOW,
            details={
                "isValid": result.is_valid,
                "errorCount": len(result.errors),
                "warningCount": len(result.warnings),
                "errorCodes": sorted(set(result.codes())),
                "autoCorrections": corrections,
                "processingTime": processing_time,
            },
            metadata={"automated": True, "version": self._app_version},
            user_id=user_id,
            session_id=session_id,
        )
        logger.debug(
            f"Validation audit: {event.event_id} - {len(result.errors)} errors, "
            f"{len(result.warnings)} warnings"
        )
        return event

    def log_security_violation(
        self,
        user_id: Optional[str],
        violation_type: str,
        severity: Union[RiskLevel, str],
        description: str,
        input_text: Optional[str] = None,
        context: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditEvent:
        """Record a security violation and alert on high or critical severity."""
        risk = RiskLevel(severity)
        event = self._record(
            AuditEventType.SECURITY_VIOLATION,
            resource="security",
            action="violation_detected",
            outcome=Outcome.FAILURE,
            risk=risk,
            details={
                "violationType": violation_type,
                "severity": risk.value,
                "description": sanitize_for_logging(description),
                "input": sanitize_for_logging(input_text, 200) if input_text else None,
                "context": context,
            },
            metadata={"automated": True, "version": self._app_version},
            user_id=user_id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.warning(f"Security violation: {event.event_id} - {violation_type} ({risk.value})")
        if risk in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            self._trigger_alert(event)
        return event

    def _trigger_alert(self, event: AuditEvent) -> None:
        logger.error(
            f"SECURITY ALERT: {event.event_type.value} - {event.details.get('description')} "
            f"(event={event.event_id}, user={event.user_id}, risk={event.risk.value})"
        )
        if self._alert_sink is None:
            return
        try:
            self._alert_breaker.call(self._alert_sink, event)
        except CircuitOpenError:
            logger.warning(f"Alert sink circuit open; alert for {event.event_id} not delivered")
        except Exception as e:
            logger.error(f"Alert sink failed for {event.event_id}: {e}")

    def log_user_action(
        self,
        user_id: str,
        action: str,
        resource: str,
        details: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        outcome: Union[Outcome, str] = Outcome.SUCCESS,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditEvent:
        event = self._record(
            AuditEventType.USER_ACTION,
            resource=resource,
            action=action,
            outcome=Outcome(outcome),
            risk=RiskLevel.LOW,
            details=dict(details or {}),
            metadata={"userInitiated": True, "version": self._app_version},
            user_id=user_id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.debug(f"User action audit: {event.event_id} - {action} on {resource}")
        return event

    def log_version_event(
        self,
        user_id: Optional[str],
        workflow_id: str,
        action: str,
        version: Optional[WorkflowVersion] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """Record a version store operation such as create, activate or rollback."""
        payload = dict(details or {})
        if version is not None:
            payload.setdefault("versionId", version.id)
            payload.setdefault("version", version.version)
            payload.setdefault("status", version.status.value)

        event = self._record(
            AuditEventType.WORKFLOW_VERSION,
            resource=f"workflow:{workflow_id}",
            action=action,
            outcome=Outcome.SUCCESS,
            risk=RiskLevel.LOW,
            details=payload,
            metadata={"version": self._app_version},
            user_id=user_id,
        )
        logger.info(f"Version audit: {event.event_id} - {action} on workflow {workflow_id}")
        return event

    def get_user_audit_trail(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        event_types: Optional[Iterable[AuditEventType]] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        """A user's events, newest first. An empty event_types matches nothing."""
        types = list(event_types) if event_types is not None else None
        events = self._backend.query(start=start, end=end, user_id=user_id, event_types=types)
        events.reverse()
        if limit is not None:
            events = events[:limit]
        return events

    def get_metrics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> GenerationMetrics:
        events = self._backend.query(start=start, end=end)

        generations = [e for e in events if e.event_type == AuditEventType.WORKFLOW_GENERATION]
        processing_times = [
            e.details.get("response", {}).get("processingTime") for e in generations
        ]
        processing_times = [
            t for t in processing_times if isinstance(t, (int, float)) and not isinstance(t, bool)
        ]

        return GenerationMetrics(
            total_generations=len(generations),
            successful_generations=sum(1 for e in generations if e.outcome == Outcome.SUCCESS),
            failed_generations=sum(1 for e in generations if e.outcome == Outcome.FAILURE),
            average_response_time=(
                sum(processing_times) / len(processing_times) if processing_times else 0.0
            ),
            validation_failures=sum(
                1 for e in events
                if e.event_type == AuditEventType.WORKFLOW_VALIDATION and e.outcome == Outcome.FAILURE
            ),
            security_issues=sum(1 for e in events if e.event_type == AuditEventType.SECURITY_VIOLATION),
            auto_corrections=sum(
                e.details.get("autoCorrections") or 0 for e in events
                if e.event_type == AuditEventType.WORKFLOW_VALIDATION
            ),
        )

    def get_security_report(self, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> SecurityReport:
        """Violation totals, top types, daily trend and recommendations for a time range."""
        violations = self._backend.query(
            start=start, end=end, event_types=[AuditEventType.SECURITY_VIOLATION]
        )

        by_severity = Counter(event.risk.value for event in violations)
        types = Counter(event.details.get("violationType") or "unknown" for event in violations)
        top_types = [
            ViolationCount(type=violation_type, count=count)
            for violation_type, count in sorted(types.items(), key=lambda item: (-item[1], item[0]))
        ][:TOP_VIOLATION_TYPES]

        daily = Counter(
            event.timestamp.astimezone(timezone.utc).date().isoformat()
            if event.timestamp.tzinfo else event.timestamp.date().isoformat()
            for event in violations
        )

        critical = by_severity.get(RiskLevel.CRITICAL.value, 0)
        recommendations = []
        if critical:
            recommendations.append("Address critical security violations immediately")
        if top_types and top_types[0].count > FOCUS_TYPE_THRESHOLD:
            recommendations.append(f"Focus on preventing {top_types[0].type} violations")
        if len(violations) > RATE_LIMIT_THRESHOLD:
            recommendations.append("Consider implementing additional rate limiting")

        return SecurityReport(
            summary=SecuritySummary(
                total_violations=len(violations),
                by_severity={level.value: by_severity.get(level.value, 0) for level in RiskLevel},
                critical_violations=critical,
                high_risk_violations=by_severity.get(RiskLevel.HIGH.value, 0),
                top_violation_types=top_types,
            ),
            daily_violations=[DailyCount(date=day, count=count) for day, count in sorted(daily.items())],
            recommendations=recommendations,
        )

    def count(self) -> int:
        return self._backend.count()
