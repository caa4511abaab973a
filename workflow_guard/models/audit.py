"""Audit trail models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class AuditEventType(str, Enum):
    """Kinds of operations recorded in the audit trail."""
    WORKFLOW_GENERATION = "workflow_generation"
    WORKFLOW_VALIDATION = "workflow_validation"
    WORKFLOW_VERSION = "workflow_version"
    SECURITY_VIOLATION = "security_violation"
    PROMPT_INJECTION = "prompt_injection"
    CODE_EXECUTION = "code_execution"
    USER_ACTION = "user_action"
    SYSTEM_ERROR = "system_error"
    CONFIGURATION_CHANGE = "configuration_change"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """A recorded operation. Frozen: events are never edited once created."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_id: str = Field(..., alias="eventId")
    event_type: AuditEventType = Field(..., alias="eventType")
    timestamp: datetime
    user_id: Optional[str] = Field(None, alias="userId")
    session_id: Optional[str] = Field(None, alias="sessionId")
    ip_address: Optional[str] = Field(None, alias="ipAddress")
    user_agent: Optional[str] = Field(None, alias="userAgent")
    resource: str
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    outcome: Outcome
    risk: RiskLevel
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GenerationMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_generations: int = Field(0, alias="totalGenerations")
    successful_generations: int = Field(0, alias="successfulGenerations")
    failed_generations: int = Field(0, alias="failedGenerations")
    average_response_time: float = Field(0.0, alias="averageResponseTime")
    validation_failures: int = Field(0, alias="validationFailures")
    security_issues: int = Field(0, alias="securityIssues")
    auto_corrections: int = Field(0, alias="autoCorrections")


class ViolationCount(BaseModel):
    type: str
    count: int


class DailyCount(BaseModel):
    date: str
    count: int


class SecuritySummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_violations: int = Field(0, alias="totalViolations")
    by_severity: Dict[str, int] = Field(default_factory=dict, alias="bySeverity")
    critical_violations: int = Field(0, alias="criticalViolations")
    high_risk_violations: int = Field(0, alias="highRiskViolations")
    top_violation_types: List[ViolationCount] = Field(default_factory=list, alias="topViolationTypes")


class SecurityReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: SecuritySummary
    daily_violations: List[DailyCount] = Field(default_factory=list, alias="dailyViolations")
    recommendations: List[str] = Field(default_factory=list)
