"""Validation result models shared by the validators, healer and pipeline."""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .graph import WorkflowGraph


class ValidationKind(str, Enum):
    """Which validator produced a finding."""
    SCHEMA = "schema"
    BUSINESS = "business"
    GRAPH = "graph"
    SECURITY = "security"


class Severity(str, Enum):
    """Severity of a validation finding."""
    ERROR = "error"
    WARNING = "warning"


class ErrorCode:
    """Stable codes callers and the auto-healer branch on."""
    SCHEMA_VALIDATION_ERROR = "SCHEMA_VALIDATION_ERROR"
    MISSING_ID = "MISSING_ID"
    MISSING_POSITION = "MISSING_POSITION"
    DUPLICATE_NODE_ID = "DUPLICATE_NODE_ID"
    DUPLICATE_EDGE_ID = "DUPLICATE_EDGE_ID"
    NO_TRIGGER_NODE = "NO_TRIGGER_NODE"
    MISSING_REQUIRED_CONFIG = "MISSING_REQUIRED_CONFIG"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    UNREACHABLE_NODES = "UNREACHABLE_NODES"
    INVALID_EDGE_REFERENCE = "INVALID_EDGE_REFERENCE"
    UNSAFE_CODE_DETECTED = "UNSAFE_CODE_DETECTED"


class WarningCode:
    """Codes for advisory findings."""
    MULTIPLE_TRIGGERS = "MULTIPLE_TRIGGERS"
    INCOMPATIBLE_CONNECTION = "INCOMPATIBLE_CONNECTION"
    ORPHANED_NODES = "ORPHANED_NODES"
    SENSITIVE_CONFIG = "SENSITIVE_CONFIG"
    CODE_SECURITY_ISSUE = "CODE_SECURITY_ISSUE"


HEALABLE_CODES = frozenset({
    ErrorCode.MISSING_ID,
    ErrorCode.MISSING_REQUIRED_CONFIG,
    ErrorCode.UNREACHABLE_NODES,
    ErrorCode.MISSING_POSITION,
})


class ValidationError(BaseModel):
    """A coded validation finding."""
    model_config = ConfigDict(populate_by_name=True)

    kind: ValidationKind = Field(..., description="Validator that produced the finding")
    code: str = Field(..., description="Stable error code")
    message: str = Field(..., description="Human-readable description")
    node_id: Optional[str] = Field(None, alias="nodeId", description="Offending node")
    edge_id: Optional[str] = Field(None, alias="edgeId", description="Offending edge")
    path: Optional[str] = Field(None, description="Dotted field path for schema findings")
    severity: Severity = Field(Severity.ERROR, description="error or warning")

    @property
    def is_healable(self) -> bool:
        return self.code in HEALABLE_CODES


class ValidationWarning(BaseModel):
    """An advisory finding; never affects validity."""
    model_config = ConfigDict(populate_by_name=True)

    kind: ValidationKind = Field(..., description="Validator that produced the warning")
    code: str = Field(..., description="Stable warning code")
    message: str = Field(..., description="Human-readable description")
    node_id: Optional[str] = Field(None, alias="nodeId", description="Related node")
    suggestion: Optional[str] = Field(None, description="Suggested fix")


class ValidationResult(BaseModel):
    """Aggregated outcome of a pipeline run."""
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(..., alias="isValid", description="Whether the graph passed")
    errors: List[ValidationError] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    corrected_graph: Optional[WorkflowGraph] = Field(
        None, alias="correctedGraph", description="Auto-healed graph, if any repair applied"
    )

    def codes(self) -> List[str]:
        return [error.code for error in self.errors]

    def healable_errors(self) -> List[ValidationError]:
        return [error for error in self.errors if error.is_healable]
