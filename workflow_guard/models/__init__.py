"""Data models for the workflow guard."""

from .graph import (
    BlockType,
    NodeType,
    Position,
    Node,
    Edge,
    WorkflowGraph,
    BlockConfig,
    HttpRequestConfig,
    WebhookConfig,
    NotificationConfig,
    CustomCodeConfig,
    BLOCK_CONFIG_MODELS,
)
from .validation import (
    ValidationKind,
    Severity,
    ErrorCode,
    WarningCode,
    HEALABLE_CODES,
    ValidationError,
    ValidationWarning,
    ValidationResult,
)
from .security import (
    IssueType,
    IssueSeverity,
    SecurityIssue,
    PromptScanResult,
    CodeScanResult,
)
from .version import (
    VersionStatus,
    Checksums,
    VersionMetadata,
    WorkflowVersion,
    VersionDiff,
    ActivationResult,
    RollbackResult,
    VersionStats,
)
from .audit import (
    AuditEventType,
    Outcome,
    RiskLevel,
    AuditEvent,
    GenerationMetrics,
    SecurityReport,
)

__all__ = [
    "BlockType",
    "NodeType",
    "Position",
    "Node",
    "Edge",
    "WorkflowGraph",
    "BlockConfig",
    "HttpRequestConfig",
    "WebhookConfig",
    "NotificationConfig",
    "CustomCodeConfig",
    "BLOCK_CONFIG_MODELS",
    "ValidationKind",
    "Severity",
    "ErrorCode",
    "WarningCode",
    "HEALABLE_CODES",
    "ValidationError",
    "ValidationWarning",
    "ValidationResult",
    "IssueType",
    "IssueSeverity",
    "SecurityIssue",
    "PromptScanResult",
    "CodeScanResult",
    "VersionStatus",
    "Checksums",
    "VersionMetadata",
    "WorkflowVersion",
    "VersionDiff",
    "ActivationResult",
    "RollbackResult",
    "VersionStats",
    "AuditEventType",
    "Outcome",
    "RiskLevel",
    "AuditEvent",
    "GenerationMetrics",
    "SecurityReport",
]
