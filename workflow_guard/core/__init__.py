"""Core workflow guard components."""

from .exceptions import (
    WorkflowGuardError,
    VersionNotFoundError,
    ActiveVersionError,
    StorageError,
    ConfigurationError,
    GenerationError,
)
from .logging import setup_logging, get_logger, logging_context
from .graph_analyzer import GraphAnalyzer
from .schema_validator import SchemaValidator
from .business_rules import BusinessRuleValidator
from .security_scanner import SecurityScanner
from .auto_healer import AutoHealer
from .pipeline import ValidationPipeline, HealingOutcome, heal_until_stable
from .version_store import VersionStore
from .audit_log import AuditLog
from .guard import WorkflowGuard, GenerationProvider, GenerationOutcome

__all__ = [
    "WorkflowGuardError",
    "VersionNotFoundError",
    "ActiveVersionError",
    "StorageError",
    "ConfigurationError",
    "GenerationError",
    "setup_logging",
    "logging_context",
    "get_logger",
    "GraphAnalyzer",
    "SchemaValidator",
    "BusinessRuleValidator",
    "SecurityScanner",
    "AutoHealer",
    "ValidationPipeline",
    "HealingOutcome",
    "heal_until_stable",
    "VersionStore",
    "AuditLog",
    "WorkflowGuard",
    "GenerationProvider",
    "GenerationOutcome",
]
