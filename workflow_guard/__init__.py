"""Workflow Guard - validation, healing and audit layer for generated workflow graphs."""

from .core import (
    ValidationPipeline,
    heal_until_stable,
    SecurityScanner,
    VersionStore,
    AuditLog,
    WorkflowGuard,
)
from .models import WorkflowGraph, ValidationResult

__version__ = "1.0.0"

__all__ = [
    "ValidationPipeline",
    "heal_until_stable",
    "SecurityScanner",
    "VersionStore",
    "AuditLog",
    "WorkflowGuard",
    "WorkflowGraph",
    "ValidationResult",
]
