"""Persistence backends for versions and audit events."""

from .base import VersionBackend, AuditBackend
from .memory import InMemoryVersionBackend, InMemoryAuditBackend
from .database import (
    Base,
    create_database_engine,
    get_database_engine,
    reset_database_engine,
    create_session_factory,
    create_tables,
    drop_tables,
)
from .models import WorkflowVersionModel, AuditEventModel
from .sql import SqlVersionBackend, SqlAuditBackend

__all__ = [
    "VersionBackend",
    "AuditBackend",
    "InMemoryVersionBackend",
    "InMemoryAuditBackend",
    "Base",
    "create_database_engine",
    "get_database_engine",
    "reset_database_engine",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "WorkflowVersionModel",
    "AuditEventModel",
    "SqlVersionBackend",
    "SqlAuditBackend",
]
