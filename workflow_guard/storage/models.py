"""SQLAlchemy database models for versions and audit events."""

from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, UniqueConstraint
from .database import Base


class WorkflowVersionModel(Base):
    """Database model for workflow versions."""
    __tablename__ = "workflow_versions"
    __table_args__ = (UniqueConstraint("workflow_id", "version", name="uq_workflow_version"),)

    id = Column(String, primary_key=True)
    workflow_id = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False)  # draft, active, archived, deprecated
    nodes = Column(JSON, nullable=False)
    edges = Column(JSON, nullable=False)
    version_metadata = Column("metadata", JSON, nullable=False)
    checksums = Column(JSON, nullable=False)
    full_checksum = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)


class AuditEventModel(Base):
    """Database model for audit events."""
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String, nullable=False, unique=True)
    event_type = Column(String, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)  # naive UTC
    user_id = Column(String, index=True)
    session_id = Column(String)
    resource = Column(String, nullable=False)
    action = Column(String, nullable=False)
    outcome = Column(String, nullable=False)
    risk = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)  # Complete serialized event
