"""Persistence interfaces for versions and audit events."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from ..models.audit import AuditEvent, AuditEventType
from ..models.version import WorkflowVersion


class VersionBackend(ABC):
    """Stores workflow versions. Implementations must be safe across threads."""

    @abstractmethod
    def save(self, version: WorkflowVersion) -> None:
        """Insert a version or replace the stored version with the same id."""

    def save_all(self, versions: Iterable[WorkflowVersion]) -> None:
        """Save several versions; backends that can should do it atomically."""
        for version in versions:
            self.save(version)

    @abstractmethod
    def get(self, version_id: str) -> Optional[WorkflowVersion]:
        """Return the version with this id, or None."""

    @abstractmethod
    def list_for_workflow(self, workflow_id: str) -> List[WorkflowVersion]:
        """All versions of a workflow ordered by version number, oldest first."""

    @abstractmethod
    def delete(self, version_id: str) -> bool:
        """Remove a version; False when it did not exist."""


class AuditBackend(ABC):
    """Append-only store of audit events."""

    @abstractmethod
    def append(self, event: AuditEvent) -> None:
        """Persist one event."""

    @abstractmethod
    def query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        event_types: Optional[Iterable[AuditEventType]] = None,
    ) -> List[AuditEvent]:
        """Events matching every given filter, oldest first.

        ``start`` and ``end`` are inclusive bounds on the event timestamp.
        """

    @abstractmethod
    def count(self) -> int:
        """Number of events currently retained."""
