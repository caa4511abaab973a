"""Thread-safe in-memory backends."""

import threading
from collections import deque
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..models.audit import AuditEvent, AuditEventType
from ..models.version import WorkflowVersion
from .base import VersionBackend, AuditBackend


class InMemoryVersionBackend(VersionBackend):
    """Keeps versions in process memory; callers always receive copies."""

    def __init__(self):
        self._versions: Dict[str, WorkflowVersion] = {}
        self._by_workflow: Dict[str, List[str]] = {}
        self._lock = threading.RLock()

    def save(self, version: WorkflowVersion) -> None:
        with self._lock:
            if version.id not in self._versions:
                self._by_workflow.setdefault(version.workflow_id, []).append(version.id)
            self._versions[version.id] = version.model_copy(deep=True)

    def save_all(self, versions: Iterable[WorkflowVersion]) -> None:
        with self._lock:
            for version in versions:
                self.save(version)

    def get(self, version_id: str) -> Optional[WorkflowVersion]:
        with self._lock:
            version = self._versions.get(version_id)
            return version.model_copy(deep=True) if version else None

    def list_for_workflow(self, workflow_id: str) -> List[WorkflowVersion]:
        with self._lock:
            versions = [self._versions[version_id].model_copy(deep=True)
                        for version_id in self._by_workflow.get(workflow_id, [])]
        return sorted(versions, key=lambda v: v.version)

    def delete(self, version_id: str) -> bool:
        with self._lock:
            version = self._versions.pop(version_id, None)
            if version is None:
                return False
            self._by_workflow[version.workflow_id].remove(version_id)
            return True


class InMemoryAuditBackend(AuditBackend):
    """Bounded event log; the oldest events are evicted first once full.

    Stored events are private copies, so callers cannot edit history in place.
    """

    def __init__(self, max_events: int = 10000):
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        self.max_events = max_events
        self._events = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def append(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event.model_copy(deep=True))

    def query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        event_types: Optional[Iterable[AuditEventType]] = None,
    ) -> List[AuditEvent]:
        types = set(event_types) if event_types is not None else None
        with self._lock:
            snapshot = list(self._events)

        return [
            event.model_copy(deep=True) for event in snapshot
            if (start is None or event.timestamp >= start)
            and (end is None or event.timestamp <= end)
            and (user_id is None or event.user_id == user_id)
            and (types is None or event.event_type in types)
        ]

    def count(self) -> int:
        with self._lock:
            return len(self._events)
