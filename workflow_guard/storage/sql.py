"""SQLAlchemy-backed implementations of the persistence interfaces."""

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.error_recovery import RetryConfig, with_retry
from ..core.exceptions import StorageError
from ..core.logging import get_logger
from ..models.audit import AuditEvent, AuditEventType
from ..models.version import WorkflowVersion
from .base import VersionBackend, AuditBackend
from .database import create_session_factory
from .models import WorkflowVersionModel, AuditEventModel

logger = get_logger(__name__)

STORAGE_RETRY = RetryConfig(max_attempts=3, base_delay=0.05, max_delay=1.0)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class _SqlBackend:
    """Shared session handling: commit on success, wrap database errors."""

    table: str = ""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or create_session_factory()
        self._lock = threading.RLock()

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        with self._lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error during {operation} on {self.table}: {str(e)}")
                raise StorageError(
                    f"Failed to {operation}: {str(e)}",
                    operation=operation,
                    table=self.table,
                    transient=isinstance(e, OperationalError),
                ) from e
            finally:
                session.close()


class SqlVersionBackend(_SqlBackend, VersionBackend):
    """Stores workflow versions in the ``workflow_versions`` table."""

    table = WorkflowVersionModel.__tablename__

    @with_retry(STORAGE_RETRY)
    def save(self, version: WorkflowVersion) -> None:
        with self._session("save version") as session:
            session.merge(self._to_row(version))

    @with_retry(STORAGE_RETRY)
    def save_all(self, versions: Iterable[WorkflowVersion]) -> None:
        rows = [self._to_row(version) for version in versions]
        with self._session("save versions") as session:
            for row in rows:
                session.merge(row)

    @with_retry(STORAGE_RETRY)
    def get(self, version_id: str) -> Optional[WorkflowVersion]:
        with self._session("get version") as session:
            row = session.get(WorkflowVersionModel, version_id)
            return self._from_row(row) if row else None

    @with_retry(STORAGE_RETRY)
    def list_for_workflow(self, workflow_id: str) -> List[WorkflowVersion]:
        with self._session("list versions") as session:
            rows = (
                session.query(WorkflowVersionModel)
                .filter(WorkflowVersionModel.workflow_id == workflow_id)
                .order_by(WorkflowVersionModel.version.asc())
                .all()
            )
            return [self._from_row(row) for row in rows]

    @with_retry(STORAGE_RETRY)
    def delete(self, version_id: str) -> bool:
        with self._session("delete version") as session:
            row = session.get(WorkflowVersionModel, version_id)
            if row is None:
                return False
            session.delete(row)
            return True

    @staticmethod
    def _to_row(version: WorkflowVersion) -> WorkflowVersionModel:
        data = version.model_dump(mode="json", by_alias=True)
        return WorkflowVersionModel(
            id=version.id,
            workflow_id=version.workflow_id,
            version=version.version,
            name=version.name,
            description=version.description,
            status=version.status.value,
            nodes=data["nodes"],
            edges=data["edges"],
            version_metadata=data["metadata"],
            checksums=data["checksums"],
            full_checksum=version.checksums.full,
            created_at=_naive_utc(version.metadata.created_at),
        )

    @staticmethod
    def _from_row(row: WorkflowVersionModel) -> WorkflowVersion:
        return WorkflowVersion.model_validate({
            "id": row.id,
            "workflowId": row.workflow_id,
            "version": row.version,
            "name": row.name,
            "description": row.description,
            "status": row.status,
            "nodes": row.nodes,
            "edges": row.edges,
            "metadata": row.version_metadata,
            "checksums": row.checksums,
        })


class SqlAuditBackend(_SqlBackend, AuditBackend):
    """Stores audit events in the ``audit_events`` table. Unbounded."""

    table = AuditEventModel.__tablename__

    @with_retry(STORAGE_RETRY)
    def append(self, event: AuditEvent) -> None:
        with self._session("append audit event") as session:
            session.add(AuditEventModel(
                event_id=event.event_id,
                event_type=event.event_type.value,
                timestamp=_naive_utc(event.timestamp),
                user_id=event.user_id,
                session_id=event.session_id,
                resource=event.resource,
                action=event.action,
                outcome=event.outcome.value,
                risk=event.risk.value,
                payload=event.model_dump(mode="json", by_alias=True),
            ))

    @with_retry(STORAGE_RETRY)
    def query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        event_types: Optional[Iterable[AuditEventType]] = None,
    ) -> List[AuditEvent]:
        with self._session("query audit events") as session:
            query = session.query(AuditEventModel)
            if start is not None:
                query = query.filter(AuditEventModel.timestamp >= _naive_utc(start))
            if end is not None:
                query = query.filter(AuditEventModel.timestamp <= _naive_utc(end))
            if user_id is not None:
                query = query.filter(AuditEventModel.user_id == user_id)
            if event_types is not None:
                values = [AuditEventType(event_type).value for event_type in event_types]
                query = query.filter(AuditEventModel.event_type.in_(values))

            rows = query.order_by(AuditEventModel.timestamp.asc(), AuditEventModel.id.asc()).all()
            return [AuditEvent.model_validate(row.payload) for row in rows]

    @with_retry(STORAGE_RETRY)
    def count(self) -> int:
        with self._session("count audit events") as session:
            return session.query(AuditEventModel).count()
