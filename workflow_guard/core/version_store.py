"""Content-addressed version history with activation, rollback and diffing."""

import hashlib
import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..models.graph import Node, Edge
from ..models.validation import ValidationResult
from ..models.version import (
    VersionStatus,
    Checksums,
    VersionMetadata,
    WorkflowVersion,
    NodeModification,
    EdgeModification,
    DiffSummary,
    VersionDiff,
    ActivationResult,
    RollbackResult,
    VersionStats,
)
from ..storage.base import VersionBackend
from ..storage.memory import InMemoryVersionBackend
from .exceptions import VersionNotFoundError, ActiveVersionError
from .logging import get_logger

logger = get_logger(__name__)

SIGNIFICANT_CHANGE_THRESHOLD = 5
NODE_DIFF_FIELDS = ("label", "block_type", "config", "position")
EDGE_DIFF_FIELDS = ("source", "target", "source_handle", "target_handle")
_FIELD_NAMES = {
    "block_type": "blockType",
    "source_handle": "sourceHandle",
    "target_handle": "targetHandle",
}


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _fingerprint(text: str) -> str:
    return hashlib.blake2b(text.encode("utf-8"), digest_size=16).hexdigest()


def compute_checksums(nodes: List[Node], edges: List[Edge]) -> Checksums:
    """Fingerprint graph content over canonical JSON.

    Used for deduplication and quick comparison only; not a tamper check.
    """
    nodes_json = _canonical([node.model_dump(mode="json", by_alias=True, exclude_none=True) for node in nodes])
    edges_json = _canonical([edge.model_dump(mode="json", by_alias=True, exclude_none=True) for edge in edges])
    return Checksums(
        nodes=_fingerprint(nodes_json),
        edges=_fingerprint(edges_json),
        full=_fingerprint(_canonical({"nodes": nodes_json, "edges": edges_json})),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VersionStore:
    """
    Append-only version history per workflow.

    Mutations for one workflow are serialized by a re-entrant lock, which
    keeps exactly one version active and version numbers strictly
    increasing. Reads go straight to the backend.
    """

    def __init__(
        self,
        backend: Optional[VersionBackend] = None,
        max_versions: int = 50,
        archive_keep: int = 20,
        rollback_warning_distance: int = 5,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._backend = backend or InMemoryVersionBackend()
        self.max_versions = max_versions
        self.archive_keep = archive_keep
        self.rollback_warning_distance = rollback_warning_distance
        self._clock = clock or _utcnow

        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        # Highest number ever issued per workflow, so deleting the newest
        # version never frees its number for reuse.
        self._high_water: Dict[str, int] = {}

    def _lock_for(self, workflow_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(workflow_id)
            if lock is None:
                lock = self._locks[workflow_id] = threading.RLock()
            return lock

    def create_version(
        self,
        workflow_id: str,
        nodes: Iterable[Any],
        edges: Iterable[Any],
        created_by: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        generation_prompt: Optional[str] = None,
        generation_options: Optional[Dict[str, Any]] = None,
        validation_result: Optional[Any] = None,
        parent_version_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> WorkflowVersion:
        """
        Snapshot graph content as a new version.

        Content identical to an existing version of the same workflow
        returns that version unchanged.

        Args:
            workflow_id: Workflow the version belongs to
            nodes: Nodes as models or raw mappings
            edges: Edges as models or raw mappings
            created_by: User or service creating the version

        Returns:
            WorkflowVersion: The new or existing version
        """
        return self._create(
            workflow_id, nodes, edges, created_by,
            name=name,
            description=description,
            generation_prompt=generation_prompt,
            generation_options=generation_options,
            validation_result=validation_result,
            parent_version_id=parent_version_id,
            tags=tags,
            deduplicate=True,
        )

    def _create(self, workflow_id, nodes, edges, created_by, *, name, description, generation_prompt,
                generation_options, validation_result, parent_version_id, tags,
                deduplicate: bool) -> WorkflowVersion:
        node_list = [node for node in (Node.from_untrusted(item) for item in nodes) if node is not None]
        edge_list = [edge for edge in (Edge.from_untrusted(item) for item in edges) if edge is not None]
        checksums = compute_checksums(node_list, edge_list)

        with self._lock_for(workflow_id):
            existing = self._backend.list_for_workflow(workflow_id)

            if deduplicate:
                for version in existing:
                    if version.checksums.full == checksums.full:
                        logger.debug(f"Version already exists for workflow {workflow_id}: {version.id}")
                        return version

            latest = existing[-1] if existing else None
            number = max(self._high_water.get(workflow_id, 0), latest.version if latest else 0) + 1

            if isinstance(validation_result, ValidationResult):
                validation_result = validation_result.model_dump(mode="json", by_alias=True)

            version = WorkflowVersion(
                id=f"version_{uuid.uuid4()}",
                workflow_id=workflow_id,
                version=number,
                name=name or f"Version {number}",
                description=description,
                nodes=node_list,
                edges=edge_list,
                metadata=VersionMetadata(
                    created_by=created_by,
                    created_at=self._clock(),
                    generation_prompt=generation_prompt,
                    generation_options=generation_options,
                    validation_result=validation_result,
                    parent_version_id=parent_version_id or (latest.id if latest else None),
                    tags=list(tags or []),
                ),
                status=VersionStatus.ACTIVE if not existing else VersionStatus.DRAFT,
                checksums=checksums,
            )

            self._backend.save(version)
            self._high_water[workflow_id] = number
            logger.info(f"Created version {number} for workflow {workflow_id}: {version.id}")

            self._maintain_history(workflow_id)
            return version

    def _maintain_history(self, workflow_id: str) -> None:
        versions = self._backend.list_for_workflow(workflow_id)
        if len(versions) <= self.max_versions:
            return

        inactive = [v for v in versions if v.status != VersionStatus.ACTIVE]
        inactive.sort(key=lambda v: v.version, reverse=True)
        to_archive = [v for v in inactive[self.archive_keep:] if v.status != VersionStatus.ARCHIVED]
        if not to_archive:
            return

        for version in to_archive:
            version.status = VersionStatus.ARCHIVED
        self._backend.save_all(to_archive)
        logger.info(f"Auto-archived {len(to_archive)} versions for workflow {workflow_id}")

    def get_version(self, workflow_id: str, version_id: str) -> Optional[WorkflowVersion]:
        version = self._backend.get(version_id)
        if version is None or version.workflow_id != workflow_id:
            return None
        return version

    def get_version_by_number(self, workflow_id: str, number: int) -> Optional[WorkflowVersion]:
        for version in self._backend.list_for_workflow(workflow_id):
            if version.version == number:
                return version
        return None

    def get_latest_version(self, workflow_id: str) -> Optional[WorkflowVersion]:
        versions = self._backend.list_for_workflow(workflow_id)
        return versions[-1] if versions else None

    def get_active_version(self, workflow_id: str) -> Optional[WorkflowVersion]:
        for version in self._backend.list_for_workflow(workflow_id):
            if version.status == VersionStatus.ACTIVE:
                return version
        return None

    def get_version_history(
        self,
        workflow_id: str,
        include_archived: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[WorkflowVersion]:
        """Versions of a workflow, newest first."""
        versions = self._backend.list_for_workflow(workflow_id)
        if not include_archived:
            versions = [v for v in versions if v.status != VersionStatus.ARCHIVED]
        versions.reverse()

        if offset:
            versions = versions[offset:]
        if limit is not None:
            versions = versions[:limit]
        return versions

    def _require(self, workflow_id: str, version_id: str) -> WorkflowVersion:
        version = self.get_version(workflow_id, version_id)
        if version is None:
            raise VersionNotFoundError(
                f"Version {version_id} not found for workflow {workflow_id}",
                workflow_id=workflow_id,
                version_id=version_id,
            )
        return version

    def activate_version(self, workflow_id: str, version_id: str) -> ActivationResult:
        """
        Make a version the single active version of its workflow.

        The previously active version returns to draft.

        Raises:
            VersionNotFoundError: If the version does not exist in this workflow
        """
        with self._lock_for(workflow_id):
            target = self._require(workflow_id, version_id)
            previous = self.get_active_version(workflow_id)

            if previous is not None and previous.id == target.id:
                return ActivationResult(success=True, previous_active=None, new_active=target)

            changed = []
            if previous is not None:
                previous.status = VersionStatus.DRAFT
                changed.append(previous)
            target.status = VersionStatus.ACTIVE
            changed.append(target)
            self._backend.save_all(changed)

            logger.info(f"Activated version {target.version} for workflow {workflow_id}")
            return ActivationResult(success=True, previous_active=previous, new_active=target)

    def rollback(
        self,
        workflow_id: str,
        target_version_id: str,
        performed_by: str,
        reason: Optional[str] = None,
        create_backup: bool = True,
    ) -> RollbackResult:
        """
        Activate an earlier version, optionally snapshotting the current one first.

        The backup is always a new version, even when its content matches an
        existing version.

        Raises:
            VersionNotFoundError: If the target does not exist in this workflow
        """
        with self._lock_for(workflow_id):
            target = self._require(workflow_id, target_version_id)
            current = self.get_active_version(workflow_id)
            warnings: List[str] = []

            backup = None
            if create_backup and current is not None:
                backup = self._create(
                    workflow_id, current.nodes, current.edges, performed_by,
                    name=f"Backup before rollback to v{target.version}",
                    description=f"Automatic backup created before rollback. "
                                f"Reason: {reason or 'No reason provided'}",
                    generation_prompt=None,
                    generation_options=None,
                    validation_result=None,
                    parent_version_id=current.id,
                    tags=["backup", "rollback"],
                    deduplicate=False,
                )

            if current is not None and target.version < current.version - self.rollback_warning_distance:
                warnings.append(
                    f"Rolling back more than {self.rollback_warning_distance} versions - "
                    f"potential compatibility issues"
                )

            activation = self.activate_version(workflow_id, target_version_id)
            logger.info(
                f"Rolled back workflow {workflow_id} to version {target.version}. "
                f"Reason: {reason or 'Not specified'}"
            )

            return RollbackResult(
                success=activation.success,
                rolled_back_to=activation.new_active,
                backup=backup,
                warnings=warnings or None,
            )

    def archive_version(self, workflow_id: str, version_id: str) -> bool:
        """Archive a version; False if it does not exist.

        Raises:
            ActiveVersionError: If the version is active
        """
        with self._lock_for(workflow_id):
            version = self.get_version(workflow_id, version_id)
            if version is None:
                return False
            if version.status == VersionStatus.ACTIVE:
                raise ActiveVersionError(
                    "Cannot archive active version",
                    workflow_id=workflow_id, version_id=version_id, operation="archive",
                )
            version.status = VersionStatus.ARCHIVED
            self._backend.save(version)
            logger.info(f"Archived version {version.version} for workflow {workflow_id}")
            return True

    def delete_version(self, workflow_id: str, version_id: str) -> bool:
        """Permanently delete a version; False if it does not exist.

        Raises:
            ActiveVersionError: If the version is active
        """
        with self._lock_for(workflow_id):
            version = self.get_version(workflow_id, version_id)
            if version is None:
                return False
            if version.status == VersionStatus.ACTIVE:
                raise ActiveVersionError(
                    "Cannot delete active version",
                    workflow_id=workflow_id, version_id=version_id, operation="delete",
                )
            self._high_water[workflow_id] = max(self._high_water.get(workflow_id, 0), version.version)
            deleted = self._backend.delete(version_id)
            logger.info(f"Deleted version {version.version} for workflow {workflow_id}")
            return deleted

    def compare_versions(self, workflow_id: str, from_version_id: str, to_version_id: str) -> VersionDiff:
        """
        Diff two versions of a workflow.

        Raises:
            VersionNotFoundError: If either version does not exist in this workflow
        """
        before = self._require(workflow_id, from_version_id)
        after = self._require(workflow_id, to_version_id)
        return diff_versions(before, after)

    def get_version_stats(self, workflow_id: str) -> VersionStats:
        versions = self._backend.list_for_workflow(workflow_id)
        if not versions:
            return VersionStats()

        active = next((v for v in versions if v.status == VersionStatus.ACTIVE), None)
        average = 0.0
        if len(versions) > 1:
            gaps = [
                (later.metadata.created_at - earlier.metadata.created_at).total_seconds()
                for earlier, later in zip(versions, versions[1:])
            ]
            average = sum(gaps) / len(gaps) / 3600

        return VersionStats(
            total_versions=len(versions),
            active_version=active.version if active else None,
            oldest_version=versions[0].version,
            newest_version=versions[-1].version,
            archived_count=sum(1 for v in versions if v.status == VersionStatus.ARCHIVED),
            draft_count=sum(1 for v in versions if v.status == VersionStatus.DRAFT),
            average_time_between_versions=average,
        )


def _changed_fields(before: Any, after: Any, fields) -> List[str]:
    changes = []
    for field in fields:
        old, new = getattr(before, field), getattr(after, field)
        if field in ("config", "position"):
            old = _canonical(old.model_dump() if hasattr(old, "model_dump") else old)
            new = _canonical(new.model_dump() if hasattr(new, "model_dump") else new)
        if old != new:
            changes.append(_FIELD_NAMES.get(field, field))
    return changes


def diff_versions(before: WorkflowVersion, after: WorkflowVersion) -> VersionDiff:
    """Set difference over ids plus field-level comparison of shared ids."""
    before_nodes = {node.id: node for node in before.nodes}
    after_nodes = {node.id: node for node in after.nodes}
    before_edges = {edge.id: edge for edge in before.edges}
    after_edges = {edge.id: edge for edge in after.edges}

    nodes_added = [node for node in after.nodes if node.id not in before_nodes]
    nodes_removed = [node for node in before.nodes if node.id not in after_nodes]
    nodes_modified = []
    for node in after.nodes:
        previous = before_nodes.get(node.id)
        if previous is not None:
            changes = _changed_fields(previous, node, NODE_DIFF_FIELDS)
            if changes:
                nodes_modified.append(NodeModification(before=previous, after=node, changes=changes))

    edges_added = [edge for edge in after.edges if edge.id not in before_edges]
    edges_removed = [edge for edge in before.edges if edge.id not in after_edges]
    edges_modified = []
    for edge in after.edges:
        previous = before_edges.get(edge.id)
        if previous is not None:
            changes = _changed_fields(previous, edge, EDGE_DIFF_FIELDS)
            if changes:
                edges_modified.append(EdgeModification(before=previous, after=edge, changes=changes))

    total = (len(nodes_added) + len(nodes_removed) + len(nodes_modified)
             + len(edges_added) + len(edges_removed) + len(edges_modified))
    # A block type change alters execution semantics regardless of count.
    significant = (
        total > SIGNIFICANT_CHANGE_THRESHOLD
        or bool(nodes_removed)
        or any("blockType" in change.changes for change in nodes_modified)
    )

    change_types = [
        label for label, items in (
            ("nodes_added", nodes_added),
            ("nodes_removed", nodes_removed),
            ("nodes_modified", nodes_modified),
            ("edges_added", edges_added),
            ("edges_removed", edges_removed),
            ("edges_modified", edges_modified),
        ) if items
    ]

    return VersionDiff(
        nodes_added=nodes_added,
        nodes_removed=nodes_removed,
        nodes_modified=nodes_modified,
        edges_added=edges_added,
        edges_removed=edges_removed,
        edges_modified=edges_modified,
        summary=DiffSummary(
            total_changes=total,
            significant_changes=significant,
            change_types=change_types,
        ),
    )
