"""Models for workflow version history, diffs and rollbacks."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .graph import Node, Edge


class VersionStatus(str, Enum):
    """Lifecycle status of a workflow version."""
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"
    DEPRECATED = "deprecated"


class Checksums(BaseModel):
    """Content fingerprints used for deduplication and quick diffing.

    These are not integrity or tamper-proofing guarantees.
    """
    nodes: str
    edges: str
    full: str


class VersionMetadata(BaseModel):
    """Provenance of a version."""
    model_config = ConfigDict(populate_by_name=True)

    created_by: str = Field(..., alias="createdBy")
    created_at: datetime = Field(..., alias="createdAt")
    generation_prompt: Optional[str] = Field(None, alias="generationPrompt")
    generation_options: Optional[Dict[str, Any]] = Field(None, alias="generationOptions")
    validation_result: Optional[Dict[str, Any]] = Field(None, alias="validationResult")
    parent_version_id: Optional[str] = Field(None, alias="parentVersionId")
    tags: List[str] = Field(default_factory=list)


class WorkflowVersion(BaseModel):
    """An immutable snapshot of a workflow graph plus its status."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Version identifier")
    workflow_id: str = Field(..., alias="workflowId")
    version: int = Field(..., ge=1, description="Monotonic version number")
    name: str
    description: Optional[str] = None
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    metadata: VersionMetadata
    status: VersionStatus = VersionStatus.DRAFT
    checksums: Checksums


class NodeModification(BaseModel):
    """A node present in both versions whose tracked fields differ."""
    before: Node
    after: Node
    changes: List[str]


class EdgeModification(BaseModel):
    """An edge present in both versions whose tracked fields differ."""
    before: Edge
    after: Edge
    changes: List[str]


class DiffSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_changes: int = Field(0, alias="totalChanges")
    significant_changes: bool = Field(False, alias="significantChanges")
    change_types: List[str] = Field(default_factory=list, alias="changeTypes")


class VersionDiff(BaseModel):
    """Differences between two versions of a workflow."""
    model_config = ConfigDict(populate_by_name=True)

    nodes_added: List[Node] = Field(default_factory=list, alias="nodesAdded")
    nodes_removed: List[Node] = Field(default_factory=list, alias="nodesRemoved")
    nodes_modified: List[NodeModification] = Field(default_factory=list, alias="nodesModified")
    edges_added: List[Edge] = Field(default_factory=list, alias="edgesAdded")
    edges_removed: List[Edge] = Field(default_factory=list, alias="edgesRemoved")
    edges_modified: List[EdgeModification] = Field(default_factory=list, alias="edgesModified")
    summary: DiffSummary = Field(default_factory=DiffSummary)


class ActivationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    previous_active: Optional[WorkflowVersion] = Field(None, alias="previousActive")
    new_active: WorkflowVersion = Field(..., alias="newActive")


class RollbackResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    rolled_back_to: WorkflowVersion = Field(..., alias="rolledBackTo")
    backup: Optional[WorkflowVersion] = None
    warnings: Optional[List[str]] = None


class VersionStats(BaseModel):
    """Aggregate figures for one workflow's history."""
    model_config = ConfigDict(populate_by_name=True)

    total_versions: int = Field(0, alias="totalVersions")
    active_version: Optional[int] = Field(None, alias="activeVersion")
    oldest_version: Optional[int] = Field(None, alias="oldestVersion")
    newest_version: Optional[int] = Field(None, alias="newestVersion")
    archived_count: int = Field(0, alias="archivedCount")
    draft_count: int = Field(0, alias="draftCount")
    average_time_between_versions: float = Field(
        0.0, alias="averageTimeBetweenVersions", description="Hours"
    )
