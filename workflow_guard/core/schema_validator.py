"""Structural and type validation of workflow graphs."""

from collections.abc import Mapping
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    StringConstraints,
    ValidationError as PydanticValidationError,
)

from ..models.graph import BlockType, NodeType, WorkflowGraph, flatten_node_shape
from ..models.validation import ValidationError, ValidationKind, Severity, ErrorCode
from .logging import get_logger

logger = get_logger(__name__)

NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]
Coordinate = Union[StrictInt, StrictFloat]


class PositionSchema(BaseModel):
    x: Coordinate
    y: Coordinate


class NodeSchema(BaseModel):
    """Shape a node must have before it can be trusted."""
    model_config = ConfigDict(extra="allow")

    id: NonEmptyStr
    block_type: BlockType = Field(..., validation_alias=AliasChoices("blockType", "block_type"))
    node_type: NodeType = Field(..., validation_alias=AliasChoices("nodeType", "node_type"))
    label: StrictStr
    description: Optional[StrictStr] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    position: PositionSchema
    is_enabled: StrictBool = Field(True, validation_alias=AliasChoices("isEnabled", "is_enabled"))


class EdgeSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: NonEmptyStr
    source: NonEmptyStr
    target: NonEmptyStr
    source_handle: Optional[StrictStr] = Field(
        None, validation_alias=AliasChoices("sourceHandle", "source_handle")
    )
    target_handle: Optional[StrictStr] = Field(
        None, validation_alias=AliasChoices("targetHandle", "target_handle")
    )


class GraphSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    nodes: List[NodeSchema]
    edges: List[EdgeSchema] = Field(default_factory=list)


class SchemaValidator:
    """Validates node and edge shape, value domains and id uniqueness."""

    def validate(self, graph: Union[WorkflowGraph, Mapping, Any]) -> List[ValidationError]:
        """
        Validate the structure of a graph.

        Args:
            graph: A WorkflowGraph or the raw provider mapping

        Returns:
            List of schema findings, empty when the graph is well-formed
        """
        raw = self._to_raw(graph)
        errors: List[ValidationError] = []

        try:
            GraphSchema.model_validate(raw)
        except PydanticValidationError as e:
            for issue in e.errors():
                errors.append(self._convert_issue(issue, raw))

        errors.extend(self._check_duplicates(raw))

        if errors:
            logger.debug(f"Schema validation found {len(errors)} problems")
        return errors

    def _to_raw(self, graph: Any) -> Any:
        if isinstance(graph, WorkflowGraph):
            return graph.to_raw()
        if not isinstance(graph, Mapping):
            return graph

        raw = dict(graph)
        nodes = raw.get("nodes")
        if isinstance(nodes, (list, tuple)):
            raw["nodes"] = [
                flatten_node_shape(node) if isinstance(node, Mapping) else node
                for node in nodes
            ]
        return raw

    def _convert_issue(self, issue: Dict[str, Any], raw: Any) -> ValidationError:
        loc = tuple(issue.get("loc", ()))
        path = ".".join(str(part) for part in loc) or "graph"
        code = ErrorCode.SCHEMA_VALIDATION_ERROR
        node_id = None

        if len(loc) >= 2 and loc[0] == "nodes" and isinstance(loc[1], int):
            node_id = self._node_id_at(raw, loc[1])
            if len(loc) == 3 and self._is_absent(issue):
                if loc[2] == "id":
                    code = ErrorCode.MISSING_ID
                elif loc[2] == "position":
                    code = ErrorCode.MISSING_POSITION

        return ValidationError(
            kind=ValidationKind.SCHEMA,
            code=code,
            message=f"{path}: {issue.get('msg', 'invalid value')}",
            node_id=node_id,
            path=path,
            severity=Severity.ERROR,
        )

    @staticmethod
    def _is_absent(issue: Dict[str, Any]) -> bool:
        if issue.get("type") in ("missing", "string_too_short"):
            return True
        return issue.get("input") is None

    @staticmethod
    def _node_id_at(raw: Any, index: int) -> Optional[str]:
        try:
            node = raw["nodes"][index]
        except (KeyError, IndexError, TypeError):
            return None
        if isinstance(node, Mapping):
            node_id = node.get("id")
            if isinstance(node_id, str) and node_id:
                return node_id
        return None

    def _check_duplicates(self, raw: Any) -> List[ValidationError]:
        if not isinstance(raw, Mapping):
            return []

        errors: List[ValidationError] = []
        for collection, code in (("nodes", ErrorCode.DUPLICATE_NODE_ID),
                                 ("edges", ErrorCode.DUPLICATE_EDGE_ID)):
            items = raw.get(collection)
            if not isinstance(items, (list, tuple)):
                continue

            seen = set()
            for index, item in enumerate(items):
                if not isinstance(item, Mapping):
                    continue
                item_id = item.get("id")
                if not isinstance(item_id, str) or not item_id:
                    continue
                if item_id in seen:
                    errors.append(ValidationError(
                        kind=ValidationKind.SCHEMA,
                        code=code,
                        message=f"{collection}.{index}.id: duplicate id '{item_id}'",
                        node_id=item_id if collection == "nodes" else None,
                        edge_id=item_id if collection == "edges" else None,
                        path=f"{collection}.{index}.id",
                        severity=Severity.ERROR,
                    ))
                seen.add(item_id)
        return errors
