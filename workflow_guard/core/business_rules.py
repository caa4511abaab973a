"""Domain rules a workflow must satisfy beyond its shape."""

import re
from typing import Dict, List, Tuple

from ..models.graph import WorkflowGraph, Node, NodeType, node_index, trigger_nodes
from ..models.validation import (
    ValidationError,
    ValidationWarning,
    ValidationKind,
    Severity,
    ErrorCode,
    WarningCode,
)
from .logging import get_logger

logger = get_logger(__name__)

MAX_TRIGGERS = 3

SENSITIVE_KEY_PATTERN = re.compile(r"password|secret|key|token|auth|credential", re.IGNORECASE)
ENCODED_SECRET_PATTERN = re.compile(r"[A-Za-z0-9+/=]{21,}")


def find_sensitive_fields(config: Dict) -> List[str]:
    """Return config keys whose name or string value looks like a secret."""
    fields: List[str] = []
    for key, value in config.items():
        if not isinstance(value, str):
            continue
        if SENSITIVE_KEY_PATTERN.search(str(key)):
            fields.append(key)
        elif ENCODED_SECRET_PATTERN.fullmatch(value):
            fields.append(key)
    return fields


class BusinessRuleValidator:
    """Checks trigger presence, required block configuration and node adjacency."""

    def validate(self, graph: WorkflowGraph) -> Tuple[List[ValidationError], List[ValidationWarning]]:
        """
        Apply business rules to a graph.

        Args:
            graph: Normalized workflow graph

        Returns:
            Tuple of (errors, warnings)
        """
        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        self._check_triggers(graph, errors, warnings)
        self._check_required_config(graph, errors)
        self._check_connections(graph, warnings)
        self._check_sensitive_config(graph, warnings)

        logger.debug(f"Business rules produced {len(errors)} errors and {len(warnings)} warnings")
        return errors, warnings

    def _check_triggers(self, graph: WorkflowGraph, errors: List[ValidationError],
                        warnings: List[ValidationWarning]) -> None:
        triggers = trigger_nodes(graph)
        if not triggers:
            errors.append(ValidationError(
                kind=ValidationKind.BUSINESS,
                code=ErrorCode.NO_TRIGGER_NODE,
                message="Workflow must have at least one trigger node",
                severity=Severity.ERROR,
            ))
        elif len(triggers) > MAX_TRIGGERS:
            warnings.append(ValidationWarning(
                kind=ValidationKind.BUSINESS,
                code=WarningCode.MULTIPLE_TRIGGERS,
                message=f"{len(triggers)} trigger nodes may lead to complex execution patterns",
                suggestion="Consider consolidating triggers or using logic nodes",
            ))

    def _check_required_config(self, graph: WorkflowGraph, errors: List[ValidationError]) -> None:
        for node in graph.nodes:
            missing = node.missing_config_fields()
            if missing:
                errors.append(ValidationError(
                    kind=ValidationKind.BUSINESS,
                    code=ErrorCode.MISSING_REQUIRED_CONFIG,
                    message=f"Node {self._describe(node)} is missing required configuration: "
                            f"{', '.join(missing)}",
                    node_id=node.id,
                    severity=Severity.ERROR,
                ))

    def _check_connections(self, graph: WorkflowGraph, warnings: List[ValidationWarning]) -> None:
        # ACTION -> TRIGGER is suspicious but legitimate in feedback designs: warn only.
        nodes = node_index(graph)
        for edge in graph.edges:
            source = nodes.get(edge.source)
            target = nodes.get(edge.target)
            if source is None or target is None:
                continue
            if source.kind == NodeType.ACTION and target.kind == NodeType.TRIGGER:
                warnings.append(ValidationWarning(
                    kind=ValidationKind.BUSINESS,
                    code=WarningCode.INCOMPATIBLE_CONNECTION,
                    message=f"Potential compatibility issue between {self._describe(source)} "
                            f"and {self._describe(target)}",
                    node_id=target.id,
                    suggestion="Action nodes typically should not connect back to trigger nodes",
                ))

    def _check_sensitive_config(self, graph: WorkflowGraph, warnings: List[ValidationWarning]) -> None:
        for node in graph.nodes:
            fields = find_sensitive_fields(node.config)
            if fields:
                warnings.append(ValidationWarning(
                    kind=ValidationKind.SECURITY,
                    code=WarningCode.SENSITIVE_CONFIG,
                    message=f"Potential sensitive data exposure in node {self._describe(node)}: "
                            f"{', '.join(fields)}",
                    node_id=node.id,
                    suggestion="Use environment variables or secure storage for sensitive data",
                ))

    @staticmethod
    def _describe(node: Node) -> str:
        return node.label or node.id or "<unnamed>"
