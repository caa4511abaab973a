"""Structural analysis of workflow graphs: cycles, reachability, orphans."""

from collections import deque
from typing import List, Set, Tuple

from ..models.graph import WorkflowGraph, Node, Edge, adjacency, node_index, trigger_nodes
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


def has_cycle(graph: WorkflowGraph) -> bool:
    """Check if the graph contains a directed cycle.

    Iterative DFS tracking a visited set and the set of nodes on the current
    path; reaching a node that is still on the path means a back edge.
    """
    adjacent = adjacency(graph)
    visited: Set[str] = set()
    on_path: Set[str] = set()

    for start in adjacent:
        if start in visited:
            continue

        visited.add(start)
        on_path.add(start)
        stack = [(start, iter(adjacent[start]))]

        while stack:
            current, children = stack[-1]
            for child in children:
                if child in on_path:
                    return True
                if child not in visited:
                    visited.add(child)
                    on_path.add(child)
                    stack.append((child, iter(adjacent[child])))
                    break
            else:
                stack.pop()
                on_path.discard(current)

    return False


def find_unreachable(graph: WorkflowGraph) -> List[Node]:
    """Find nodes with no path from any TRIGGER node.

    With zero triggers every node is unreachable.
    """
    triggers = trigger_nodes(graph)
    if not triggers:
        return list(graph.nodes)

    adjacent = adjacency(graph)
    reachable: Set[str] = {node.id for node in triggers if node.id}
    queue = deque(reachable)

    while queue:
        current = queue.popleft()
        for neighbor in adjacent.get(current, []):
            if neighbor not in reachable:
                reachable.add(neighbor)
                queue.append(neighbor)

    return [node for node in graph.nodes if node.id not in reachable]


def find_orphans(graph: WorkflowGraph) -> List[Node]:
    """Find nodes that have no incoming or outgoing edges."""
    connected: Set[str] = set()
    for edge in graph.edges:
        if edge.source:
            connected.add(edge.source)
        if edge.target:
            connected.add(edge.target)

    return [node for node in graph.nodes if node.id not in connected]


def find_invalid_edges(graph: WorkflowGraph) -> List[Edge]:
    """Find edges whose source or target names a node that does not exist.

    Edges missing an endpoint entirely are left to the schema validator.
    """
    known = node_index(graph)
    return [
        edge for edge in graph.edges
        if edge.source and edge.target
        and (edge.source not in known or edge.target not in known)
    ]


class GraphAnalyzer:
    """Turns structural analysis into coded validation findings."""

    def analyze(self, graph: WorkflowGraph) -> Tuple[List[ValidationError], List[ValidationWarning]]:
        """
        Analyze graph structure.

        Args:
            graph: The workflow graph to analyze

        Returns:
            Tuple of (errors, warnings)
        """
        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        for edge in find_invalid_edges(graph):
            errors.append(ValidationError(
                kind=ValidationKind.GRAPH,
                code=ErrorCode.INVALID_EDGE_REFERENCE,
                message=f"Edge {edge.id} references a missing node ({edge.source} -> {edge.target})",
                edge_id=edge.id,
                severity=Severity.ERROR,
            ))

        if has_cycle(graph):
            errors.append(ValidationError(
                kind=ValidationKind.GRAPH,
                code=ErrorCode.CYCLE_DETECTED,
                message="Workflow contains cycles which may cause infinite loops",
                severity=Severity.ERROR,
            ))

        unreachable = find_unreachable(graph)
        if unreachable:
            ids = ", ".join(node.id or "<missing id>" for node in unreachable)
            errors.append(ValidationError(
                kind=ValidationKind.GRAPH,
                code=ErrorCode.UNREACHABLE_NODES,
                message=f"Found {len(unreachable)} unreachable nodes: {ids}",
                severity=Severity.WARNING,
            ))

        orphans = find_orphans(graph)
        if orphans:
            warnings.append(ValidationWarning(
                kind=ValidationKind.GRAPH,
                code=WarningCode.ORPHANED_NODES,
                message=f"Found {len(orphans)} orphaned nodes",
                suggestion="Connect orphaned nodes or remove them",
            ))

        logger.debug(
            f"Graph analysis completed: {len(errors)} errors, {len(warnings)} warnings, "
            f"{len(unreachable)} unreachable, {len(orphans)} orphaned"
        )

        return errors, warnings

    has_cycle = staticmethod(has_cycle)
    find_unreachable = staticmethod(find_unreachable)
    find_orphans = staticmethod(find_orphans)
    find_invalid_edges = staticmethod(find_invalid_edges)
