"""Deterministic repair of a fixed set of healable validation findings."""

import uuid
from typing import Any, Callable, Iterable, List, Optional

from ..models.graph import WorkflowGraph, Node, Edge, Position, node_index, trigger_nodes
from ..models.validation import ValidationError, ErrorCode, HEALABLE_CODES
from .graph_analyzer import find_unreachable
from .logging import get_logger

logger = get_logger(__name__)

MAX_AUTO_CONNECTIONS = 3
GRID_COLUMNS = 4
GRID_ORIGIN = (100.0, 100.0)
GRID_SPACING = (250.0, 150.0)


def is_healable(error: ValidationError) -> bool:
    return error.code in HEALABLE_CODES


def _uuid() -> str:
    return str(uuid.uuid4())


class AutoHealer:
    """
    Repairs MISSING_ID, MISSING_REQUIRED_CONFIG, MISSING_POSITION and
    UNREACHABLE_NODES findings.

    Healing is a single pass over a deep copy of the input. Nodes and edges
    are never removed; repairs only assign ids, fill configuration, place
    nodes and add edges. Re-validating and healing again is up to the caller.
    """

    def __init__(self, id_factory: Optional[Callable[[], str]] = None):
        self._new_id = id_factory or _uuid

    def heal(self, graph: Any, errors: Iterable[ValidationError]) -> Optional[WorkflowGraph]:
        """
        Apply repairs for the healable codes present in ``errors``.

        Args:
            graph: The graph that produced the findings (not modified)
            errors: Findings from the validators

        Returns:
            A corrected copy of the graph, or None when nothing was repaired
        """
        codes = {error.code for error in errors if is_healable(error)}
        if not codes:
            return None

        healed = WorkflowGraph.from_untrusted(graph)
        repairs: List[str] = []

        # Ids first so later repairs can reference every node.
        if ErrorCode.MISSING_ID in codes:
            repairs.extend(self._assign_ids(healed))
        if ErrorCode.MISSING_REQUIRED_CONFIG in codes:
            repairs.extend(self._fill_required_config(healed))
        if ErrorCode.MISSING_POSITION in codes:
            repairs.extend(self._assign_positions(healed))
        if ErrorCode.UNREACHABLE_NODES in codes:
            repairs.extend(self._connect_unreachable(healed))

        if not repairs:
            logger.debug(f"No repairs applicable for codes: {sorted(codes)}")
            return None

        logger.info(f"Auto-healed workflow with {len(repairs)} corrections")
        logger.debug(f"Repairs applied: {repairs}")
        return healed

    def _assign_ids(self, graph: WorkflowGraph) -> List[str]:
        repairs = []
        for node in graph.nodes:
            if not node.id:
                node.id = f"node-{self._new_id()}"
                repairs.append(f"assigned id {node.id}")
        return repairs

    def _fill_required_config(self, graph: WorkflowGraph) -> List[str]:
        repairs = []
        for node in graph.nodes:
            missing = node.missing_config_fields()
            if not missing:
                continue
            merged = dict(node.config)
            for key, value in node.config_model.defaults().items():
                if not merged.get(key):
                    merged[key] = value
            node.config = merged
            repairs.append(f"filled {', '.join(missing)} on {node.id}")
        return repairs

    def _assign_positions(self, graph: WorkflowGraph) -> List[str]:
        repairs = []
        for index, node in enumerate(graph.nodes):
            if node.position is None:
                node.position = Position(
                    x=GRID_ORIGIN[0] + (index % GRID_COLUMNS) * GRID_SPACING[0],
                    y=GRID_ORIGIN[1] + (index // GRID_COLUMNS) * GRID_SPACING[1],
                )
                repairs.append(f"positioned {node.id}")
        return repairs

    def _connect_unreachable(self, graph: WorkflowGraph) -> List[str]:
        triggers = [node for node in trigger_nodes(graph) if node.id]
        if not triggers:
            return []

        candidates = self._connection_candidates(graph)
        source = triggers[0].id
        repairs = []
        for node in candidates[:MAX_AUTO_CONNECTIONS]:
            edge = Edge(id=f"edge-{self._new_id()}", source=source, target=node.id)
            graph.edges.append(edge)
            repairs.append(f"connected {source} -> {node.id}")
        return repairs

    def _connection_candidates(self, graph: WorkflowGraph) -> List[Node]:
        """Unreachable non-trigger nodes, roots of the unreachable region first."""
        unreachable = [node for node in find_unreachable(graph) if node.id and not node.is_trigger]
        known = node_index(graph)
        has_incoming = {
            edge.target for edge in graph.edges
            if edge.source in known and edge.target in known and edge.source != edge.target
        }
        roots = [node for node in unreachable if node.id not in has_incoming]
        return roots or unreachable
