"""Canonical workflow graph models and pure helper predicates."""

import copy
from collections.abc import Mapping
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type
from pydantic import BaseModel, ConfigDict, Field


class BlockType(str, Enum):
    """Catalogue of block types a workflow node can carry."""
    HTTP_REQUEST = "HTTP_REQUEST"
    WEBHOOK = "WEBHOOK"
    API = "API"
    NOTIFICATION = "NOTIFICATION"
    EMAIL = "EMAIL"
    SMS = "SMS"
    DISCORD = "DISCORD"
    DATABASE = "DATABASE"
    CUSTOM = "CUSTOM"
    SCHEDULE = "SCHEDULE"
    PRICE_MONITOR = "PRICE_MONITOR"
    CONDITION = "CONDITION"
    DELAY = "DELAY"
    TRANSFORM = "TRANSFORM"
    LLM_PROMPT = "LLM_PROMPT"
    AI = "AI"
    AI_BLOCKCHAIN = "AI_BLOCKCHAIN"
    FINANCE = "FINANCE"
    WALLET = "WALLET"
    TRANSACTION = "TRANSACTION"
    SWAP_EXECUTOR = "SWAP_EXECUTOR"
    PORTFOLIO_BALANCE = "PORTFOLIO_BALANCE"
    YIELD_MONITOR = "YIELD_MONITOR"
    UNKNOWN = "UNKNOWN"


class NodeType(str, Enum):
    """Role of a node in execution flow."""
    TRIGGER = "TRIGGER"
    ACTION = "ACTION"
    LOGIC = "LOGIC"


class BlockConfig(BaseModel):
    """Base class for typed per-block configuration.

    Subclasses declare the fields a block cannot run without and the
    minimal configuration that satisfies them.
    """
    model_config = ConfigDict(extra="allow")

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def missing_fields(cls, config: Mapping) -> List[str]:
        """Return required fields that are absent or empty in ``config``."""
        return [field for field in cls.REQUIRED_FIELDS if not config.get(field)]

    @classmethod
    def defaults(cls) -> Dict[str, Any]:
        """Minimal configuration that passes ``missing_fields``."""
        return {}


class HttpRequestConfig(BlockConfig):
    """Configuration of an outbound HTTP request block."""
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("url", "method")

    url: Optional[str] = None
    method: Optional[str] = None
    headers: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Any] = None

    @classmethod
    def defaults(cls) -> Dict[str, Any]:
        return {"method": "GET", "url": "http://localhost", "headers": {}}


class WebhookConfig(BlockConfig):
    """Configuration of an inbound webhook block."""
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("url",)

    url: Optional[str] = None
    method: str = "POST"

    @classmethod
    def defaults(cls) -> Dict[str, Any]:
        return {"url": "http://localhost/webhook", "method": "POST"}


class NotificationConfig(BlockConfig):
    """Configuration of a notification block."""
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("message",)

    message: Optional[str] = None
    type: str = "info"

    @classmethod
    def defaults(cls) -> Dict[str, Any]:
        return {"message": "Default notification", "type": "info"}


class CustomCodeConfig(BlockConfig):
    """Configuration of a block that runs generated code."""
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("code",)

    code: Optional[str] = None

    @classmethod
    def defaults(cls) -> Dict[str, Any]:
        return {"code": "async function execute(inputs) { return inputs; }"}


BLOCK_CONFIG_MODELS: Dict[BlockType, Type[BlockConfig]] = {
    BlockType.HTTP_REQUEST: HttpRequestConfig,
    BlockType.WEBHOOK: WebhookConfig,
    BlockType.NOTIFICATION: NotificationConfig,
    BlockType.CUSTOM: CustomCodeConfig,
}


class Position(BaseModel):
    """Canvas position of a node."""
    x: float = Field(..., description="Horizontal coordinate")
    y: float = Field(..., description="Vertical coordinate")


class Node(BaseModel):
    """A workflow block.

    ``block_type`` and ``node_type`` are kept as plain strings so that values
    outside the known enums survive normalization and can be reported by the
    schema validator instead of being lost.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, description="Unique identifier for the node")
    block_type: Optional[str] = Field(None, alias="blockType", description="Block type")
    node_type: Optional[str] = Field(None, alias="nodeType", description="TRIGGER, ACTION or LOGIC")
    label: str = Field("", description="Display label")
    description: Optional[str] = Field(None, description="Optional description")
    config: Dict[str, Any] = Field(default_factory=dict, description="Block-specific configuration")
    position: Optional[Position] = Field(None, description="Canvas position")
    is_enabled: bool = Field(True, alias="isEnabled", description="Whether the node runs")

    @property
    def block_kind(self) -> Optional[BlockType]:
        """Recognized block type, or None for unknown values."""
        try:
            return BlockType(self.block_type)
        except ValueError:
            return None

    @property
    def kind(self) -> Optional[NodeType]:
        """Recognized node type, or None for unknown values."""
        try:
            return NodeType(self.node_type)
        except ValueError:
            return None

    @property
    def is_trigger(self) -> bool:
        return self.node_type == NodeType.TRIGGER.value

    @property
    def config_model(self) -> Optional[Type[BlockConfig]]:
        """Typed configuration schema for this node's block type, if any."""
        return BLOCK_CONFIG_MODELS.get(self.block_kind)

    def typed_config(self) -> Any:
        """Return the configuration as its typed model, or the open map.

        Raises pydantic.ValidationError when a known block's configuration
        holds values of the wrong type.
        """
        model = self.config_model
        if model is None:
            return dict(self.config)
        return model.model_validate(self.config)

    def missing_config_fields(self) -> List[str]:
        model = self.config_model
        if model is None:
            return []
        return model.missing_fields(self.config)

    @classmethod
    def from_untrusted(cls, raw: Any) -> Optional["Node"]:
        """Best-effort normalization of a provider-supplied node.

        Returns None for items that are not mappings at all.
        """
        if isinstance(raw, Node):
            return raw.model_copy(deep=True)
        if not isinstance(raw, Mapping):
            return None
        flat = flatten_node_shape(raw)
        config = flat.get("config")
        enabled = flat.get("isEnabled", flat.get("is_enabled", True))
        return cls(
            id=_as_text(flat.get("id")),
            block_type=_as_text(flat.get("blockType", flat.get("block_type"))),
            node_type=_as_text(flat.get("nodeType", flat.get("node_type"))),
            label=_as_text(flat.get("label")) or "",
            description=_as_text(flat.get("description")),
            config=copy.deepcopy(dict(config)) if isinstance(config, Mapping) else {},
            position=_as_position(flat.get("position")),
            is_enabled=enabled if isinstance(enabled, bool) else True,
        )


class Edge(BaseModel):
    """A directed connection between two nodes."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, description="Unique identifier for the edge")
    source: Optional[str] = Field(None, description="Source node ID")
    target: Optional[str] = Field(None, description="Target node ID")
    source_handle: Optional[str] = Field(None, alias="sourceHandle", description="Source port")
    target_handle: Optional[str] = Field(None, alias="targetHandle", description="Target port")

    @classmethod
    def from_untrusted(cls, raw: Any) -> Optional["Edge"]:
        """Best-effort normalization of a provider-supplied edge."""
        if isinstance(raw, Edge):
            return raw.model_copy(deep=True)
        if not isinstance(raw, Mapping):
            return None
        return cls(
            id=_as_text(raw.get("id")),
            source=_as_text(raw.get("source")),
            target=_as_text(raw.get("target")),
            source_handle=_as_text(raw.get("sourceHandle", raw.get("source_handle"))),
            target_handle=_as_text(raw.get("targetHandle", raw.get("target_handle"))),
        )


class WorkflowGraph(BaseModel):
    """Nodes and edges of a workflow. Treated as immutable once built."""
    nodes: List[Node] = Field(default_factory=list, description="Workflow nodes")
    edges: List[Edge] = Field(default_factory=list, description="Workflow edges")

    @classmethod
    def from_untrusted(cls, raw: Any) -> "WorkflowGraph":
        """Normalize provider output into a graph without raising.

        Shape problems are left for the schema validator to report; items
        that are not mappings are dropped.
        """
        if isinstance(raw, WorkflowGraph):
            return raw.model_copy(deep=True)
        if not isinstance(raw, Mapping):
            return cls()
        nodes = [Node.from_untrusted(item) for item in _as_list(raw.get("nodes"))]
        edges = [Edge.from_untrusted(item) for item in _as_list(raw.get("edges"))]
        return cls(
            nodes=[node for node in nodes if node is not None],
            edges=[edge for edge in edges if edge is not None],
        )

    def to_raw(self) -> Dict[str, Any]:
        """Serialize to the camelCase exchange shape."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


def flatten_node_shape(raw: Mapping) -> Dict[str, Any]:
    """Merge the editor's nested ``data`` block into a flat node mapping.

    Editors emit ``{id, type, position, data: {blockType, label, ...}}``;
    top-level keys win over keys inside ``data``.
    """
    data = raw.get("data")
    flat: Dict[str, Any] = dict(data) if isinstance(data, Mapping) else {}
    for key, value in raw.items():
        if key in ("data", "type") and isinstance(data, Mapping):
            continue
        flat[key] = value
    return flat


def is_trigger(node: Node) -> bool:
    return node.is_trigger


def trigger_nodes(graph: WorkflowGraph) -> List[Node]:
    """All TRIGGER nodes in document order."""
    return [node for node in graph.nodes if node.is_trigger]


def node_index(graph: WorkflowGraph) -> Dict[str, Node]:
    """Map node id to node; nodes without an id are skipped, first id wins."""
    index: Dict[str, Node] = {}
    for node in graph.nodes:
        if node.id and node.id not in index:
            index[node.id] = node
    return index


def adjacency(graph: WorkflowGraph) -> Dict[str, List[str]]:
    """Build source -> targets lists, ignoring edges that touch unknown ids."""
    known = node_index(graph)
    adjacent: Dict[str, List[str]] = {node_id: [] for node_id in known}
    for edge in graph.edges:
        if edge.source in known and edge.target in known:
            adjacent[edge.source].append(edge.target)
    return adjacent


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _as_list(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def _as_position(value: Any) -> Optional[Position]:
    if isinstance(value, Position):
        return value.model_copy()
    if not isinstance(value, Mapping):
        return None
    x, y = value.get("x"), value.get("y")
    for coordinate in (x, y):
        if isinstance(coordinate, bool) or not isinstance(coordinate, (int, float)):
            return None
    return Position(x=x, y=y)
