import copy
from collections import defaultdict
from logging import getLogger
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from .Brackets import ordered_placeholders
from .Types import NodeType, capability

logger = getLogger(__name__)


# Edges are plain immutable records; the store indexes them by endpoint.
class Edge(NamedTuple):
    source: str
    source_handle: str
    target: str
    target_handle: str
    id: str = ""

    @property
    def key(self) -> str:
        return self.id or f"{self.source}:{self.source_handle}->{self.target}:{self.target_handle}"

    def __repr__(self):
        return f"Edge({self.source}.{self.source_handle} -> {self.target}.{self.target_handle})"


class FlowNode:
    def __init__(self,
                 id: str,
                 type: NodeType,
                 data: Optional[Dict[str, Any]] = None,
                 position: Optional[Dict[str, float]] = None):
        self.id = id
        self.type = NodeType.parse(type)
        self.data: Dict[str, Any] = dict(data) if data else {}
        self.position: Dict[str, float] = dict(position) if position else {"x": 0, "y": 0}
        self.refresh_vars()

    @property
    def capability(self):
        return capability(self.type)

    def template_texts(self) -> List[str]:
        """All text of this node that may hold placeholders."""
        if self.type is NodeType.TEXT_INPUT:
            fields = self.data.get("fields") or {}
            return [str(v) for v in fields.values() if v]
        field = self.capability.template_field
        if field and self.data.get(field):
            return [str(self.data[field])]
        return []

    def refresh_vars(self) -> List[str]:
        # vars is derived from the text; it is never set on its own
        found: List[str] = []
        for text in self.template_texts():
            for name in ordered_placeholders(text):
                if name not in found:
                    found.append(name)
        self.data["vars"] = found
        return found

    @property
    def vars(self) -> List[str]:
        return list(self.data.get("vars") or [])

    def __repr__(self):
        return f"FlowNode({self.id}, {self.type.value})"


class GraphSnapshot:
    """
    Read-only copy of the graph taken at one instant. Resolution runs
    against a snapshot so a concurrent edit never changes a walk midway.
    """
    def __init__(self, nodes: Dict[str, FlowNode], edges: Iterable[Edge]):
        self.nodes: Dict[str, FlowNode] = nodes
        self.edges: Tuple[Edge, ...] = tuple(edges)
        self._incoming: Dict[Tuple[str, str], List[Edge]] = defaultdict(list)
        for edge in self.edges:
            self._incoming[(edge.target, edge.target_handle)].append(edge)

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return self.nodes.get(node_id)

    def get_incoming_edges(self, node_id: str, handle: str) -> List[Edge]:
        return list(self._incoming.get((node_id, handle), []))

    def get_outgoing_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def get_output(self, node_id: str, handle: str) -> List[Any]:
        node = self.nodes.get(node_id)
        if node is None:
            return []
        return read_output(node, handle)


def read_output(node: FlowNode, handle: str) -> List[Any]:
    """
    The values a node exposes on an output handle. Input nodes expose their
    own content; every other node exposes the result list written back by
    the executor.
    """
    data = node.data
    if node.type is NodeType.TEXT_INPUT:
        fields = data.get("fields") or {}
        visibility = data.get("fields_visibility") or {}
        return [text for fid, text in fields.items() if visibility.get(fid) is not False]

    if node.type is NodeType.TABULAR:
        rows = data.get("rows") or []
        return [row[handle] for row in rows if handle in row and row[handle] not in (None, "")]

    if node.type is NodeType.IMAGE_INPUT:
        image = data.get("image")
        return [image] if image else []

    out = data.get("output")
    if out is None:
        return []
    if isinstance(out, list):
        return list(out)
    return [out]


class GraphStore:
    """
    Owns the authoritative node and edge collections (arena pattern:
    nodes by id, edges in one list plus endpoint indexes).
    """

    def __init__(self):
        self.nodes: Dict[str, FlowNode] = {}
        self.edges: List[Edge] = []
        self.viewport: Dict[str, float] = {"x": 0, "y": 0, "zoom": 1}

        self.incoming_edges = defaultdict(list)  # type: Dict[Tuple[str, str], List[Edge]]
        self.outgoing_edges = defaultdict(list)  # type: Dict[Tuple[str, str], List[Edge]]

    # --- queries ---

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return self.nodes.get(node_id)

    def require_node(self, node_id: str) -> FlowNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise KeyError(f"Node '{node_id}' not found")
        return node

    def get_incoming_edges(self, node_id: str, handle: Optional[str] = None) -> List[Edge]:
        if handle is not None:
            return list(self.incoming_edges.get((node_id, handle), []))
        return [e for e in self.edges if e.target == node_id]

    def get_outgoing_edges(self, node_id: str, handle: Optional[str] = None) -> List[Edge]:
        if handle is not None:
            return list(self.outgoing_edges.get((node_id, handle), []))
        return [e for e in self.edges if e.source == node_id]

    def get_output(self, node_id: str, handle: str) -> List[Any]:
        return read_output(self.require_node(node_id), handle)

    def node_ids(self) -> List[str]:
        return list(self.nodes.keys())

    def snapshot(self) -> GraphSnapshot:
        nodes = {nid: copy.deepcopy(node) for nid, node in self.nodes.items()}
        return GraphSnapshot(nodes, self.edges)

    # --- node mutation ---

    def add_node(self, node: FlowNode) -> FlowNode:
        if node.id in self.nodes:
            raise ValueError(f"Node with id '{node.id}' already exists in the flow")
        self.nodes[node.id] = node
        logger.debug("added node %s (%s)", node.id, node.type.value)
        return node

    def update_node_data(self, node_id: str, data: Dict[str, Any]) -> FlowNode:
        node = self.require_node(node_id)
        changes = {k: v for k, v in data.items() if k != "vars"}
        node.data.update(changes)
        node.refresh_vars()
        return node

    def set_output(self, node_id: str, output: List[Any]) -> None:
        node = self.require_node(node_id)
        node.data["output"] = list(output)

    def set_position(self, node_id: str, x: float, y: float) -> None:
        self.require_node(node_id).position = {"x": x, "y": y}

    def delete_node(self, node_id: str) -> None:
        if node_id not in self.nodes:
            raise KeyError(f"Node '{node_id}' not found")
        del self.nodes[node_id]
        self.set_edges([e for e in self.edges if e.source != node_id and e.target != node_id])

    # --- edge mutation ---

    def add_edge(self, source: str, source_handle: str, target: str, target_handle: str,
                 edge_id: str = "") -> Edge:
        self.require_node(source)
        self.require_node(target)
        if source == target:
            raise ValueError("Cannot connect a node's output to its own input")

        edge = Edge(source, source_handle, target, target_handle, edge_id)
        if any(e.key == edge.key for e in self.edges):
            raise ValueError(f"Edge '{edge.key}' already exists")
        self.edges.append(edge)
        self.incoming_edges[(target, target_handle)].append(edge)
        self.outgoing_edges[(source, source_handle)].append(edge)
        return edge

    def remove_edge(self, edge_key: str) -> None:
        remaining = [e for e in self.edges if e.key != edge_key]
        if len(remaining) == len(self.edges):
            raise KeyError(f"Edge '{edge_key}' not found")
        self.set_edges(remaining)

    def set_edges(self, edges: Iterable[Edge]) -> None:
        """Replace the whole edge set, keeping the given declaration order."""
        self.edges = []
        self.incoming_edges.clear()
        self.outgoing_edges.clear()
        for edge in edges:
            self.edges.append(edge)
            self.incoming_edges[(edge.target, edge.target_handle)].append(edge)
            self.outgoing_edges[(edge.source, edge.source_handle)].append(edge)

    # --- whole-graph ---

    def replace(self, nodes: Iterable[FlowNode], edges: Iterable[Edge],
                viewport: Optional[Dict[str, float]] = None) -> None:
        self.nodes = {}
        for node in nodes:
            self.add_node(node)
        self.set_edges(edges)
        self.viewport = dict(viewport) if viewport else {"x": 0, "y": 0, "zoom": 1}

    def reset(self):
        self.nodes.clear()
        self.set_edges([])
        self.viewport = {"x": 0, "y": 0, "zoom": 1}
