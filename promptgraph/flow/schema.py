"""
Flow artifact schema + validator
================================
The artifact is the JSON document written by export/share/autosave and read
back by import/open/bootstrap.

    {
      "flow": {
        "nodes": [
          {
            "id":       "prompt-1",                 // unique (str, required)
            "type":     "prompt",                   // NodeType wire value (str, required)
            "data":     { "prompt": "..." },        // node data (dict, optional)
            "position": { "x": 10, "y": 20 }        // canvas position (dict, optional)
          }
        ],
        "edges": [
          {
            "id":           "e1",                   // optional
            "source":       "text-1",               // source node id (str, required)
            "sourceHandle": "output",               // source handle (str, required)
            "target":       "prompt-1",             // target node id (str, required)
            "targetHandle": "city"                  // placeholder name (str, required)
          }
        ],
        "viewport": { "x": 0, "y": 0, "zoom": 1 }
      },
      "cache": { "<node_id>::<sha256>": { ...entry... } }
    }

A bare flow object (no ``flow``/``cache`` wrapper) is a graph-only artifact.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from promptgraph.core.Errors import MalformedArtifactError
from promptgraph.core.GraphPrimitives import Edge, FlowNode
from promptgraph.core.Types import NodeType

KNOWN_NODE_TYPES = frozenset(t.value for t in NodeType)
EDGE_FIELDS = ("source", "sourceHandle", "target", "targetHandle")


# ── Validation helpers ────────────────────────────────────────────────────────

def _require(condition: bool, message: str) -> None:
    if not condition:
        raise MalformedArtifactError(message)


def _require_keys(obj: Dict, keys: List[str], context: str) -> None:
    for key in keys:
        _require(key in obj, f"{context}: missing required field '{key}'")


def validate_node_data(data: Any, ctx: str) -> None:
    """Check the data keys that node text and outputs are read from."""
    _require(isinstance(data, dict), f"{ctx} must be an object")
    for key in ("fields", "fields_visibility"):
        if data.get(key) is not None:
            _require(isinstance(data[key], dict), f"{ctx}.{key} must be an object")
    if data.get("rows") is not None:
        _require(isinstance(data["rows"], list), f"{ctx}.rows must be a list")
        for j, row in enumerate(data["rows"]):
            _require(isinstance(row, dict), f"{ctx}.rows[{j}] must be an object")


# ── Public validator ─────────────────────────────────────────────────────────

def split_artifact(artifact: Any) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """Return ``(flow, cache)``; ``cache`` is None for graph-only artifacts."""
    _require(isinstance(artifact, dict), "flow artifact must be a JSON object at the top level")
    if "flow" in artifact:
        cache = artifact.get("cache")
        return artifact["flow"], cache
    return artifact, None


def validate_flow(flow: Any) -> None:
    """
    Validate a parsed flow object.

    Raises:
        MalformedArtifactError: On any structural violation.
    """
    _require(isinstance(flow, dict), "flow must be a JSON object")
    _require_keys(flow, ["nodes", "edges"], "flow")
    _require(isinstance(flow["nodes"], list), "nodes must be a list")
    _require(isinstance(flow["edges"], list), "edges must be a list")
    if "viewport" in flow and flow["viewport"] is not None:
        _require(isinstance(flow["viewport"], dict), "viewport must be an object")

    # ── Validate nodes ──────────────────────────────────────────────────────

    node_ids = set()
    for i, node in enumerate(flow["nodes"]):
        ctx = f"nodes[{i}]"
        _require(isinstance(node, dict), f"{ctx}: each node must be a JSON object")
        _require_keys(node, ["id", "type"], ctx)
        _require(isinstance(node["id"], str), f"{ctx}.id must be a string")
        _require(node["type"] in KNOWN_NODE_TYPES, f"{ctx}: unknown node type '{node['type']}'")
        _require(node["id"] not in node_ids, f"{ctx}: duplicate node id '{node['id']}'")
        node_ids.add(node["id"])

        if node.get("data") is not None:
            validate_node_data(node["data"], f"{ctx}.data")
        if node.get("position") is not None:
            _require(isinstance(node["position"], dict), f"{ctx}.position must be an object")

    # ── Validate edges ──────────────────────────────────────────────────────

    for i, edge in enumerate(flow["edges"]):
        ctx = f"edges[{i}]"
        _require(isinstance(edge, dict), f"{ctx}: each edge must be a JSON object")
        _require_keys(edge, list(EDGE_FIELDS), ctx)
        for field in EDGE_FIELDS:
            _require(isinstance(edge[field], str), f"{ctx}.{field} must be a string")
        _require(edge["source"] in node_ids, f"{ctx}: source '{edge['source']}' not found in nodes")
        _require(edge["target"] in node_ids, f"{ctx}: target '{edge['target']}' not found in nodes")


# ── Wire conversion ──────────────────────────────────────────────────────────

def node_from_dict(raw: Dict[str, Any]) -> FlowNode:
    return FlowNode(raw["id"], raw["type"], raw.get("data"), raw.get("position"))


def node_to_dict(node: FlowNode) -> Dict[str, Any]:
    return {
        "id": node.id,
        "type": node.type.value,
        "data": dict(node.data),
        "position": dict(node.position),
    }


def edge_from_dict(raw: Dict[str, Any]) -> Edge:
    return Edge(raw["source"], raw["sourceHandle"], raw["target"], raw["targetHandle"],
                raw.get("id") or "")


def edge_to_dict(edge: Edge) -> Dict[str, Any]:
    return {
        "id": edge.key,
        "source": edge.source,
        "sourceHandle": edge.source_handle,
        "target": edge.target,
        "targetHandle": edge.target_handle,
    }


__all__ = [
    "KNOWN_NODE_TYPES",
    "split_artifact",
    "validate_flow",
    "validate_node_data",
    "node_from_dict",
    "node_to_dict",
    "edge_from_dict",
    "edge_to_dict",
]
