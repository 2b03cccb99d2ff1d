"""
Graph serializer: converts the GraphStore into JSON-safe dicts in the
react-flow wire shape the UI expects, plus per-node handle information.
"""
from __future__ import annotations

from typing import Any, Dict, List, Set

from promptgraph.core.Expander import PromptInstance
from promptgraph.core.GraphPrimitives import FlowNode, GraphStore
from promptgraph.core.Types import AVAILABLE_TOOLS, CAPABILITIES, TOOL_IO_KINDS, TOOL_MODELS, NodeCapability
from promptgraph.flow.schema import edge_to_dict, node_to_dict

# ── Wire shapes ───────────────────────────────────────────────────────────────
# SerializedNode keys: id, type, data, position, inputs, outputs
# SerializedEdge keys: id, source, sourceHandle, target, targetHandle
# SerializedFlow keys: nodes, edges, viewport


# ── Helpers ───────────────────────────────────────────────────────────────────

def _kind(value) -> Any:
    return value.value if value is not None else None


def _serialize_capability(cap: NodeCapability) -> Dict[str, Any]:
    return {
        "inputKind": _kind(cap.input_kind),
        "outputKind": _kind(cap.output_kind),
        "inputHandles": list(cap.input_handles),
        "outputHandles": list(cap.output_handles),
        "executable": cap.executable,
        "templateField": cap.template_field,
        "toolType": cap.tool_type,
    }


def _serialize_node(node: FlowNode, connected_inputs: Set[str]) -> Dict[str, Any]:
    out = node_to_dict(node)
    # placeholders become target handles of their own
    handles = list(dict.fromkeys(list(node.capability.input_handles) + node.vars))
    out["inputs"] = [
        {"name": h, "connected": f"{node.id}:{h}" in connected_inputs} for h in handles
    ]
    out["outputs"] = list(node.capability.output_handles)
    return out


# ── Public API ────────────────────────────────────────────────────────────────

def serialize_flow(store: GraphStore) -> Dict[str, Any]:
    connected_inputs = {f"{e.target}:{e.target_handle}" for e in store.edges}
    return {
        "nodes": [_serialize_node(n, connected_inputs) for n in store.nodes.values()],
        "edges": [edge_to_dict(e) for e in store.edges],
        "viewport": dict(store.viewport),
    }


def serialize_node(store: GraphStore, node_id: str) -> Dict[str, Any]:
    connected_inputs = {f"{e.target}:{e.target_handle}" for e in store.get_incoming_edges(node_id)}
    return _serialize_node(store.require_node(node_id), connected_inputs)


def serialize_instances(instances: List[PromptInstance]) -> List[Dict[str, Any]]:
    return [inst.to_dict() for inst in instances]


def serialize_node_types() -> Dict[str, Any]:
    return {
        "nodeTypes": {t.value: _serialize_capability(cap) for t, cap in CAPABILITIES.items()},
        "tools": {
            name: {
                "inputKind": TOOL_IO_KINDS[name][0].value,
                "outputKind": TOOL_IO_KINDS[name][1].value,
                "models": list(TOOL_MODELS[name]),
            }
            for name in AVAILABLE_TOOLS
        },
    }
