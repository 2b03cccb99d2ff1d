"""
Flow REST routes.

All routes are mounted under /api by main.py and drive the FlowSession
stored on ``app.state.session``.
"""
from __future__ import annotations

import uuid
from logging import getLogger
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from promptgraph.core.Errors import (
    FlowTransportError,
    OperationInProgressError,
    ResolutionError,
)
from promptgraph.core.GraphPrimitives import Edge, FlowNode
from promptgraph.flow.schema import edge_to_dict, validate_node_data
from promptgraph.server.serializers.graph_serializer import (
    serialize_flow,
    serialize_instances,
    serialize_node,
    serialize_node_types,
)
from promptgraph.server.state import FlowSession

logger = getLogger(__name__)

router = APIRouter()


def get_session(request: Request) -> FlowSession:
    return request.app.state.session


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, OperationInProgressError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, KeyError):
        return HTTPException(status_code=404, detail=exc.args[0] if exc.args else "Not found")
    return HTTPException(status_code=400, detail=str(exc))


# ── GET /flow ─────────────────────────────────────────────────────────────────

@router.get("/flow")
async def get_flow(session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    return serialize_flow(session.store)


# ── POST /flow/nodes ──────────────────────────────────────────────────────────

class CreateNodeBody(BaseModel):
    type: str
    id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    position: Optional[Dict[str, float]] = None


@router.post("/flow/nodes", status_code=201)
async def create_node(body: CreateNodeBody, session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    node_id = body.id or f"{body.type}-{uuid.uuid4().hex[:8]}"
    try:
        validate_node_data(body.data or {}, "data")
        node = session.store.add_node(FlowNode(node_id, body.type, body.data, body.position))
    except ValueError as exc:
        raise _http_error(exc)
    return serialize_node(session.store, node.id)


# ── PATCH /flow/nodes/:nodeId/data ────────────────────────────────────────────

class NodeDataBody(BaseModel):
    data: Dict[str, Any]


@router.patch("/flow/nodes/{node_id}/data")
async def update_node_data(node_id: str, body: NodeDataBody,
                           session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    try:
        validate_node_data(body.data, "data")
        session.store.update_node_data(node_id, body.data)
    except (KeyError, FlowTransportError) as exc:
        raise _http_error(exc)
    return serialize_node(session.store, node_id)


# ── PUT /flow/nodes/:nodeId/position ──────────────────────────────────────────

class PositionBody(BaseModel):
    x: float
    y: float


@router.put("/flow/nodes/{node_id}/position", status_code=204)
async def set_node_position(node_id: str, body: PositionBody,
                            session: FlowSession = Depends(get_session)) -> Response:
    try:
        session.store.set_position(node_id, body.x, body.y)
    except KeyError as exc:
        raise _http_error(exc)
    return Response(status_code=204)


# ── DELETE /flow/nodes/:nodeId ────────────────────────────────────────────────

@router.delete("/flow/nodes/{node_id}", status_code=204)
async def delete_node(node_id: str, session: FlowSession = Depends(get_session)) -> Response:
    try:
        session.store.delete_node(node_id)
    except KeyError as exc:
        raise _http_error(exc)
    return Response(status_code=204)


# ── Edges ─────────────────────────────────────────────────────────────────────

class EdgeBody(BaseModel):
    source: str
    sourceHandle: str
    target: str
    targetHandle: str
    id: Optional[str] = None


class EdgeSetBody(BaseModel):
    edges: List[EdgeBody]


@router.post("/flow/edges", status_code=201)
async def add_edge(body: EdgeBody, session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    try:
        edge = session.store.add_edge(body.source, body.sourceHandle, body.target,
                                      body.targetHandle, body.id or "")
    except (KeyError, ValueError) as exc:
        raise _http_error(exc)
    return edge_to_dict(edge)


@router.put("/flow/edges")
async def replace_edges(body: EdgeSetBody, session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    store = session.store
    for e in body.edges:
        for node_id in (e.source, e.target):
            if store.get_node(node_id) is None:
                raise HTTPException(status_code=400, detail=f"Node '{node_id}' not found")
    store.set_edges(Edge(e.source, e.sourceHandle, e.target, e.targetHandle, e.id or "")
                    for e in body.edges)
    return serialize_flow(store)


@router.delete("/flow/edges/{edge_id}", status_code=204)
async def delete_edge(edge_id: str, session: FlowSession = Depends(get_session)) -> Response:
    try:
        session.store.remove_edge(edge_id)
    except KeyError as exc:
        raise _http_error(exc)
    return Response(status_code=204)


# ── GET /flow/nodes/:nodeId/prompts ───────────────────────────────────────────

@router.get("/flow/nodes/{node_id}/prompts")
async def preview_prompts(node_id: str, session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    try:
        instances = session.executor.preview(node_id)
    except (KeyError, ResolutionError) as exc:
        raise _http_error(exc)
    return {"nodeId": node_id, "prompts": serialize_instances(instances)}


# ── POST /flow/nodes/:nodeId/run ──────────────────────────────────────────────

@router.post("/flow/nodes/{node_id}/run")
async def run_node(node_id: str, session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    try:
        report = await session.executor.run_node(node_id)
    except (KeyError, ResolutionError) as exc:
        raise _http_error(exc)
    return report.to_dict()


# ── Import / export / share ───────────────────────────────────────────────────

@router.get("/flow/export")
async def export_flow(session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    return session.serializer.save()


@router.post("/flow/import")
async def import_flow(artifact: Dict[str, Any] = Body(...),
                      session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    try:
        report = session.load(artifact)
    except FlowTransportError as exc:
        raise _http_error(exc)
    return {"report": report.to_dict(), "flow": serialize_flow(session.store)}


@router.post("/flow/share")
async def share_flow(session: FlowSession = Depends(get_session)) -> Dict[str, str]:
    try:
        return await session.share()
    except FlowTransportError as exc:
        raise _http_error(exc)


class OpenSharedBody(BaseModel):
    uid: str


@router.post("/flow/open")
async def open_shared_flow(body: OpenSharedBody, session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    try:
        report = await session.open_shared(body.uid)
    except FlowTransportError as exc:
        raise _http_error(exc)
    return {"report": report.to_dict(), "flow": serialize_flow(session.store)}


@router.post("/flow/save")
async def save_flow(session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    try:
        session.serializer.autosave()
    except OSError as exc:
        logger.warning("manual save failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))
    return {"ok": True}


@router.post("/flow/reset")
async def reset_flow(session: FlowSession = Depends(get_session)) -> Dict[str, Any]:
    session.reset()
    return serialize_flow(session.store)


# ── GET /node-types ───────────────────────────────────────────────────────────

@router.get("/node-types")
async def get_node_types() -> Dict[str, Any]:
    return serialize_node_types()
