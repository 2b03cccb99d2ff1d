"""
FlowSession: everything one running server owns.

The session is built once per application and reached through
``app.state.session``; routes never touch module-level state.
"""
from __future__ import annotations

import time
from logging import getLogger
from typing import Any, Dict, List, Optional

from promptgraph.core.Cache import ResponseCache
from promptgraph.core.Errors import FlowTransportError
from promptgraph.core.Executor import ExecRequest, ExecResult, FlowExecutor, ModelBackend
from promptgraph.core.GraphPrimitives import FlowNode, GraphStore
from promptgraph.core.Types import NodeType
from promptgraph.flow.autosave import Autosaver
from promptgraph.flow.serializer import FlowSerializer, LoadReport
from promptgraph.flow.share import (
    HttpShareTransport,
    InMemoryShareTransport,
    ShareTransport,
    share_url,
    uid_from_url,
)
from promptgraph.flow.storage import LocalStorage
from promptgraph.server.config import Settings
from promptgraph.server.trace.trace_emitter import TraceEmitter

logger = getLogger(__name__)

STARTER_PROMPT = "Why is the sky blue?"
STARTER_VIEWPORT = {"x": 200, "y": 80, "zoom": 1}


class UnconfiguredBackend(ModelBackend):
    """Placeholder backend: every request comes back as an error result."""

    async def invoke(self, request: ExecRequest) -> ExecResult:
        return ExecResult.error(
            f"No model backend is configured for '{request.tool_type}' ({request.model})"
        )


def starter_nodes() -> List[FlowNode]:
    stamp = int(time.time() * 1000)
    return [
        FlowNode(f"prompt-{stamp}", NodeType.PROMPT,
                 {"prompt": STARTER_PROMPT, "n": 1},
                 {"x": 450, "y": 200}),
        FlowNode(f"textfields-{stamp}", NodeType.TEXT_INPUT, {}, {"x": 80, "y": 270}),
    ]


class FlowSession:

    def __init__(self,
                 settings: Settings,
                 backend: Optional[ModelBackend] = None,
                 transport: Optional[ShareTransport] = None) -> None:
        self.settings = settings
        self.tracer = TraceEmitter()
        self.store = GraphStore()
        self.cache = ResponseCache()
        self.storage = LocalStorage(settings.state_dir)

        if transport is None:
            if settings.share_url:
                transport = HttpShareTransport(settings.share_url)
            else:
                transport = InMemoryShareTransport()
        self.transport = transport

        self.serializer = FlowSerializer(self.store, self.cache, self.storage,
                                         self.transport, settings.share_max_bytes)
        self.executor = FlowExecutor(self.store, self.cache,
                                     backend or UnconfiguredBackend(), self.tracer)
        self.autosaver = Autosaver(self.serializer, settings.autosave_seconds)

    # ── Startup ─────────────────────────────────────────────────────────────

    async def bootstrap(self, url_or_uid: Optional[str] = None) -> str:
        """
        Pick the first flow available: a shared flow named by *url_or_uid*,
        then the autosave slot, then the starter flow. Returns which one
        was used.
        """
        uid = uid_from_url(url_or_uid)
        if uid is not None:
            # a shared id means the autosave slot is never consulted
            try:
                report = await self.serializer.open_shared(uid)
            except FlowTransportError as exc:
                logger.warning("could not open shared flow %s: %s", uid, exc)
                return "none"
            self._loaded("shared", report)
            return "shared"

        if self.serializer.has_autosave():
            try:
                report = self.serializer.load_autosave()
            except FlowTransportError as exc:
                logger.warning("autosaved flow could not be loaded: %s", exc)
            else:
                self._loaded("autosave", report)
                return "autosave"

        self.reset()
        return "starter"

    def _loaded(self, source: str, report: LoadReport) -> None:
        self.tracer.fire({"type": "FLOW_LOADED", "source": source, "warnings": list(report.warnings)})

    # ── Flow-level actions ──────────────────────────────────────────────────

    def reset(self) -> None:
        self.cache.clear()
        self.store.replace(starter_nodes(), [], STARTER_VIEWPORT)

    def load(self, artifact: Any, source: str = "import") -> LoadReport:
        report = self.serializer.load(artifact)
        self._loaded(source, report)
        return report

    async def open_shared(self, uid: str) -> LoadReport:
        report = await self.serializer.open_shared(uid)
        self._loaded("shared", report)
        return report

    async def share(self) -> Dict[str, str]:
        uid = await self.serializer.share()
        self.tracer.fire({"type": "FLOW_SHARED", "uid": uid})
        return {"uid": uid, "url": share_url(self.settings.public_url, uid)}
