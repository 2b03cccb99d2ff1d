"""
Flow serializer: packages the graph and the cache entries its nodes own into
one artifact, and applies such artifacts back onto a GraphStore.

Loading applies the graph first and the cache second. A cache fragment that
fails to import leaves the loaded graph in place and is reported as a
warning; a graph that fails validation applies nothing.
"""
from __future__ import annotations

import base64
import binascii
import json
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from promptgraph.core.Cache import ResponseCache
from promptgraph.core.Errors import (
    ArtifactTooLargeError,
    MalformedArtifactError,
    OperationInProgressError,
    TransportError,
)
from promptgraph.core.GraphPrimitives import GraphStore
from promptgraph.flow.schema import (
    edge_from_dict,
    edge_to_dict,
    node_from_dict,
    node_to_dict,
    split_artifact,
    validate_flow,
)
from promptgraph.flow.share import ShareTransport, is_valid_uid
from promptgraph.flow.storage import AUTOSAVE_KEY, LocalStorage

logger = getLogger(__name__)

DEFAULT_SHARE_LIMIT = 5 * 1024 * 1024
FLOW_FILE_SUFFIX = ".cforge"


# ── Compression ───────────────────────────────────────────────────────────────

def compress(artifact: Dict[str, Any]) -> str:
    raw = json.dumps(artifact, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(zlib.compress(raw, 9)).decode("ascii")


def decompress(text: str) -> Dict[str, Any]:
    try:
        raw = zlib.decompress(base64.b64decode(text.encode("ascii"), validate=True))
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, zlib.error, UnicodeError, ValueError) as exc:
        raise MalformedArtifactError(f"Could not decode shared flow: {exc}") from exc


@dataclass
class LoadReport:
    graph_applied: bool = False
    cache_imported: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graphApplied": self.graph_applied,
            "cacheImported": self.cache_imported,
            "warnings": list(self.warnings),
        }


class FlowSerializer:

    def __init__(self,
                 store: GraphStore,
                 cache: ResponseCache,
                 storage: Optional[LocalStorage] = None,
                 transport: Optional[ShareTransport] = None,
                 share_limit: int = DEFAULT_SHARE_LIMIT):
        self.store = store
        self.cache = cache
        self.storage = storage
        self.transport = transport
        self.share_limit = share_limit
        self._in_flight = set()

    @contextmanager
    def _guard(self, operation: str):
        if operation in self._in_flight:
            raise OperationInProgressError(operation)
        self._in_flight.add(operation)
        try:
            yield
        finally:
            self._in_flight.discard(operation)

    def busy(self, operation: str) -> bool:
        return operation in self._in_flight

    # ── Save / load ─────────────────────────────────────────────────────────

    def save_flow(self) -> Dict[str, Any]:
        return {
            "nodes": [node_to_dict(n) for n in self.store.nodes.values()],
            "edges": [edge_to_dict(e) for e in self.store.edges],
            "viewport": dict(self.store.viewport),
        }

    def save(self) -> Dict[str, Any]:
        return {
            "flow": self.save_flow(),
            "cache": self.cache.export_for(self.store.node_ids()),
        }

    def load(self, artifact: Any) -> LoadReport:
        flow, fragment = split_artifact(artifact)
        validate_flow(flow)
        try:
            nodes = [node_from_dict(raw) for raw in flow["nodes"]]
        except (AttributeError, TypeError, ValueError) as exc:
            raise MalformedArtifactError(f"Flow has a node that cannot be built: {exc}") from exc
        edges = [edge_from_dict(raw) for raw in flow["edges"]]

        self.store.replace(nodes, edges, flow.get("viewport"))
        report = LoadReport(graph_applied=True)

        if fragment is not None:
            try:
                report.cache_imported = self.cache.import_entries(fragment)
            except MalformedArtifactError as exc:
                logger.warning("flow loaded without its cache: %s", exc)
                report.warnings.append(f"Cache could not be imported: {exc}")

        logger.info("loaded flow: %d node(s), %d edge(s), %d cache entries",
                    len(nodes), len(edges), report.cache_imported)
        self._autosave_after_load(report)
        return report

    def _autosave_after_load(self, report: LoadReport) -> None:
        if self.storage is None:
            return
        try:
            self.autosave()
        except OSError as exc:
            logger.warning("could not autosave loaded flow: %s", exc)
            report.warnings.append(f"Autosave failed: {exc}")

    # ── Autosave slot ───────────────────────────────────────────────────────

    def autosave(self) -> None:
        if self.storage is None:
            return
        self.storage.set(AUTOSAVE_KEY, self.save())

    def has_autosave(self) -> bool:
        return self.storage is not None and self.storage.has(AUTOSAVE_KEY)

    def load_autosave(self) -> Optional[LoadReport]:
        if not self.has_autosave():
            return None
        try:
            artifact = self.storage.get(AUTOSAVE_KEY)
        except json.JSONDecodeError as exc:
            raise MalformedArtifactError(f"Autosaved flow is not valid JSON: {exc}") from exc
        return self.load(artifact)

    # ── Share ───────────────────────────────────────────────────────────────

    def _require_transport(self) -> ShareTransport:
        if self.transport is None:
            raise TransportError("No share transport is configured")
        return self.transport

    async def share(self) -> str:
        with self._guard("share"):
            compressed = compress(self.save())
            size = len(compressed.encode("utf-8"))
            if size >= self.share_limit:
                raise ArtifactTooLargeError(size, self.share_limit)

            uid = await self._require_transport().put(compressed)
            logger.info("shared flow as %s (%d bytes)", uid, size)
            return uid

    async def open_shared(self, uid: str) -> LoadReport:
        with self._guard("open"):
            if not is_valid_uid(uid):
                raise MalformedArtifactError(f"'{uid}' is not a valid shared flow id")
            transport = self._require_transport()
            text = await transport.get(uid)
            return self.load(decompress(text))

    # ── Files ───────────────────────────────────────────────────────────────

    def export_file(self, path: Union[str, Path]) -> Path:
        with self._guard("export"):
            path = Path(path)
            if not path.suffix:
                path = path.with_suffix(FLOW_FILE_SUFFIX)
            with path.open("w", encoding="utf-8") as fh:
                json.dump(self.save(), fh)
            return path

    def import_file(self, path: Union[str, Path]) -> LoadReport:
        path = Path(path)
        try:
            with path.open(encoding="utf-8") as fh:
                artifact = json.load(fh)
        except json.JSONDecodeError as exc:
            raise MalformedArtifactError(f"{path.name} is not a valid flow file: {exc}") from exc
        return self.load(artifact)
