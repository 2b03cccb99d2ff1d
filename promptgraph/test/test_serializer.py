import asyncio
import base64
import json
import os

import pytest

from promptgraph.core.Cache import CacheEntry, ResponseCache
from promptgraph.core.Errors import (
    ArtifactTooLargeError,
    MalformedArtifactError,
    OperationInProgressError,
    TransportError,
)
from promptgraph.core.GraphPrimitives import FlowNode, GraphStore
from promptgraph.flow.serializer import (
    DEFAULT_SHARE_LIMIT,
    FlowSerializer,
    compress,
    decompress,
)
from promptgraph.flow.share import InMemoryShareTransport, ShareTransport
from promptgraph.flow.storage import AUTOSAVE_KEY, LocalStorage


class RecordingTransport(ShareTransport):
    def __init__(self):
        self.inner = InMemoryShareTransport()
        self.puts = 0

    async def put(self, payload):
        self.puts += 1
        return await self.inner.put(payload)

    async def get(self, uid):
        return await self.inner.get(uid)


class BlockingTransport(ShareTransport):
    """Holds every put open until released."""

    def __init__(self):
        self.release = None

    async def put(self, payload):
        self.release = asyncio.Event()
        await self.release.wait()
        return "abc123"

    async def get(self, uid):
        raise TransportError("Error: not stored")


def build_flow(store, cache):
    store.add_node(FlowNode("A", "text-input", {"fields": {"f0": "Paris"}}, {"x": 1, "y": 2}))
    store.add_node(FlowNode("B", "prompt", {"prompt": "Translate {city} to French"}))
    store.add_edge("A", "output", "B", "city", "e1")
    store.viewport = {"x": 5, "y": 6, "zoom": 0.5}
    cache.put("B::abc", CacheEntry(node_id="B", kind="text", value="Paris en français", timestamp=1))
    cache.put("gone::abc", CacheEntry(node_id="gone", kind="text", value="orphan", timestamp=1))


def random_payload(n_bytes):
    return base64.b64encode(os.urandom(n_bytes)).decode("ascii")


class TestFlowSerializer:

    def setup_method(self):
        self.store = GraphStore()
        self.cache = ResponseCache()
        build_flow(self.store, self.cache)
        self.transport = RecordingTransport()
        self.serializer = FlowSerializer(self.store, self.cache, transport=self.transport)

    def fresh(self, **kwargs):
        return FlowSerializer(GraphStore(), ResponseCache(), **kwargs)

    def test_save_shape(self):
        artifact = self.serializer.save()
        assert set(artifact) == {"flow", "cache"}
        assert [n["id"] for n in artifact["flow"]["nodes"]] == ["A", "B"]
        assert artifact["flow"]["edges"] == [{
            "id": "e1", "source": "A", "sourceHandle": "output",
            "target": "B", "targetHandle": "city",
        }]
        assert artifact["flow"]["viewport"] == {"x": 5, "y": 6, "zoom": 0.5}

    def test_save_exports_only_present_nodes(self):
        assert set(self.serializer.save()["cache"]) == {"B::abc"}

    def test_round_trip_through_load(self):
        artifact = json.loads(json.dumps(self.serializer.save()))
        other = self.fresh()
        report = other.load(artifact)

        assert report.graph_applied
        assert report.cache_imported == 1
        assert report.warnings == []
        assert other.store.get_node("B").vars == ["city"]
        assert other.store.get_node("A").position == {"x": 1, "y": 2}
        assert other.store.get_incoming_edges("B", "city")[0].source == "A"
        assert other.cache.get("B::abc").value == "Paris en français"
        assert other.save() == self.serializer.save()

    def test_graph_only_artifact(self):
        flow = self.serializer.save()["flow"]
        other = self.fresh()
        report = other.load(flow)
        assert report.graph_applied
        assert report.cache_imported == 0
        assert other.store.node_ids() == ["A", "B"]

    def test_bad_cache_still_applies_graph(self):
        artifact = self.serializer.save()
        artifact["cache"] = {"B::zzz": {"kind": "nonsense"}}
        other = self.fresh()
        report = other.load(artifact)

        assert report.graph_applied
        assert other.store.node_ids() == ["A", "B"]
        assert len(other.cache) == 0
        assert len(report.warnings) == 1

    def test_bad_timestamp_only_drops_cache(self, tmp_path):
        artifact = self.serializer.save()
        artifact["cache"]["B::abc"]["timestamp"] = "soon"
        storage = LocalStorage(tmp_path)
        other = self.fresh(storage=storage)
        report = other.load(artifact)

        assert report.graph_applied
        assert other.store.node_ids() == ["A", "B"]
        assert len(other.cache) == 0
        assert "Cache could not be imported" in report.warnings[0]
        assert storage.has(AUTOSAVE_KEY)

    @pytest.mark.parametrize("mutate", [
        lambda a: a["flow"].pop("nodes"),
        lambda a: a["flow"]["nodes"].append({"id": "C", "type": "textfields"}),
        lambda a: a["flow"]["nodes"].append({"id": "A", "type": "prompt"}),
        lambda a: a["flow"]["edges"].append({"source": "A", "sourceHandle": "output",
                                             "target": "ghost", "targetHandle": "x"}),
        lambda a: a["flow"]["nodes"][0]["data"].__setitem__("fields", ["Paris"]),
        lambda a: a["flow"]["nodes"][0]["data"].__setitem__("fields_visibility", ["f0"]),
        lambda a: a["flow"]["nodes"][0]["data"].__setitem__("rows", [["Paris"]]),
        lambda a: a["flow"]["nodes"][0]["data"].__setitem__("rows", "Paris"),
    ])
    def test_malformed_graph_applies_nothing(self, mutate):
        artifact = self.serializer.save()
        mutate(artifact)

        other = self.fresh()
        other.store.add_node(FlowNode("keep", "comment"))
        with pytest.raises(MalformedArtifactError):
            other.load(artifact)
        assert other.store.node_ids() == ["keep"]
        assert len(other.cache) == 0

    def test_non_object_artifact(self):
        with pytest.raises(MalformedArtifactError):
            self.fresh().load(["not", "a", "flow"])

    def test_compress_round_trip(self):
        artifact = self.serializer.save()
        assert decompress(compress(artifact)) == json.loads(json.dumps(artifact))

    def test_decompress_garbage(self):
        with pytest.raises(MalformedArtifactError):
            decompress("definitely not compressed!")

    def test_share_and_open(self):
        uid = asyncio.run(self.serializer.share())
        other = self.fresh(transport=self.transport)
        report = asyncio.run(other.open_shared(uid))
        assert report.graph_applied
        assert other.store.node_ids() == ["A", "B"]

    def test_open_rejects_invalid_uid(self):
        with pytest.raises(MalformedArtifactError):
            asyncio.run(self.serializer.open_shared("x"))

    def test_transport_error_leaves_state(self):
        with pytest.raises(TransportError):
            asyncio.run(self.serializer.open_shared("zz99"))
        assert self.store.node_ids() == ["A", "B"]

    def test_oversized_artifact_rejected_before_transport(self):
        # ~4.6MB of incompressible data compresses to well over 5MB of text
        self.store.update_node_data("A", {"fields": {"f0": random_payload(4_600_000)}})
        with pytest.raises(ArtifactTooLargeError) as info:
            asyncio.run(self.serializer.share())
        assert info.value.size >= DEFAULT_SHARE_LIMIT
        assert "Export Flow" in str(info.value)
        assert self.transport.puts == 0
        assert not self.serializer.busy("share")

    def test_artifact_under_cap_is_shared(self):
        # ~4MB after compression
        self.store.update_node_data("A", {"fields": {"f0": random_payload(3_000_000)}})
        uid = asyncio.run(self.serializer.share())
        assert self.transport.puts == 1
        assert uid

    def test_cap_is_exclusive(self):
        size = len(compress(self.serializer.save()).encode("utf-8"))
        self.serializer.share_limit = size
        with pytest.raises(ArtifactTooLargeError):
            asyncio.run(self.serializer.share())
        self.serializer.share_limit = size + 1
        asyncio.run(self.serializer.share())
        assert self.transport.puts == 1

    def test_concurrent_share_rejected(self):
        transport = BlockingTransport()
        serializer = FlowSerializer(self.store, self.cache, transport=transport)

        async def scenario():
            first = asyncio.ensure_future(serializer.share())
            await asyncio.sleep(0)
            with pytest.raises(OperationInProgressError, match="already in progress"):
                await serializer.share()
            transport.release.set()
            return await first

        assert asyncio.run(scenario()) == "abc123"
        assert not serializer.busy("share")

    def test_export_and_import_file(self, tmp_path):
        path = self.serializer.export_file(tmp_path / "my-flow")
        assert path.suffix == ".cforge"

        other = self.fresh()
        report = other.import_file(path)
        assert report.cache_imported == 1
        assert other.store.node_ids() == ["A", "B"]

    def test_import_file_not_json(self, tmp_path):
        path = tmp_path / "broken.cforge"
        path.write_text("{nope", encoding="utf-8")
        with pytest.raises(MalformedArtifactError):
            self.fresh().import_file(path)

    def test_load_writes_autosave_slot(self, tmp_path):
        storage = LocalStorage(tmp_path)
        other = self.fresh(storage=storage)
        other.load(self.serializer.save())
        saved = storage.get(AUTOSAVE_KEY)
        assert [n["id"] for n in saved["flow"]["nodes"]] == ["A", "B"]
        assert set(saved["cache"]) == {"B::abc"}
