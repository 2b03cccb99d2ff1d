import asyncio

from promptgraph.core.GraphPrimitives import FlowNode
from promptgraph.flow.storage import AUTOSAVE_KEY, LocalStorage
from promptgraph.server.config import load_settings, Settings
from promptgraph.server.state import FlowSession, STARTER_PROMPT


def make_session(tmp_path):
    return FlowSession(Settings(state_dir=tmp_path, autosave_seconds=0))


class TestBootstrap:

    def test_starter_flow_when_nothing_saved(self, tmp_path):
        session = make_session(tmp_path)
        assert asyncio.run(session.bootstrap()) == "starter"
        prompts = [n for n in session.store.nodes.values() if n.type.value == "prompt"]
        assert prompts[0].data["prompt"] == STARTER_PROMPT

    def test_autosave_preferred_over_starter(self, tmp_path):
        first = make_session(tmp_path)
        first.store.add_node(FlowNode("mine", "comment"))
        first.serializer.autosave()

        second = make_session(tmp_path)
        assert asyncio.run(second.bootstrap()) == "autosave"
        assert second.store.node_ids() == ["mine"]

    def test_shared_id_skips_autosave(self, tmp_path):
        source = make_session(tmp_path / "a")
        source.store.add_node(FlowNode("shared-node", "comment"))
        uid = asyncio.run(source.serializer.share())

        target = FlowSession(Settings(state_dir=tmp_path / "b", autosave_seconds=0),
                             transport=source.transport)
        target.store.add_node(FlowNode("local", "comment"))
        target.serializer.autosave()
        target.store.reset()

        events = []
        target.tracer.on_trace(events.append)
        assert asyncio.run(target.bootstrap(f"http://localhost:3001/?f={uid}")) == "shared"
        assert target.store.node_ids() == ["shared-node"]
        assert events[-1]["type"] == "FLOW_LOADED"

    def test_failed_shared_open_does_not_fall_back(self, tmp_path):
        session = make_session(tmp_path)
        session.serializer.autosave()
        assert asyncio.run(session.bootstrap("zz99")) == "none"
        assert session.store.node_ids() == []

    def test_corrupt_autosave_falls_back_to_starter(self, tmp_path):
        LocalStorage(tmp_path).set(AUTOSAVE_KEY, {"flow": {"nodes": 1}})
        session = make_session(tmp_path)
        assert asyncio.run(session.bootstrap()) == "starter"

    def test_autosave_with_bad_field_shapes_falls_back_to_starter(self, tmp_path):
        LocalStorage(tmp_path).set(AUTOSAVE_KEY, {"flow": {
            "nodes": [{"id": "t", "type": "text-input", "data": {"fields": ["Paris"]}}],
            "edges": [],
        }})
        session = make_session(tmp_path)
        assert asyncio.run(session.bootstrap()) == "starter"

    def test_reset_clears_cache(self, tmp_path):
        session = make_session(tmp_path)
        session.cache.import_entries({"x::1": {"node_id": "x", "kind": "text", "value": "v"}})
        session.reset()
        assert len(session.cache) == 0
        assert len(session.store.nodes) == 2


ENV_NAMES = (
    "PROMPTGRAPH_STATE_DIR",
    "PROMPTGRAPH_AUTOSAVE_SECONDS",
    "PROMPTGRAPH_SHARE_URL",
    "PROMPTGRAPH_SHARE_MAX_BYTES",
    "PROMPTGRAPH_PUBLIC_URL",
    "PROMPTGRAPH_HOST",
    "PROMPTGRAPH_PORT",
    "PROMPTGRAPH_LOG_LEVEL",
)


def clear_env(monkeypatch):
    # set then delete so values loaded from a .env file are undone afterwards
    for name in ENV_NAMES:
        monkeypatch.setenv(name, "unset")
        monkeypatch.delenv(name)


class TestSettings:

    def test_defaults(self, monkeypatch, tmp_path):
        clear_env(monkeypatch)
        settings = load_settings(str(tmp_path / "missing.env"))
        assert settings.port == 3001
        assert settings.share_url is None
        assert settings.autosave_seconds == 60.0
        assert settings.share_max_bytes == 5 * 1024 * 1024

    def test_env_file(self, monkeypatch, tmp_path):
        clear_env(monkeypatch)
        env = tmp_path / ".env"
        env.write_text(
            f"PROMPTGRAPH_PORT=8080\nPROMPTGRAPH_LOG_LEVEL=debug\nPROMPTGRAPH_STATE_DIR={tmp_path}\n",
            encoding="utf-8",
        )
        settings = load_settings(str(env))
        assert settings.port == 8080
        assert settings.log_level == "DEBUG"
        assert settings.state_dir == tmp_path
