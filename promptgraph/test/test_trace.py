import asyncio

import socketio
from fastapi import FastAPI

from promptgraph.server.trace.socket_server import TRACE_CHANNEL, _make_forwarder, create_socket_app
from promptgraph.server.trace.trace_emitter import TraceEmitter


class FakeSocketServer:
    def __init__(self):
        self.emitted = []

    async def emit(self, channel, event):
        self.emitted.append((channel, event))


class TestTraceEmitter:

    def setup_method(self):
        self.tracer = TraceEmitter()
        self.events = []

    def test_fire_stamps_timestamp(self):
        self.tracer.on_trace(self.events.append)
        self.tracer.fire({"type": "RUN_START", "nodeId": "B", "ts": 5})
        self.tracer.fire({"type": "RUN_DONE", "nodeId": "B"})
        assert self.events[0]["ts"] == 5
        assert isinstance(self.events[1]["ts"], int)

    def test_failing_listener_does_not_stop_others(self):
        def broken(event):
            raise RuntimeError("listener down")

        self.tracer.on_trace(broken)
        self.tracer.on_trace(self.events.append)
        self.tracer.fire({"type": "RUN_START", "nodeId": "B"})
        assert [e["type"] for e in self.events] == ["RUN_START"]

    def test_off_trace(self):
        self.tracer.on_trace(self.events.append)
        self.tracer.off_trace(self.events.append)
        self.tracer.off_trace(self.events.append)
        self.tracer.fire({"type": "RUN_START", "nodeId": "B"})
        assert self.events == []


class TestSocketForwarding:

    def test_forwarder_emits_on_trace_channel(self):
        sio = FakeSocketServer()
        tracer = TraceEmitter()
        tracer.on_trace(_make_forwarder(sio))

        async def scenario():
            tracer.fire({"type": "FLOW_SHARED", "uid": "k3x9"})
            await asyncio.sleep(0)

        asyncio.run(scenario())
        assert sio.emitted[0][0] == TRACE_CHANNEL
        assert sio.emitted[0][1]["uid"] == "k3x9"

    def test_forwarder_outside_loop_is_silent(self):
        sio = FakeSocketServer()
        forward = _make_forwarder(sio)
        forward({"type": "RUN_START", "nodeId": "B"})
        assert sio.emitted == []

    def test_create_socket_app_wraps_fastapi(self):
        tracer = TraceEmitter()
        app = create_socket_app(FastAPI(), tracer)
        assert isinstance(app, socketio.ASGIApp)
        assert len(tracer._listeners) == 1
