"""
Socket.IO server.

Uses python-socketio in ASGI mode so it can wrap FastAPI.
`create_socket_app(fastapi_app, tracer)` returns the composite ASGI
application to pass to uvicorn; every trace event is emitted on the
``trace`` channel.
"""
from __future__ import annotations

import asyncio
from logging import getLogger
from typing import Any, Callable, Dict

import socketio

from .trace_emitter import TraceEmitter

logger = getLogger(__name__)

TRACE_CHANNEL = "trace"


def _make_forwarder(sio: socketio.AsyncServer) -> Callable[[Dict[str, Any]], None]:
    def _on_trace(event: Dict[str, Any]) -> None:
        """
        Called synchronously by TraceEmitter.fire().
        We schedule an async emit on the running event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # fired outside the server loop; nobody to emit to
        loop.create_task(sio.emit(TRACE_CHANNEL, event))

    return _on_trace


def create_socket_server() -> socketio.AsyncServer:
    sio = socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins="*",
        logger=False,
        engineio_logger=False,
    )

    @sio.event
    async def connect(sid: str, environ: dict) -> None:
        logger.debug("trace client connected: %s", sid)

    @sio.event
    async def disconnect(sid: str) -> None:
        logger.debug("trace client disconnected: %s", sid)

    return sio


def create_socket_app(fastapi_app: Any, tracer: TraceEmitter) -> socketio.ASGIApp:
    """Wrap *fastapi_app* inside a Socket.IO ASGI application fed by *tracer*."""
    sio = create_socket_server()
    tracer.on_trace(_make_forwarder(sio))
    return socketio.ASGIApp(sio, other_asgi_app=fastapi_app)
