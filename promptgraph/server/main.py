"""
FastAPI + Socket.IO server.

Start with:
    python -m promptgraph.server.main

Or via uvicorn directly:
    uvicorn promptgraph.server.main:socket_app --port 3001 --reload
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from promptgraph.core.Executor import ModelBackend
from promptgraph.flow.share import ShareTransport
from promptgraph.server.config import Settings, load_settings
from promptgraph.server.routes.flow_routes import router
from promptgraph.server.state import FlowSession
from promptgraph.server.trace.socket_server import create_socket_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

def create_app(settings: Optional[Settings] = None,
               backend: Optional[ModelBackend] = None,
               transport: Optional[ShareTransport] = None,
               shared: Optional[str] = None) -> FastAPI:
    """
    Build the API around a fresh FlowSession.

    *shared* may be a share link or a bare shared-flow id; when given, that
    flow is opened on startup instead of the autosaved one.
    """
    settings = settings or load_settings()
    session = FlowSession(settings, backend=backend, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        source = await session.bootstrap(shared)
        logger.info("started with %s flow", source)
        if settings.autosave_seconds > 0:
            session.autosaver.start()
        try:
            yield
        finally:
            await session.autosaver.stop()
            session.autosaver.tick()

    app = FastAPI(title="PromptGraph API", version="1.0.0", lifespan=lifespan)
    app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


# ---------------------------------------------------------------------------
# Wrap with Socket.IO ASGI layer
# ---------------------------------------------------------------------------

# socket_app is the top-level ASGI app passed to uvicorn.
# Socket.IO connections are handled at the root; all other requests are
# forwarded to the inner FastAPI app.
app = create_app()
socket_app = create_socket_app(app, app.state.session.tracer)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    import uvicorn

    settings = app.state.session.settings
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(socket_app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
