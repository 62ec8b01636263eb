"""FastAPI application for the realtime notes service."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .core.config import Settings, get_settings
from .core.security import ContentCipher
from .db.session import build_engine, build_session_factory
from .routers import sync
from .services.hub import SyncHub
from .services.store import NoteStore, SqlNoteStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_store(settings: Settings) -> SqlNoteStore:
    """Create the SQL-backed store described by ``settings``."""

    engine = build_engine(settings)
    return SqlNoteStore(engine, build_session_factory(engine), ContentCipher(settings.encryption_key))


def create_app(
    settings: Settings | None = None,
    *,
    store: NoteStore | None = None,
    hub: SyncHub | None = None,
) -> FastAPI:
    """Build the application around one hub; tests pass their own store or hub."""

    settings = settings or get_settings()
    configure_logging(settings.log_level)
    if hub is None:
        hub = SyncHub(store or build_store(settings), settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await hub.store.initialize()
        hub.start_background_tasks()
        logger.info("Server is running (environment: %s)", settings.app_env)
        try:
            yield
        finally:
            await hub.stop_background_tasks()
            await hub.store.close()
            logger.info("Server closed")

    app = FastAPI(title="Realtime Notes API", version="0.1.0", lifespan=lifespan)
    app.state.hub = hub

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(sync.router)

    @app.get("/api/health", tags=["meta"])
    async def health() -> JSONResponse:
        """Report whether the store is reachable."""

        if await hub.store.health():
            return JSONResponse({"status": "ok"})
        return JSONResponse({"status": "unhealthy"}, status_code=503)

    @app.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        return Response(status_code=200)

    return app


app = create_app()
