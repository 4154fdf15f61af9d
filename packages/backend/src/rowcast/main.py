"""FastAPI application factory.

Learn: App factory pattern: create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown of the relay (change pump,
heartbeat, sessions) and the database engine.

The data backend and change source can be injected, which is how the
tests run the whole relay without PostgreSQL or Redis.

Run with:  rowcast serve   (or uvicorn --factory rowcast.main:create_app)
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from rowcast import __version__
from rowcast.api import api_router
from rowcast.changes import ChangeSource, build_change_source
from rowcast.config import Settings, settings as default_settings
from rowcast.db.backend import DataBackend, SqlAlchemyBackend
from rowcast.log import install_fault_handlers
from rowcast.middleware.request_id import RequestIdMiddleware
from rowcast.realtime.relay import Relay
from rowcast.realtime.websocket import router as ws_router

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[DataBackend] = None,
    change_source: Optional[ChangeSource] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or default_settings

    if backend is None:
        from rowcast.db.engine import build_engine

        settings.require_database()
        backend = SqlAlchemyBackend(build_engine(settings), schema=settings.db_schema)
        if change_source is None:
            change_source = build_change_source(settings)

    relay = Relay(
        backend,
        change_source=change_source,
        heartbeat_interval=settings.heartbeat_interval,
        backend_timeout=settings.backend_timeout_seconds,
        queue_size=settings.send_queue_size,
        retry_seconds=settings.change_source_retry_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Anything before `yield` runs at startup, after `yield` at shutdown."""
        install_fault_handlers(asyncio.get_running_loop())
        logger.info(
            "rowcast.starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
            watched_tables=settings.watched_tables,
        )
        await relay.start()

        yield

        logger.info("rowcast.shutdown", sessions=len(relay.registry))
        await relay.stop(grace=settings.shutdown_grace_seconds)
        await relay.backend.close()

    app = FastAPI(
        title="rowcast",
        description="PostgreSQL change relay and table operations over WebSockets",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.relay = relay
    app.state.settings = settings

    app.add_middleware(RequestIdMiddleware)
    app.include_router(api_router)
    app.include_router(ws_router)

    return app
