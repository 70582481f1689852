"""FastAPI application entry point.

SMB Voice Agent - AI receptionist answering phone calls for small businesses.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import calls, health, metrics, plivo_webhook
from src.api.websocket.audio_stream import (
    CallSessionRegistry,
    SessionFactory,
    audio_stream_endpoint,
    build_call_session,
)
from src.config import Settings, get_settings
from src.db.session import close_db, init_db
from src.db.store import CallStore, SQLCallStore
from src.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup:
    - Initialize logging
    - Create database tables

    Shutdown:
    - Finalize active call sessions
    - Close database connections
    """
    settings: Settings = app.state.settings

    setup_logging(
        level=settings.log_level,
        enable_file=settings.is_production,
    )
    await init_db()

    yield

    await app.state.registry.close_all()
    await close_db()


def create_app(
    settings: Settings | None = None,
    *,
    store: CallStore | None = None,
    session_factory: SessionFactory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="SMB Voice Agent API",
        description="AI phone receptionist for small businesses",
        version="0.1.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store or SQLCallStore()
    app.state.registry = CallSessionRegistry(max_calls=settings.max_concurrent_calls)
    app.state.session_factory = session_factory or build_call_session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check routes
    app.include_router(health.router, tags=["Health"])

    # Plivo webhook routes
    app.include_router(plivo_webhook.router, prefix="/api", tags=["Plivo"])

    # Call API
    app.include_router(calls.router, prefix="/api", tags=["Calls"])

    # Metrics endpoint for Prometheus scraping
    app.include_router(metrics.router, tags=["Observability"])

    @app.websocket("/ws/audio/{call_id}")
    async def audio_ws(websocket: WebSocket, call_id: str):
        """Plivo bidirectional media stream."""
        await audio_stream_endpoint(websocket, call_id)

    return app


# Application instance
app = create_app()
