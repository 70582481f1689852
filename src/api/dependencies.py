"""FastAPI dependencies shared by the HTTP and WebSocket handlers.

The application keeps its long-lived collaborators on `app.state`
(settings, call store, session registry, session factory) so tests can
swap any of them without patching module globals.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request

from src.config import Settings, get_settings
from src.db.store import CallStore
from src.services.telephony.plivo import PlivoService

if TYPE_CHECKING:
    from src.api.websocket.audio_stream import CallSessionRegistry


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_store(request: Request) -> CallStore:
    return request.app.state.store


def get_registry(request: Request) -> CallSessionRegistry:
    return request.app.state.registry


def get_plivo_service(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> PlivoService:
    """Dependency injection for PlivoService."""
    telephony = getattr(request.app.state, "telephony", None)
    return telephony or PlivoService(settings=settings)
