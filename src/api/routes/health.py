"""Health check endpoints.

Provides:
- Basic health check (GET /health)
- Detailed health check with dependency status (GET /health/detailed)
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import text

from src.api.dependencies import get_app_settings
from src.config import Settings
from src.db.session import get_session

router = APIRouter()

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response."""

    status: str
    checks: dict[str, str]
    active_calls: int
    version: str


def _configured(secret: object) -> str:
    value = secret.get_secret_value() if hasattr(secret, "get_secret_value") else secret
    return "configured" if value else "missing"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness: the API process is up."""
    return HealthResponse(status="healthy")


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(
    request: Request,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> DetailedHealthResponse:
    """Database connectivity plus provider configuration.

    Providers are only checked for credentials; no vendor API is called.
    """
    checks: dict[str, str] = {}

    try:
        await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {type(e).__name__}"

    checks["groq"] = _configured(settings.groq_api_key)
    checks["deepgram"] = _configured(settings.deepgram_api_key)
    checks["elevenlabs"] = _configured(settings.elevenlabs_api_key)
    checks["plivo"] = _configured(settings.plivo_auth_id)

    registry = getattr(request.app.state, "registry", None)
    status = "healthy" if checks["database"] == "ok" else "degraded"

    return DetailedHealthResponse(
        status=status,
        checks=checks,
        active_calls=registry.active_count if registry else 0,
        version=VERSION,
    )
