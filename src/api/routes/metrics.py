"""Prometheus scrape endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Response

from src.observability.metrics import get_content_type, get_metrics

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Call, tool and latency metrics in Prometheus text format."""
    return Response(content=get_metrics(), media_type=get_content_type())
