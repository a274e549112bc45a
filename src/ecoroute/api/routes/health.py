"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/routing", status_code=status.HTTP_200_OK)
def health_routing(request: Request) -> dict:
    """Report which providers are configured and how busy the fetch queue is."""
    engine = request.app.state.engine
    return {
        "service": "routing",
        "live_routing": engine.routing_provider is not None,
        "live_weather": engine.conditions.weather_provider is not None,
        "live_traffic": engine.conditions.traffic_provider is not None,
        "cache": engine.cache.stats(),
        "queue": engine.queue.stats(),
    }
