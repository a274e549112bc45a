"""Routing endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from ...schemas.routing import (
    CollectionTimeRequest,
    CollectionTimeResponse,
    OptimizeRouteRequest,
    OptimizedRouteResponse,
    ShortestPathRequest,
    ShortestPathResponse,
)
from ...services.outputs.routing_formatter import route_to_csv, route_to_json
from ...services.routing.engine import OptimizerEngine
from ...services.routing.models import OptimizedRoute

router = APIRouter(prefix="/routes", tags=["routes"])


def get_engine(request: Request) -> OptimizerEngine:
    return request.app.state.engine


def _lookup(engine: OptimizerEngine, route_id: str) -> OptimizedRoute:
    route = engine.get_route(route_id)
    if route is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Route '{route_id}' not found")
    return route


@router.post("/optimize", response_model=OptimizedRouteResponse, status_code=status.HTTP_200_OK)
async def optimize(payload: OptimizeRouteRequest, engine: OptimizerEngine = Depends(get_engine)) -> dict:
    try:
        route = await engine.optimize_route(
            payload.collector_id,
            [location.to_domain() for location in payload.pickup_locations],
            payload.start_location.to_domain(),
            payload.vehicle_type,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error optimizing route: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to optimize route: {str(exc)}",
        ) from exc
    return route_to_json(route)


@router.post("/shortest-path", response_model=ShortestPathResponse, status_code=status.HTTP_200_OK)
async def shortest_path(payload: ShortestPathRequest, engine: OptimizerEngine = Depends(get_engine)) -> dict:
    try:
        result = await engine.shortest_path(payload.from_lat, payload.from_lng, payload.to_lat, payload.to_lng)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error computing shortest path: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to compute shortest path: {str(exc)}",
        ) from exc
    return {
        "path": [asdict(node) for node in result.path],
        "total_distance_km": result.total_distance_km,
        "total_time_min": result.total_time_min,
        "polyline": [list(point) for point in result.polyline],
        "instructions": result.instructions,
        "source": result.source,
    }


@router.get("/metrics", status_code=status.HTTP_200_OK)
def metrics(engine: OptimizerEngine = Depends(get_engine)) -> dict:
    return engine.performance_metrics()


@router.post("/collection-time", response_model=CollectionTimeResponse, status_code=status.HTTP_200_OK)
async def collection_time(payload: CollectionTimeRequest, engine: OptimizerEngine = Depends(get_engine)) -> dict:
    try:
        return await engine.predict_collection_time(payload.location.to_domain())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/{route_id}", response_model=OptimizedRouteResponse, status_code=status.HTTP_200_OK)
def get_route(route_id: str, engine: OptimizerEngine = Depends(get_engine)) -> dict:
    return route_to_json(_lookup(engine, route_id))


@router.get("/{route_id}/csv", response_class=PlainTextResponse, status_code=status.HTTP_200_OK)
def export_route_csv(route_id: str, engine: OptimizerEngine = Depends(get_engine)) -> PlainTextResponse:
    route = _lookup(engine, route_id)
    return PlainTextResponse(
        route_to_csv(route),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{route.id}.csv"'},
    )
