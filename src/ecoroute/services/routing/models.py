"""Routing domain models."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from ...models.domain import Location, VehicleType

LatLng = tuple[float, float]


@dataclass(slots=True)
class RouteData:
    """Road distance/duration for one directed hop as reported by the routing provider."""

    distance_km: float
    duration_hr: float
    polyline: List[LatLng] = field(default_factory=list)


# (origin, destination, vehicle, cancel_event) -> cached or freshly fetched road data
RouteLookup = Callable[
    [Location, Location, VehicleType, Optional[asyncio.Event]], Awaitable[Optional[RouteData]]
]


@dataclass(frozen=True, slots=True)
class RouteSegment:
    origin: Location
    destination: Location
    distance_km: float
    duration_hr: float
    fuel_cost: float
    emissions_kg: float
    polyline: Optional[tuple[LatLng, ...]] = None
    live: bool = False


@dataclass(slots=True)
class EstimatedSavings:
    distance: float = 0.0
    time: float = 0.0
    cost: float = 0.0
    emissions: float = 0.0


@dataclass(slots=True)
class OptimizedRoute:
    id: str
    collector_id: str
    vehicle_type: VehicleType
    waypoints: List[Location]
    segments: List[RouteSegment]
    total_distance_km: float
    total_duration_hr: float
    total_fuel_cost: float
    total_emissions_kg: float
    estimated_savings: EstimatedSavings
    efficiency: float
    full_polyline: List[LatLng]
    fallback: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class GraphNode:
    id: str
    lat: float
    lng: float
    name: str
    kind: str
    congestion_weight: float = 1.0


@dataclass(slots=True)
class PathResult:
    path: List[GraphNode]
    total_distance_km: float
    total_time_min: float
    polyline: List[LatLng]
    instructions: List[str]
    source: str
