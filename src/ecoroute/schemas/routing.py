"""Routing request/response schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.domain import Location


class LocationModel(BaseModel):
    # Range checks happen in the engine so they surface as HTTP 400.
    lat: float
    lng: float
    address: Optional[str] = None
    waste_type: Optional[str] = None
    priority: int = Field(default=3, description="1 is the most urgent pickup, 3 the least.")
    estimated_weight: Optional[float] = None

    def to_domain(self) -> Location:
        return Location(
            lat=self.lat,
            lng=self.lng,
            address=self.address,
            waste_type=self.waste_type,
            priority=self.priority,
            estimated_weight=self.estimated_weight,
        )


class OptimizeRouteRequest(BaseModel):
    collector_id: str
    pickup_locations: List[LocationModel]
    start_location: LocationModel
    vehicle_type: str = Field(default="truck", description="One of 'truck', 'van' or 'bike'.")


class RouteSegmentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    origin: LocationModel = Field(alias="from")
    destination: LocationModel = Field(alias="to")
    distance_km: float
    duration_hr: float
    fuel_cost: float
    emissions_kg: float
    live: bool = False
    polyline: Optional[List[List[float]]] = None


class EstimatedSavingsModel(BaseModel):
    distance: float
    time: float
    cost: float
    emissions: float


class OptimizedRouteResponse(BaseModel):
    id: str
    collector_id: str
    vehicle_type: str
    waypoints: List[LocationModel]
    segments: List[RouteSegmentModel]
    total_distance_km: float
    total_duration_hr: float
    total_fuel_cost: float
    total_emissions_kg: float
    estimated_savings: EstimatedSavingsModel
    efficiency: float
    full_polyline: List[List[float]]
    fallback: bool
    created_at: str


class ShortestPathRequest(BaseModel):
    from_lat: float
    from_lng: float
    to_lat: float
    to_lng: float


class PathNodeModel(BaseModel):
    id: str
    lat: float
    lng: float
    name: str
    kind: str
    congestion_weight: float


class ShortestPathResponse(BaseModel):
    path: List[PathNodeModel]
    total_distance_km: float
    total_time_min: float
    polyline: List[List[float]]
    instructions: List[str]
    source: str


class CollectionTimeRequest(BaseModel):
    location: LocationModel


class CollectionTimeResponse(BaseModel):
    best_time: str
    traffic_score: float
    weather_score: float
    time_score: float
    overall_score: float
