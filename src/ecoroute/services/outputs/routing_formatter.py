"""Serializers for optimized routes."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict

from ...models.domain import Location
from ..routing.models import OptimizedRoute, RouteSegment


def _location_to_json(location: Location) -> dict:
    return asdict(location)


def _segment_to_json(segment: RouteSegment) -> dict:
    return {
        "from": _location_to_json(segment.origin),
        "to": _location_to_json(segment.destination),
        "distance_km": segment.distance_km,
        "duration_hr": segment.duration_hr,
        "fuel_cost": segment.fuel_cost,
        "emissions_kg": segment.emissions_kg,
        "live": segment.live,
        "polyline": [list(point) for point in segment.polyline] if segment.polyline else None,
    }


def route_to_json(route: OptimizedRoute) -> dict:
    return {
        "id": route.id,
        "collector_id": route.collector_id,
        "vehicle_type": route.vehicle_type.value,
        "waypoints": [_location_to_json(location) for location in route.waypoints],
        "segments": [_segment_to_json(segment) for segment in route.segments],
        "total_distance_km": route.total_distance_km,
        "total_duration_hr": route.total_duration_hr,
        "total_fuel_cost": route.total_fuel_cost,
        "total_emissions_kg": route.total_emissions_kg,
        "estimated_savings": asdict(route.estimated_savings),
        "efficiency": route.efficiency,
        "full_polyline": [list(point) for point in route.full_polyline],
        "fallback": route.fallback,
        "created_at": route.created_at.isoformat(),
    }


def route_to_csv(route: OptimizedRoute) -> str:
    """One row per segment, in visiting order."""
    buffer = io.StringIO()
    fieldnames = [
        "route_id",
        "collector_id",
        "sequence",
        "from_lat",
        "from_lng",
        "to_lat",
        "to_lng",
        "to_address",
        "to_priority",
        "distance_km",
        "duration_hr",
        "fuel_cost",
        "emissions_kg",
        "live",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for sequence, segment in enumerate(route.segments, start=1):
        writer.writerow(
            {
                "route_id": route.id,
                "collector_id": route.collector_id,
                "sequence": sequence,
                "from_lat": segment.origin.lat,
                "from_lng": segment.origin.lng,
                "to_lat": segment.destination.lat,
                "to_lng": segment.destination.lng,
                "to_address": segment.destination.address or "",
                "to_priority": segment.destination.priority,
                "distance_km": round(segment.distance_km, 4),
                "duration_hr": round(segment.duration_hr, 4),
                "fuel_cost": round(segment.fuel_cost, 4),
                "emissions_kg": round(segment.emissions_kg, 4),
                "live": segment.live,
            }
        )
    return buffer.getvalue()
