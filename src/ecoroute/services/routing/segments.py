"""Per-hop metrics: distance, adjusted duration, fuel cost and emissions."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ...config import Settings, settings as default_settings
from ...models.domain import Location, TrafficInfo, VehicleType, WeatherInfo
from ..geospatial import haversine_km
from . import costs
from .models import RouteData, RouteLookup, RouteSegment

logger = logging.getLogger(__name__)

DistanceEstimator = Callable[[Location, Location], float]


class SegmentCalculator:
    """Builds ``RouteSegment`` values, preferring live road data over haversine."""

    def __init__(
        self,
        estimate_distance: DistanceEstimator,
        route_lookup: RouteLookup,
        *,
        settings: Settings | None = None,
    ) -> None:
        config = settings or default_settings
        self._estimate_distance = estimate_distance
        self._route_lookup = route_lookup
        self.live_routing_min_km = config.live_routing_min_km
        self.fallback_speed_kph = config.fallback_speed_kph

    async def compute_segment(
        self,
        origin: Location,
        destination: Location,
        traffic: TrafficInfo,
        weather: WeatherInfo,
        vehicle_type: VehicleType,
        cancel_event: asyncio.Event | None = None,
    ) -> RouteSegment:
        try:
            return await self._compute(origin, destination, traffic, weather, vehicle_type, cancel_event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(f"Segment computation failed ({exc}), using haversine estimate")
            return haversine_segment(
                origin, destination, traffic, weather, vehicle_type, fallback_speed_kph=self.fallback_speed_kph
            )

    async def _compute(
        self,
        origin: Location,
        destination: Location,
        traffic: TrafficInfo,
        weather: WeatherInfo,
        vehicle_type: VehicleType,
        cancel_event: asyncio.Event | None,
    ) -> RouteSegment:
        estimated_km = self._estimate_distance(origin, destination)
        live: RouteData | None = None
        if estimated_km > self.live_routing_min_km:
            live = await self._route_lookup(origin, destination, vehicle_type, cancel_event)

        if live is None:
            return haversine_segment(
                origin,
                destination,
                traffic,
                weather,
                vehicle_type,
                estimated_km,
                fallback_speed_kph=self.fallback_speed_kph,
            )

        return build_segment(
            origin,
            destination,
            distance_km=live.distance_km,
            base_duration_hr=live.duration_hr,
            traffic=traffic,
            weather=weather,
            vehicle_type=vehicle_type,
            polyline=tuple(live.polyline) if live.polyline else None,
            live=True,
        )


def haversine_segment(
    origin: Location,
    destination: Location,
    traffic: TrafficInfo,
    weather: WeatherInfo,
    vehicle_type: VehicleType,
    distance_km: float | None = None,
    *,
    fallback_speed_kph: float,
) -> RouteSegment:
    """Straight-line hop at the traffic speed, or ``fallback_speed_kph`` when that is unknown."""
    if distance_km is None:
        distance_km = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
    speed = traffic.average_speed_kph if traffic.average_speed_kph > 0 else fallback_speed_kph
    return build_segment(
        origin,
        destination,
        distance_km=distance_km,
        base_duration_hr=distance_km / speed,
        traffic=traffic,
        weather=weather,
        vehicle_type=vehicle_type,
        polyline=(origin.coordinates, destination.coordinates),
    )


def build_segment(
    origin: Location,
    destination: Location,
    *,
    distance_km: float,
    base_duration_hr: float,
    traffic: TrafficInfo,
    weather: WeatherInfo,
    vehicle_type: VehicleType,
    polyline: tuple | None = None,
    live: bool = False,
) -> RouteSegment:
    duration = (
        base_duration_hr
        * costs.traffic_multiplier(traffic.congestion)
        * costs.weather_multiplier(weather.condition)
    )
    litres = costs.fuel_consumption_l(distance_km, vehicle_type)
    return RouteSegment(
        origin=origin,
        destination=destination,
        distance_km=distance_km,
        duration_hr=duration,
        fuel_cost=costs.fuel_cost(litres),
        emissions_kg=costs.emissions_kg(litres),
        polyline=polyline,
        live=live,
    )
