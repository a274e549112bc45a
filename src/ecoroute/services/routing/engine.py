"""Route optimization orchestration.

``OptimizerEngine`` owns every piece of shared mutable state used while
optimizing: the route data cache, the distance memo, the fetch queue, the
provider clients and the random generator. One engine lives for the lifetime
of the application (see ``ecoroute.main``); tests build their own.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Sequence

import httpx

from ...config import Settings, settings as default_settings
from ...errors import ValidationError
from ...models.domain import Location, TrafficInfo, VehicleType, WeatherInfo
from ...persistence.filesystem import FileStorage
from ..geospatial import haversine_km, is_valid_coordinate
from . import costs
from .cache import DistanceMemo, RouteDataCache, distance_memo_key, route_cache_key
from .conditions import ConditionsService, TrafficClient, TrafficProvider, WeatherClient, WeatherProvider
from .fetch_queue import FetchQueue
from .genetic import GeneticRouteOptimizer
from .models import EstimatedSavings, LatLng, OptimizedRoute, PathResult, RouteData, RouteSegment
from .ors_client import OpenRouteServiceClient, RoutingProvider
from .segments import SegmentCalculator
from .shortest_path import ShortestPathEngine

logger = logging.getLogger(__name__)

# Degrees; consecutive segment polylines further apart than this are bridged.
POLYLINE_GAP_DEGREES = 0.001
TIME_SAVINGS_FACTOR = 0.8
EMISSION_SAVINGS_FACTOR = 0.9
FALLBACK_EFFICIENCY = 50.0


def validate_request(
    pickups: Sequence[Location], start: Location, vehicle_type: VehicleType | str
) -> VehicleType:
    if not pickups:
        raise ValidationError("At least one pickup location is required")
    try:
        vehicle = VehicleType(vehicle_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown vehicle type: {vehicle_type}") from exc
    for location in (start, *pickups):
        if not is_valid_coordinate(location.lat, location.lng):
            raise ValidationError(f"Invalid coordinates: {location.lat}, {location.lng}")
        if location.priority not in (1, 2, 3):
            raise ValidationError(f"Priority must be 1, 2 or 3 (got {location.priority})")
    return vehicle


def stitch_polyline(segments: Sequence[RouteSegment]) -> list[LatLng]:
    """Join segment geometries into one line without doubling shared endpoints."""
    full: list[LatLng] = []
    for segment in segments:
        points = list(segment.polyline) if segment.polyline else [
            segment.origin.coordinates,
            segment.destination.coordinates,
        ]
        if not full:
            full.extend(points)
            continue
        last_lat, last_lng = full[-1]
        first_lat, first_lng = points[0]
        gap = math.hypot(last_lat - first_lat, last_lng - first_lng)
        full.extend(points if gap > POLYLINE_GAP_DEGREES else points[1:])
    return full


def _percent_saved(baseline: float, optimized: float) -> float:
    if baseline <= 0:
        return 0.0
    return max(0.0, (baseline - optimized) / baseline * 100)


def estimate_savings(
    segments: Sequence[RouteSegment], baseline: Sequence[RouteSegment]
) -> tuple[EstimatedSavings, float]:
    """Savings versus visiting the pickups in the order they were given."""
    distance = _percent_saved(
        sum(segment.distance_km for segment in baseline), sum(segment.distance_km for segment in segments)
    )
    cost = _percent_saved(
        sum(segment.fuel_cost for segment in baseline), sum(segment.fuel_cost for segment in segments)
    )
    savings = EstimatedSavings(
        distance=distance,
        time=distance * TIME_SAVINGS_FACTOR,
        cost=cost,
        emissions=cost * EMISSION_SAVINGS_FACTOR,
    )
    return savings, min(100.0, (distance + cost) / 2)


def assemble_route(
    collector_id: str,
    vehicle_type: VehicleType,
    waypoints: list[Location],
    segments: list[RouteSegment],
    baseline: Sequence[RouteSegment],
) -> OptimizedRoute:
    savings, efficiency = estimate_savings(segments, baseline)
    return OptimizedRoute(
        id=f"route-{uuid.uuid4().hex[:12]}",
        collector_id=collector_id,
        vehicle_type=vehicle_type,
        waypoints=waypoints,
        segments=segments,
        total_distance_km=sum(segment.distance_km for segment in segments),
        total_duration_hr=sum(segment.duration_hr for segment in segments),
        total_fuel_cost=sum(segment.fuel_cost for segment in segments),
        total_emissions_kg=sum(segment.emissions_kg for segment in segments),
        estimated_savings=savings,
        efficiency=efficiency,
        full_polyline=stitch_polyline(segments),
    )


class OptimizerEngine:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        routing_provider: RoutingProvider | None = None,
        weather_provider: WeatherProvider | None = None,
        traffic_provider: TrafficProvider | None = None,
        storage: FileStorage | None = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = config = settings or default_settings
        self._http: httpx.AsyncClient | None = None

        if routing_provider is None and config.ors_api_key:
            routing_provider = OpenRouteServiceClient(
                api_key=config.ors_api_key,
                base_url=config.ors_base_url,
                timeout=config.routing_timeout_seconds,
                client=self._http_client(),
            )
        if weather_provider is None and config.openweather_api_key:
            weather_provider = WeatherClient(self._http_client(), config.openweather_api_key, config.openweather_url)
        if traffic_provider is None and config.overpass_url:
            traffic_provider = TrafficClient(self._http_client(), config.overpass_url, config.overpass_radius_m)

        self.routing_provider = routing_provider
        if storage is None and config.persistent_cache_enabled:
            storage = FileStorage(config.cache_dir)
        self.cache = RouteDataCache(storage, settings=config)
        self.memo = DistanceMemo(config.distance_memo_max_entries, config.distance_memo_keep_entries)
        self.queue = FetchQueue(settings=config)
        self.conditions = ConditionsService(weather_provider, traffic_provider, clock=clock, settings=config)
        self.rng = rng or random.Random(config.random_seed)
        self.segments = SegmentCalculator(self.estimate_distance, self.route_data, settings=config)
        self.optimizer = GeneticRouteOptimizer(
            self.segments, rng=self.rng, estimate_distance=self.estimate_distance, settings=config
        )
        self.paths = ShortestPathEngine(self.route_data, settings=config)
        self._clock = clock

        self._routes: OrderedDict[str, OptimizedRoute] = OrderedDict()
        self._sweeper: asyncio.Task | None = None
        self.routes_optimized = 0
        self.fallback_routes = 0
        self.average_cost_savings = 0.0
        self.total_cost_reduction = 0.0
        self.total_emission_reduction = 0.0

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.routing_timeout_seconds, connect=5.0)
            )
        return self._http

    # Lifecycle

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cache_sweep_interval_seconds)
            await self.sweep()

    async def sweep(self) -> int:
        removed = await self.cache.asweep() + self.memo.trim()
        if removed:
            logger.info(f"Cleaned {removed} expired cache entries")
        return removed

    async def aclose(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        await self.queue.aclose()
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # Distance and route data

    def estimate_distance(self, origin: Location, destination: Location) -> float:
        key = distance_memo_key(origin, destination)
        distance = self.memo.get(key)
        if distance is None:
            distance = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
            self.memo.put(key, distance)
        return distance

    async def route_data(
        self,
        origin: Location,
        destination: Location,
        vehicle_type: VehicleType,
        cancel_event: asyncio.Event | None = None,
    ) -> RouteData | None:
        """Cached road data for one hop, fetched through the queue on a miss."""
        key = route_cache_key(origin, destination, vehicle_type)
        cached = await self.cache.aget(key)
        if cached is not None:
            return cached
        provider = self.routing_provider
        if provider is None or (cancel_event is not None and cancel_event.is_set()):
            return None

        result = await self.queue.submit(
            lambda: provider.fetch_route(origin, destination, vehicle_type),
            cancel_event=cancel_event,
            label=key,
        )
        if result is not None:
            await self.cache.aput(key, result)
        return result

    async def prewarm(
        self,
        locations: Sequence[Location],
        vehicle_type: VehicleType,
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """Fetch road data for every worthwhile directed pair, longest first."""
        if self.routing_provider is None:
            return 0
        pairs = []
        for i, origin in enumerate(locations):
            for j, destination in enumerate(locations):
                if i == j:
                    continue
                distance = self.estimate_distance(origin, destination)
                if distance > self.settings.live_routing_min_km:
                    pairs.append((distance, origin, destination))
        pairs.sort(key=lambda item: item[0], reverse=True)

        batch_size = self.settings.prewarm_batch_size
        fetched = 0
        for offset in range(0, len(pairs), batch_size):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Pre-warm cancelled")
                break
            if offset:
                await asyncio.sleep(self.settings.prewarm_batch_delay_seconds)
            batch = pairs[offset : offset + batch_size]
            results = await asyncio.gather(
                *(self.route_data(origin, destination, vehicle_type, cancel_event) for _, origin, destination in batch)
            )
            fetched += sum(1 for result in results if result is not None)
        logger.info(f"Pre-warmed {fetched}/{len(pairs)} route segments")
        return fetched

    # Optimization

    async def optimize_route(
        self,
        collector_id: str,
        pickups: Sequence[Location],
        start: Location,
        vehicle_type: VehicleType | str = VehicleType.TRUCK,
        cancel_event: asyncio.Event | None = None,
    ) -> OptimizedRoute:
        vehicle = validate_request(pickups, start, vehicle_type)
        pickups = list(pickups)
        if cancel_event is None:
            cancel_event = asyncio.Event()
        logger.info(f"Optimizing route for {len(pickups)} locations ({vehicle.value})")

        try:
            traffic = await self.conditions.traffic(pickups)
            weather = await self.conditions.weather(start)
            await self.prewarm([start, *pickups], vehicle, cancel_event)
            waypoints = await self.optimizer.optimize(pickups, start, traffic, weather, vehicle, cancel_event)
            segments = await self._segments_along(waypoints, traffic, weather, vehicle, cancel_event)
            baseline = await self._segments_along([start, *pickups], traffic, weather, vehicle, cancel_event)
            route = assemble_route(collector_id, vehicle, waypoints, segments, baseline)
        except asyncio.CancelledError:
            cancel_event.set()
            raise
        except Exception:
            logger.exception("Route optimization failed, using fallback route")
            route = self.fallback_route(collector_id, pickups, start, vehicle)
            self.fallback_routes += 1
        else:
            self._record_metrics(route)
            logger.info(
                f"Route optimized: {route.total_distance_km:.2f} km, "
                f"{route.estimated_savings.cost:.1f}% cost reduction"
            )

        self._register(route)
        return route

    async def _segments_along(
        self,
        waypoints: Sequence[Location],
        traffic: TrafficInfo,
        weather: WeatherInfo,
        vehicle: VehicleType,
        cancel_event: asyncio.Event | None,
    ) -> list[RouteSegment]:
        return list(
            await asyncio.gather(
                *(
                    self.segments.compute_segment(origin, destination, traffic, weather, vehicle, cancel_event)
                    for origin, destination in zip(waypoints, waypoints[1:])
                )
            )
        )

    def fallback_route(
        self,
        collector_id: str,
        pickups: Sequence[Location],
        start: Location,
        vehicle_type: VehicleType,
    ) -> OptimizedRoute:
        """Input-order route built from distance primitives only."""
        waypoints = [start, *pickups]
        segments = []
        for origin, destination in zip(waypoints, waypoints[1:]):
            distance = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
            litres = costs.fuel_consumption_l(distance, vehicle_type)
            segments.append(
                RouteSegment(
                    origin=origin,
                    destination=destination,
                    distance_km=distance,
                    duration_hr=distance / self.settings.fallback_speed_kph,
                    fuel_cost=costs.fuel_cost(litres),
                    emissions_kg=costs.emissions_kg(litres),
                )
            )
        return OptimizedRoute(
            id=f"fallback-route-{uuid.uuid4().hex[:12]}",
            collector_id=collector_id,
            vehicle_type=vehicle_type,
            waypoints=waypoints,
            segments=segments,
            total_distance_km=sum(segment.distance_km for segment in segments),
            total_duration_hr=sum(segment.duration_hr for segment in segments),
            total_fuel_cost=sum(segment.fuel_cost for segment in segments),
            total_emissions_kg=sum(segment.emissions_kg for segment in segments),
            estimated_savings=EstimatedSavings(),
            efficiency=FALLBACK_EFFICIENCY,
            full_polyline=[location.coordinates for location in waypoints],
            fallback=True,
        )

    async def shortest_path(
        self,
        from_lat: float,
        from_lng: float,
        to_lat: float,
        to_lng: float,
        cancel_event: asyncio.Event | None = None,
    ) -> PathResult:
        return await self.paths.find_path(from_lat, from_lng, to_lat, to_lng, cancel_event)

    # Registry and reporting

    def _register(self, route: OptimizedRoute) -> None:
        self._routes[route.id] = route
        while len(self._routes) > self.settings.route_registry_size:
            self._routes.popitem(last=False)

    def get_route(self, route_id: str) -> OptimizedRoute | None:
        return self._routes.get(route_id)

    def _record_metrics(self, route: OptimizedRoute) -> None:
        self.routes_optimized += 1
        self.average_cost_savings += (route.estimated_savings.cost - self.average_cost_savings) / self.routes_optimized
        self.total_cost_reduction += route.estimated_savings.cost
        self.total_emission_reduction += route.estimated_savings.emissions

    def performance_metrics(self) -> dict[str, Any]:
        return {
            "routes_optimized": self.routes_optimized,
            "fallback_routes": self.fallback_routes,
            "average_cost_savings": round(self.average_cost_savings, 2),
            "total_cost_reduction": round(self.total_cost_reduction, 2),
            "total_emission_reduction": round(self.total_emission_reduction, 2),
            "environmental_impact": f"{self.total_emission_reduction:.1f} kg CO2 saved",
            "cache": self.cache.stats(),
            "distance_memo_entries": len(self.memo),
            "queue": self.queue.stats(),
        }

    async def predict_collection_time(self, location: Location) -> dict[str, Any]:
        if not is_valid_coordinate(location.lat, location.lng):
            raise ValidationError(f"Invalid coordinates: {location.lat}, {location.lng}")
        traffic = await self.conditions.traffic([location])
        weather = await self.conditions.weather(location)
        hour = self._clock().hour

        traffic_score = 100 - traffic.congestion * 100
        weather_score = 100.0 if weather.condition == "clear" else 70.0
        time_score = 100.0 if 9 <= hour <= 16 else 60.0
        overall = (traffic_score + weather_score + time_score) / 3
        return {
            "best_time": "Now" if overall > 80 else "Later today",
            "traffic_score": round(traffic_score, 1),
            "weather_score": weather_score,
            "time_score": time_score,
            "overall_score": round(overall, 1),
        }
