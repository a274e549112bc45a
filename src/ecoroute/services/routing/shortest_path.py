"""Point-to-point path preview.

Asks the routing provider for a real road route first. When none is available
the path is searched on a small synthetic junction grid laid over the padded
bounding box of the two endpoints.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import random
from typing import Sequence

from ...config import Settings, settings as default_settings
from ...errors import ValidationError
from ...models.domain import Location, VehicleType
from ..geospatial import bearing_degrees, compass_direction, haversine_km, is_valid_coordinate
from .models import GraphNode, LatLng, PathResult, RouteData, RouteLookup

logger = logging.getLogger(__name__)

MIN_CONGESTION_WEIGHT = 0.7
MAX_CONGESTION_WEIGHT = 1.0
LIVE_INSTRUCTION_STEPS = 10


def _node_distance(a: GraphNode, b: GraphNode) -> float:
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def build_preview_graph(
    start: LatLng,
    end: LatLng,
    *,
    padding: float,
    grid_size: int,
    seed: int,
) -> list[GraphNode]:
    """Start node, ``grid_size``² junctions, then the destination node."""
    rng = random.Random(seed)
    min_lat = min(start[0], end[0]) - padding
    max_lat = max(start[0], end[0]) + padding
    min_lng = min(start[1], end[1]) - padding
    max_lng = max(start[1], end[1]) + padding
    lat_step = (max_lat - min_lat) / (grid_size - 1)
    lng_step = (max_lng - min_lng) / (grid_size - 1)

    nodes = [GraphNode(id="start", lat=start[0], lng=start[1], name="Start", kind="start")]
    for row in range(grid_size):
        for col in range(grid_size):
            nodes.append(
                GraphNode(
                    id=f"junction_{row}_{col}",
                    lat=min_lat + row * lat_step,
                    lng=min_lng + col * lng_step,
                    name=f"Junction {row}-{col}",
                    kind="junction",
                    congestion_weight=rng.uniform(MIN_CONGESTION_WEIGHT, MAX_CONGESTION_WEIGHT),
                )
            )
    nodes.append(GraphNode(id="end", lat=end[0], lng=end[1], name="Destination", kind="end"))
    return nodes


def dijkstra(nodes: Sequence[GraphNode], source: int, target: int, max_iterations: int | None = None) -> list[int]:
    """Cheapest node sequence from ``source`` to ``target``.

    Every pair of nodes is connected; entering node ``v`` costs
    ``haversine(u, v) * v.congestion_weight``. Returns an empty list when the
    iteration bound is hit before ``target`` is settled.
    """
    if max_iterations is None:
        max_iterations = len(nodes) * len(nodes)
    distances = {source: 0.0}
    previous: dict[int, int] = {}
    settled: set[int] = set()
    heap = [(0.0, source)]
    iterations = 0

    while heap and iterations < max_iterations:
        iterations += 1
        current_distance, current = heapq.heappop(heap)
        if current in settled:
            continue
        settled.add(current)
        if current == target:
            break
        for neighbour, node in enumerate(nodes):
            if neighbour in settled:
                continue
            weight = _node_distance(nodes[current], node) * node.congestion_weight
            candidate = current_distance + weight
            if candidate < distances.get(neighbour, float("inf")):
                distances[neighbour] = candidate
                previous[neighbour] = current
                heapq.heappush(heap, (candidate, neighbour))

    if target not in settled:
        return []
    path = [target]
    while path[-1] != source:
        path.append(previous[path[-1]])
    path.reverse()
    return path


class ShortestPathEngine:
    def __init__(self, route_lookup: RouteLookup | None = None, *, settings: Settings | None = None) -> None:
        config = settings or default_settings
        self._route_lookup = route_lookup
        self.padding = config.graph_padding_degrees
        self.grid_size = config.graph_grid_size
        self.seed = config.graph_seed
        self.speed_kph = config.preview_speed_kph

    async def find_path(
        self,
        from_lat: float,
        from_lng: float,
        to_lat: float,
        to_lng: float,
        cancel_event: asyncio.Event | None = None,
    ) -> PathResult:
        if not is_valid_coordinate(from_lat, from_lng) or not is_valid_coordinate(to_lat, to_lng):
            raise ValidationError("Path endpoints must be valid latitude/longitude pairs")

        origin = Location(lat=from_lat, lng=from_lng)
        destination = Location(lat=to_lat, lng=to_lng)
        if self._route_lookup is not None:
            live = await self._route_lookup(origin, destination, VehicleType.TRUCK, cancel_event)
            if live is not None and len(live.polyline) > 2:
                logger.info(f"Using road route for path preview ({live.distance_km:.2f} km)")
                return self._live_result(origin, destination, live)

        return self.synthetic_path(from_lat, from_lng, to_lat, to_lng)

    def synthetic_path(self, from_lat: float, from_lng: float, to_lat: float, to_lng: float) -> PathResult:
        nodes = build_preview_graph(
            (from_lat, from_lng),
            (to_lat, to_lng),
            padding=self.padding,
            grid_size=self.grid_size,
            seed=self.seed,
        )
        indices = dijkstra(nodes, 0, len(nodes) - 1)
        if not indices:
            logger.warning("No path found in preview graph, using direct line")
            return self._path_result([nodes[0], nodes[-1]], source="direct")
        return self._path_result([nodes[index] for index in indices], source="synthetic")

    def _path_result(self, path: list[GraphNode], *, source: str) -> PathResult:
        total = sum(_node_distance(a, b) for a, b in zip(path, path[1:]))
        instructions = []
        for a, b in zip(path, path[1:]):
            direction = compass_direction(bearing_degrees(a.lat, a.lng, b.lat, b.lng))
            instructions.append(f"Head {direction} from {a.name} toward {b.name} ({_node_distance(a, b):.2f} km)")
        instructions.append("Arrive at destination")
        return PathResult(
            path=path,
            total_distance_km=total,
            total_time_min=total / self.speed_kph * 60,
            polyline=[(node.lat, node.lng) for node in path],
            instructions=instructions,
            source=source,
        )

    def _live_result(self, origin: Location, destination: Location, live: RouteData) -> PathResult:
        path = [
            GraphNode(id="start", lat=origin.lat, lng=origin.lng, name="Start", kind="start"),
            GraphNode(id="end", lat=destination.lat, lng=destination.lng, name="Destination", kind="end"),
        ]
        return PathResult(
            path=path,
            total_distance_km=live.distance_km,
            total_time_min=live.duration_hr * 60,
            polyline=list(live.polyline),
            instructions=polyline_instructions(live.polyline),
            source="live",
        )


def polyline_instructions(polyline: Sequence[LatLng], steps: int = LIVE_INSTRUCTION_STEPS) -> list[str]:
    """Coarse heading changes sampled along a road polyline."""
    stride = max(1, (len(polyline) - 1) // steps)
    checkpoints = list(polyline[::stride])
    if checkpoints[-1] != polyline[-1]:
        checkpoints.append(polyline[-1])

    instructions = []
    for index, (a, b) in enumerate(zip(checkpoints, checkpoints[1:])):
        distance = haversine_km(a[0], a[1], b[0], b[1])
        if distance <= 0:
            continue
        direction = compass_direction(bearing_degrees(a[0], a[1], b[0], b[1]))
        verb = "Head" if index == 0 else "Continue"
        instructions.append(f"{verb} {direction} for {distance:.2f} km")
    instructions.append("Arrive at destination")
    return instructions
