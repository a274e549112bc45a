"""HTTP client for the OpenRouteService directions API."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

import httpx

from ...config import settings
from ...errors import ExternalServiceError, RateLimitedError
from ...models.domain import Location, VehicleType
from .models import LatLng, RouteData

logger = logging.getLogger(__name__)

POLYLINE_PRECISION = 1e5


class RoutingProvider(Protocol):
    async def fetch_route(
        self, origin: Location, destination: Location, vehicle_type: VehicleType
    ) -> RouteData: ...


def profile_for(vehicle_type: VehicleType | str) -> str:
    vehicle = vehicle_type.value if isinstance(vehicle_type, VehicleType) else str(vehicle_type)
    return "cycling-regular" if vehicle == VehicleType.BIKE.value else "driving-car"


class OpenRouteServiceClient:
    """Fetches road distance, duration and geometry for a single directed hop.

    Raises ``RateLimitedError`` on HTTP 429 and ``ExternalServiceError`` for any
    other failure; retry and fallback policy belong to the caller.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key or settings.ors_api_key
        if not self.api_key:
            raise ValueError("OpenRouteService API key is not configured.")
        self.base_url = (base_url or settings.ors_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.routing_timeout_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=5.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def fetch_route(
        self, origin: Location, destination: Location, vehicle_type: VehicleType
    ) -> RouteData:
        url = f"{self.base_url}/directions/{profile_for(vehicle_type)}"
        payload = {
            "coordinates": [[origin.lng, origin.lat], [destination.lng, destination.lat]],
            "geometry": True,
            "instructions": False,
            "elevation": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json; charset=utf-8",
            "Accept": "application/json, application/geo+json",
        }
        logger.debug(
            f"Routing request {origin.lat:.4f},{origin.lng:.4f} -> {destination.lat:.4f},{destination.lng:.4f}"
        )
        try:
            response = await self._get_client().post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(f"OpenRouteService request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"OpenRouteService request failed: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitedError("OpenRouteService rate limit exceeded")
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"OpenRouteService returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalServiceError("OpenRouteService returned invalid JSON") from exc
        return parse_directions_response(data, origin, destination)


def parse_directions_response(data: Any, origin: Location, destination: Location) -> RouteData:
    """Convert a directions payload into ``RouteData`` (km, hours, [(lat, lng)])."""
    try:
        route = data["routes"][0]
        summary = route["summary"]
        distance_km = float(summary["distance"]) / 1000.0
        duration_hr = float(summary["duration"]) / 3600.0
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise ExternalServiceError("OpenRouteService response missing route summary") from exc
    if distance_km <= 0 or duration_hr <= 0:
        raise ExternalServiceError("OpenRouteService returned an empty route")

    polyline = _extract_geometry(route.get("geometry"))
    if not polyline:
        polyline = [origin.coordinates, destination.coordinates]
    return RouteData(distance_km=distance_km, duration_hr=duration_hr, polyline=polyline)


def _extract_geometry(geometry: Any) -> list[LatLng]:
    if isinstance(geometry, str):
        try:
            return decode_polyline(geometry)
        except (IndexError, ValueError):
            logger.warning("Failed to decode route polyline, using straight line")
            return []
    if isinstance(geometry, dict) and isinstance(geometry.get("coordinates"), list):
        # GeoJSON order is [lng, lat]
        return [(float(point[1]), float(point[0])) for point in geometry["coordinates"] if len(point) >= 2]
    return []


def _decode_value(polyline: str, index: int) -> tuple[int, int]:
    """Read one zig-zag encoded delta starting at ``index``; return it and the next index."""
    shift = 0
    result = 0
    while True:
        chunk = ord(polyline[index]) - 63
        index += 1
        result |= (chunk & 0x1F) << shift
        shift += 5
        if chunk < 0x20:
            break
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode_polyline(polyline: str) -> list[LatLng]:
    """Decode an encoded polyline (precision 1e5) into (lat, lng) pairs.

    Raises ``IndexError`` when the string ends in the middle of a value.
    """
    coordinates: list[LatLng] = []
    index = 0
    lat_e5 = 0
    lng_e5 = 0
    while index < len(polyline):
        delta_lat, index = _decode_value(polyline, index)
        delta_lng, index = _decode_value(polyline, index)
        lat_e5 += delta_lat
        lng_e5 += delta_lng
        coordinates.append((lat_e5 / POLYLINE_PRECISION, lng_e5 / POLYLINE_PRECISION))
    return coordinates


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1f)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode_polyline(coordinates: Sequence[tuple[float, float]]) -> str:
    """Encode (lat, lon) coordinates with the same algorithm ``decode_polyline`` reads."""
    encoded = []
    prev_lat = 0
    prev_lon = 0
    for lat, lon in coordinates:
        lat_e5 = int(round(lat * POLYLINE_PRECISION))
        lon_e5 = int(round(lon * POLYLINE_PRECISION))
        encoded.append(_encode_value(lat_e5 - prev_lat))
        encoded.append(_encode_value(lon_e5 - prev_lon))
        prev_lat, prev_lon = lat_e5, lon_e5
    return "".join(encoded)
