"""Traffic and weather snapshots used to scale travel times."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Callable, Protocol, Sequence

import httpx

from ...config import Settings, settings as default_settings
from ...errors import ExternalServiceError, RateLimitedError
from ...models.domain import Location, TrafficInfo, WeatherInfo

logger = logging.getLogger(__name__)

TROPICAL_LATITUDE = 23.5
NORTHERN_LATITUDE = 30.0
WINTER_MONTHS = (12, 1, 2, 3)
SUMMER_MONTHS = (6, 7, 8, 9)
RUSH_HOURS = (range(7, 10), range(17, 20))


class WeatherProvider(Protocol):
    async def fetch_weather(self, location: Location) -> WeatherInfo: ...


class TrafficProvider(Protocol):
    async def fetch_congestion(self, locations: Sequence[Location]) -> TrafficInfo: ...


def latitude_band(lat: float) -> str:
    if abs(lat) < TROPICAL_LATITUDE:
        return "tropical"
    if lat > NORTHERN_LATITUDE:
        return "northern"
    return "temperate"


def seasonal_weather(location: Location, now: datetime) -> WeatherInfo:
    """Estimate weather from season, hour of day and latitude band.

    The estimate is deterministic for a given (month, hour, band) so repeated
    calls within the same hour agree with each other.
    """
    band = latitude_band(location.lat)
    month = now.month
    hour = now.hour
    rng = random.Random(f"weather:{month}:{hour}:{band}")

    condition = "clear"
    if band == "tropical":
        temperature = 25 + rng.random() * 8
        if rng.random() > 0.7:
            condition = "rain"
        precipitation = 2 + rng.random() * 8 if condition == "rain" else 0.0
    elif band == "northern" and month in WINTER_MONTHS:
        temperature = -5 + rng.random() * 15
        if rng.random() > 0.6:
            condition = "snow" if temperature < 0 else "rain"
        precipitation = 1 + rng.random() * 4 if condition != "clear" else 0.0
    elif month in SUMMER_MONTHS:
        temperature = 20 + rng.random() * 15
        if rng.random() > 0.8:
            condition = "rain"
        precipitation = 1 + rng.random() * 5 if condition == "rain" else 0.0
    else:
        temperature = 10 + rng.random() * 20
        if rng.random() > 0.75:
            condition = "rain"
        precipitation = 0.5 + rng.random() * 3 if condition == "rain" else 0.0

    if hour < 6 or hour > 20:
        temperature -= 3
    elif 12 <= hour <= 16:
        temperature += 2

    wind = 3 + rng.random() * 7
    visibility = 10.0
    if condition in ("rain", "snow"):
        wind += 2
        visibility = 3 + rng.random() * 5

    return WeatherInfo(
        condition=condition,
        temperature_c=round(temperature, 1),
        precipitation_mm=round(precipitation, 1),
        wind_kph=round(wind, 1),
        visibility_km=round(visibility, 1),
        source="seasonal_estimate",
    )


def time_of_day_traffic(now: datetime) -> TrafficInfo:
    is_weekend = now.weekday() >= 5
    is_rush_hour = any(now.hour in hours for hours in RUSH_HOURS)
    if is_rush_hour and not is_weekend:
        return TrafficInfo(congestion=0.7, average_speed_kph=25.0, source="time_of_day")
    if is_weekend:
        return TrafficInfo(congestion=0.2, average_speed_kph=55.0, source="time_of_day")
    return TrafficInfo(congestion=0.4, average_speed_kph=40.0, source="time_of_day")


def _raise_for_status(response: httpx.Response, service: str) -> None:
    if response.status_code == 429:
        raise RateLimitedError(f"{service} rate limit exceeded")
    if response.status_code >= 400:
        raise ExternalServiceError(f"{service} returned HTTP {response.status_code}", status_code=response.status_code)


class WeatherClient:
    """OpenWeatherMap current-conditions client."""

    def __init__(self, client: httpx.AsyncClient, api_key: str, url: str | None = None) -> None:
        self._client = client
        self.api_key = api_key
        self.url = url or default_settings.openweather_url

    async def fetch_weather(self, location: Location) -> WeatherInfo:
        params = {"lat": location.lat, "lon": location.lng, "appid": self.api_key, "units": "metric"}
        try:
            response = await self._client.get(self.url, params=params)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"OpenWeatherMap request failed: {exc}") from exc
        _raise_for_status(response, "OpenWeatherMap")
        try:
            data = response.json()
            precipitation = (data.get("rain") or {}).get("1h") or (data.get("snow") or {}).get("1h") or 0.0
            return WeatherInfo(
                condition=str(data["weather"][0]["main"]).lower(),
                temperature_c=float(data["main"]["temp"]),
                precipitation_mm=float(precipitation),
                wind_kph=float(data["wind"]["speed"]) * 3.6,
                visibility_km=float(data.get("visibility", 10000)) / 1000.0,
                source="openweathermap",
            )
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ExternalServiceError("OpenWeatherMap response was malformed") from exc


class TrafficClient:
    """Estimates congestion from major-road density around the pickups (Overpass API)."""

    def __init__(self, client: httpx.AsyncClient, url: str | None = None, radius_m: int | None = None) -> None:
        self._client = client
        self.url = url or default_settings.overpass_url
        self.radius_m = radius_m or default_settings.overpass_radius_m

    def _query(self, lat: float, lng: float) -> str:
        return (
            "[out:json][timeout:25];"
            f'(way["highway"~"^(primary|secondary|tertiary|trunk|motorway)$"](around:{self.radius_m},{lat},{lng}););'
            "out tags;"
        )

    async def fetch_congestion(self, locations: Sequence[Location]) -> TrafficInfo:
        if not locations:
            raise ExternalServiceError("No locations to query traffic for")
        center_lat = sum(loc.lat for loc in locations) / len(locations)
        center_lng = sum(loc.lng for loc in locations) / len(locations)
        try:
            response = await self._client.post(
                self.url,
                content=self._query(center_lat, center_lng),
                headers={"Content-Type": "text/plain"},
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Overpass request failed: {exc}") from exc
        _raise_for_status(response, "Overpass")
        try:
            elements = response.json().get("elements") or []
        except (ValueError, AttributeError) as exc:
            raise ExternalServiceError("Overpass response was malformed") from exc
        return congestion_from_roads(elements)


def congestion_from_roads(elements: list[dict[str, Any]]) -> TrafficInfo:
    road_types = [(element.get("tags") or {}).get("highway") for element in elements]
    motorways = sum(1 for road in road_types if road == "motorway")
    primaries = sum(1 for road in road_types if road == "primary")
    total = len(road_types)
    congestion = min(0.9, (motorways + primaries * 0.7) / max(total, 1))
    average_speed = 60 - congestion * 30 if total > 0 else 45.0
    return TrafficInfo(congestion=congestion, average_speed_kph=average_speed, source="overpass")


class ConditionsService:
    """Fetches traffic and weather, falling back to local estimates on any failure."""

    def __init__(
        self,
        weather_provider: WeatherProvider | None = None,
        traffic_provider: TrafficProvider | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        settings: Settings | None = None,
    ) -> None:
        config = settings or default_settings
        self.weather_provider = weather_provider
        self.traffic_provider = traffic_provider
        self.weather_timeout = config.weather_timeout_seconds
        self.traffic_timeout = config.traffic_timeout_seconds
        self._clock = clock

    async def traffic(self, locations: Sequence[Location]) -> TrafficInfo:
        if self.traffic_provider is not None and locations:
            try:
                info = await asyncio.wait_for(
                    self.traffic_provider.fetch_congestion(locations), timeout=self.traffic_timeout
                )
                logger.info(
                    f"Traffic data: {info.congestion * 100:.1f}% congestion, {info.average_speed_kph:.0f} km/h"
                )
                return info
            except asyncio.TimeoutError:
                logger.warning("Traffic provider timed out, using time-of-day estimate")
            except Exception as exc:
                logger.warning(f"Traffic data unavailable ({exc}), using time-of-day estimate")
        return time_of_day_traffic(self._clock())

    async def weather(self, location: Location) -> WeatherInfo:
        if self.weather_provider is not None:
            try:
                info = await asyncio.wait_for(
                    self.weather_provider.fetch_weather(location), timeout=self.weather_timeout
                )
                logger.info(f"Weather data: {info.condition}, {info.temperature_c:.1f}C")
                return info
            except asyncio.TimeoutError:
                logger.warning("Weather provider timed out, using seasonal estimate")
            except Exception as exc:
                logger.warning(f"Weather data unavailable ({exc}), using seasonal estimate")
        return seasonal_weather(location, self._clock())
