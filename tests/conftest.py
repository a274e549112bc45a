import asyncio
from datetime import datetime

import pytest

from ecoroute.config import Settings
from ecoroute.errors import ExternalServiceError, RateLimitedError
from ecoroute.models.domain import Location, TrafficInfo, WeatherInfo
from ecoroute.services.geospatial import haversine_km
from ecoroute.services.routing.models import RouteData

# A Wednesday, outside rush hour.
WEDNESDAY_LATE_MORNING = datetime(2024, 7, 10, 11, 0)


class FakeRouter:
    """Routing provider that answers with 1.2x the haversine distance at 50 km/h."""

    def __init__(self, *, rate_limited_calls: int = 0, fail: bool = False, delay: float = 0.0):
        self.calls = []
        self.rate_limited_calls = rate_limited_calls
        self.fail = fail
        self.delay = delay
        self.in_flight = 0
        self.peak_in_flight = 0

    async def fetch_route(self, origin, destination, vehicle_type):
        self.calls.append((origin, destination, vehicle_type))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.rate_limited_calls > 0:
                self.rate_limited_calls -= 1
                raise RateLimitedError()
            if self.fail:
                raise ExternalServiceError("routing backend unavailable", status_code=503)
            distance = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng) * 1.2
            midpoint = ((origin.lat + destination.lat) / 2, (origin.lng + destination.lng) / 2)
            return RouteData(
                distance_km=distance,
                duration_hr=distance / 50.0,
                polyline=[origin.coordinates, midpoint, destination.coordinates],
            )
        finally:
            self.in_flight -= 1


class StaticWeather:
    def __init__(self, condition: str = "clear"):
        self.condition = condition

    async def fetch_weather(self, location):
        return WeatherInfo(
            condition=self.condition,
            temperature_c=21.0,
            precipitation_mm=0.0,
            wind_kph=8.0,
            visibility_km=10.0,
            source="test",
        )


class StaticTraffic:
    def __init__(self, congestion: float = 0.1, speed: float = 50.0):
        self.congestion = congestion
        self.speed = speed

    async def fetch_congestion(self, locations):
        return TrafficInfo(congestion=self.congestion, average_speed_kph=self.speed, source="test")


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        data_root=tmp_path,
        ors_api_key=None,
        openweather_api_key=None,
        overpass_url=None,
        dispatch_interval_seconds=0.0,
        rate_limit_retry_delay_seconds=0.0,
        prewarm_batch_delay_seconds=0.0,
        routing_timeout_seconds=1.0,
        persistent_cache_enabled=False,
        random_seed=7,
    )


@pytest.fixture
def fake_router():
    return FakeRouter


@pytest.fixture
def static_weather():
    return StaticWeather


@pytest.fixture
def static_traffic():
    return StaticTraffic


@pytest.fixture
def fixed_clock():
    return lambda: WEDNESDAY_LATE_MORNING


@pytest.fixture
def clear_weather() -> WeatherInfo:
    return WeatherInfo(
        condition="clear", temperature_c=20.0, precipitation_mm=0.0, wind_kph=5.0, visibility_km=10.0
    )


@pytest.fixture
def light_traffic() -> TrafficInfo:
    return TrafficInfo(congestion=0.1, average_speed_kph=40.0)


@pytest.fixture
def depot() -> Location:
    return Location(lat=12.9716, lng=77.5946, address="Depot")


@pytest.fixture
def pickups() -> list[Location]:
    return [
        Location(lat=12.9850, lng=77.6050, address="P1", waste_type="plastic", priority=1),
        Location(lat=12.9600, lng=77.6200, address="P2", waste_type="paper", priority=3),
        Location(lat=12.9780, lng=77.5800, address="P3", waste_type="organic", priority=2),
    ]
