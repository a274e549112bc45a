"""Domain models for pickup locations and road conditions."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class VehicleType(str, Enum):
    TRUCK = "truck"
    VAN = "van"
    BIKE = "bike"


@dataclass(frozen=True, slots=True)
class Location:
    """A point the collector starts from or has to visit.

    Priority 1 is the most urgent pickup, 3 the least.
    """

    lat: float
    lng: float
    address: Optional[str] = None
    waste_type: Optional[str] = None
    priority: int = 3
    estimated_weight: Optional[float] = None

    @property
    def coordinates(self) -> tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(frozen=True, slots=True)
class TrafficInfo:
    """Congestion snapshot for the collection area."""

    congestion: float
    average_speed_kph: float
    source: str = "estimate"


@dataclass(frozen=True, slots=True)
class WeatherInfo:
    """Weather snapshot at the start location."""

    condition: str
    temperature_c: float
    precipitation_mm: float
    wind_kph: float
    visibility_km: float
    source: str = "estimate"
