"""Travel cost primitives shared by the optimizer and the path preview.

Everything here is pure: no I/O, no state.
"""

from __future__ import annotations

from ...models.domain import VehicleType

FUEL_PRICE_PER_LITRE = 1.5
CO2_KG_PER_LITRE = 2.3

# Litres per 100 km
FUEL_RATES_L_PER_100KM: dict[str, float] = {
    VehicleType.TRUCK.value: 35.0,
    VehicleType.VAN.value: 12.0,
    VehicleType.BIKE.value: 5.0,
}
DEFAULT_FUEL_RATE_L_PER_100KM = 20.0

# (upper bound of congestion band, multiplier)
TRAFFIC_BANDS: tuple[tuple[float, float], ...] = (
    (0.25, 1.0),
    (0.5, 1.3),
    (0.75, 1.8),
)
SEVERE_TRAFFIC_MULTIPLIER = 2.5

WEATHER_MULTIPLIERS: dict[str, float] = {
    "clear": 1.0,
    "rain": 1.2,
    "snow": 1.5,
    "fog": 1.3,
}

# Fitness weights
DISTANCE_WEIGHT = 0.4
TIME_WEIGHT = 0.3
FUEL_WEIGHT = 0.2
EMISSION_WEIGHT = 0.1


def traffic_multiplier(congestion: float) -> float:
    for upper, multiplier in TRAFFIC_BANDS:
        if congestion < upper:
            return multiplier
    return SEVERE_TRAFFIC_MULTIPLIER


def weather_multiplier(condition: str | None) -> float:
    if not condition:
        return 1.0
    return WEATHER_MULTIPLIERS.get(condition.strip().lower(), 1.0)


def _vehicle_key(vehicle_type: VehicleType | str) -> str:
    return vehicle_type.value if isinstance(vehicle_type, VehicleType) else str(vehicle_type)


def fuel_consumption_l(distance_km: float, vehicle_type: VehicleType | str) -> float:
    rate = FUEL_RATES_L_PER_100KM.get(_vehicle_key(vehicle_type), DEFAULT_FUEL_RATE_L_PER_100KM)
    return distance_km * rate / 100.0


def fuel_cost(litres: float) -> float:
    return litres * FUEL_PRICE_PER_LITRE


def emissions_kg(litres: float) -> float:
    return litres * CO2_KG_PER_LITRE


def weighted_cost(distance_km: float, duration_hr: float, cost: float, emissions: float) -> float:
    """Blend the four segment metrics into the single cost the optimizer minimises."""
    return (
        distance_km * DISTANCE_WEIGHT
        + duration_hr * TIME_WEIGHT
        + cost * FUEL_WEIGHT
        + emissions * EMISSION_WEIGHT
    )
