"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ECOROUTE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "EcoRoute Collection Routing API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for cached route data.")
    host: str = Field(default="0.0.0.0", description="Interface the API server binds to.")
    port: int = Field(default=8000, ge=1, le=65535, description="Port used when the platform sets no PORT variable.")
    log_level: str = Field(default="info")

    # External collaborators
    ors_base_url: str = Field(
        default="https://api.openrouteservice.org/v2",
        description="Base URL for the OpenRouteService directions API.",
    )
    ors_api_key: Optional[str] = Field(
        default=None,
        description="OpenRouteService API key. Live routing is disabled when unset.",
    )
    openweather_url: str = Field(default="https://api.openweathermap.org/data/2.5/weather")
    openweather_api_key: Optional[str] = Field(
        default=None,
        description="OpenWeatherMap API key. The seasonal estimate is used when unset.",
    )
    overpass_url: Optional[str] = Field(
        default="https://overpass-api.de/api/interpreter",
        description="Overpass endpoint used to estimate road congestion. Set empty to disable.",
    )
    overpass_radius_m: int = Field(default=5000, ge=100)
    routing_timeout_seconds: float = Field(default=8.0, gt=0.0)
    weather_timeout_seconds: float = Field(default=5.0, gt=0.0)
    traffic_timeout_seconds: float = Field(default=25.0, gt=0.0)

    # Fetch queue
    max_concurrent_requests: int = Field(default=3, ge=1)
    dispatch_interval_seconds: float = Field(default=0.3, ge=0.0)
    priority_dispatch_factor: float = Field(default=0.7, gt=0.0, le=1.0)
    rate_limit_retry_delay_seconds: float = Field(default=2.0, ge=0.0)
    max_rate_limit_retries: int = Field(default=3, ge=0)

    # Caching
    cache_ttl_minutes: float = Field(default=30.0, gt=0.0)
    persistent_cache_ttl_factor: float = Field(default=6.0, ge=1.0)
    persistent_cache_enabled: bool = True
    cache_sweep_interval_seconds: float = Field(default=600.0, gt=0.0)
    distance_memo_max_entries: int = Field(default=1000, ge=1)
    distance_memo_keep_entries: int = Field(default=800, ge=1)
    route_registry_size: int = Field(default=100, ge=1)

    # Pre-warm pass
    live_routing_min_km: float = Field(default=0.1, ge=0.0)
    prewarm_batch_size: int = Field(default=4, ge=1)
    prewarm_batch_delay_seconds: float = Field(default=0.4, ge=0.0)

    # Genetic optimizer
    ga_min_population: int = Field(default=6, ge=2)
    ga_max_population: int = Field(default=12, ge=2)
    ga_min_generations: int = Field(default=4, ge=1)
    ga_max_generations: int = Field(default=8, ge=1)
    ga_mutation_rate: float = Field(default=0.2, ge=0.0, le=1.0)
    ga_tournament_size: int = Field(default=5, ge=1)
    ga_elite_count: int = Field(default=10, ge=0)
    ga_early_stop_generation: int = Field(default=4, ge=0)
    ga_early_stop_fitness: float = Field(default=100.0)
    random_seed: Optional[int] = Field(
        default=None,
        description="Seed for the optimizer and preview graph generators. Random when unset.",
    )

    # Shortest-path preview graph
    graph_padding_degrees: float = Field(default=0.01, ge=0.0)
    graph_grid_size: int = Field(default=6, ge=2)
    graph_seed: int = Field(default=42)
    preview_speed_kph: float = Field(default=50.0, gt=0.0)
    fallback_speed_kph: float = Field(default=40.0, gt=0.0)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("ors_api_key", "openweather_api_key", "overpass_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            # Try JSON first
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            # Try comma-separated
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_minutes * 60.0

    @property
    def persistent_cache_ttl_seconds(self) -> float:
        return self.cache_ttl_seconds * self.persistent_cache_ttl_factor

    @property
    def cache_dir(self) -> Path:
        return self.data_root / "cache" / "routes"


settings = Settings()
