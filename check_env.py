#!/usr/bin/env python3
"""Helper script to check and create .env file for the routing providers."""

from pathlib import Path
import sys

SECRET_KEYS = ("ECOROUTE_ORS_API_KEY", "ECOROUTE_OPENWEATHER_API_KEY")

TEMPLATE = """# OpenRouteService (optional - live road distances are skipped when empty)
# Get a key from: https://openrouteservice.org/dev/#/signup
ECOROUTE_ORS_API_KEY=

# OpenWeatherMap (optional - a seasonal estimate is used when empty)
ECOROUTE_OPENWEATHER_API_KEY=

# Overpass road-density endpoint for congestion (set empty to disable)
# ECOROUTE_OVERPASS_URL=https://overpass-api.de/api/interpreter

# API Configuration
ECOROUTE_API_PREFIX=/api
# ECOROUTE_FRONTEND_ALLOWED_ORIGINS - JSON array or comma-separated list

# Route data cache
ECOROUTE_DATA_ROOT=./data
ECOROUTE_PERSISTENT_CACHE_ENABLED=true
"""


def _masked(line: str) -> str:
    name, _, value = line.partition("=")
    value = value.strip()
    if name.strip() in SECRET_KEYS and len(value) > 12:
        return f"{name}={value[:6]}...{value[-4:]}"
    return line


def main():
    project_root = Path(__file__).parent
    env_file = project_root / ".env"

    print("=" * 60)
    print("EcoRoute Environment Variables Checker")
    print("=" * 60)
    print()

    if env_file.exists():
        print(f"✅ Found .env file at: {env_file}")
        print()
        print("Current contents:")
        print("-" * 60)
        for line in env_file.read_text(encoding="utf-8").splitlines():
            print(_masked(line))
        print("-" * 60)
        print()
    else:
        print(f"❌ .env file NOT found at: {env_file}")
        print()
        env_file.write_text(TEMPLATE, encoding="utf-8")
        print(f"✅ Created template .env file at: {env_file}")
        print("⚠️  Edit .env to add provider keys, then restart the backend.")
        print()
        return

    print("Testing config loading...")
    print()
    try:
        sys.path.insert(0, str(project_root / "src"))
        from ecoroute.config import settings
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        print()
        print("Make sure you're running this from the project root directory")
        return

    checks = {
        "OpenRouteService (live road routing)": settings.ors_api_key,
        "OpenWeatherMap (live weather)": settings.openweather_api_key,
        "Overpass (road-density traffic)": settings.overpass_url,
    }
    for label, value in checks.items():
        marker = "✅" if value else "⚠️ "
        state = "configured" if value else "not configured, using local estimates"
        print(f"{marker} {label}: {state}")
    print()
    print(f"Route cache directory: {settings.cache_dir}")


if __name__ == "__main__":
    main()
