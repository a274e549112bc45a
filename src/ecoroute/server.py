"""Entry point for running the API under uvicorn (``ecoroute-server``)."""

from __future__ import annotations

import logging
import os
from typing import Mapping

import uvicorn

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def resolve_port(config: Settings, environ: Mapping[str, str]) -> int:
    """Container platforms hand out the port through ``PORT``; fall back to settings."""
    raw = environ.get("PORT")
    if raw is None:
        return config.port
    try:
        port = int(raw)
    except ValueError:
        logger.warning(f"Invalid PORT value '{raw}', using {config.port}")
        return config.port
    if not 1 <= port <= 65535:
        logger.warning(f"PORT {port} is out of range, using {config.port}")
        return config.port
    return port


def main(config: Settings | None = None, environ: Mapping[str, str] | None = None) -> None:
    config = config or default_settings
    port = resolve_port(config, os.environ if environ is None else environ)
    logging.basicConfig(level=config.log_level.upper())
    logger.info(f"Starting {config.app_name} on {config.host}:{port}")
    uvicorn.run(
        "ecoroute.main:app",
        host=config.host,
        port=port,
        log_level=config.log_level,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    main()
