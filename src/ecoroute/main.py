"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health, routes
from .config import Settings, settings as default_settings
from .services.routing.engine import OptimizerEngine

logger = logging.getLogger(__name__)


def create_app(app_settings: Settings | None = None, engine: OptimizerEngine | None = None) -> FastAPI:
    config = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine or OptimizerEngine(settings=config)
        app.state.engine.start()
        logger.info(
            f"Routing engine started (live routing: {app.state.engine.routing_provider is not None})"
        )
        try:
            yield
        finally:
            await app.state.engine.aclose()

    app = FastAPI(title=config.app_name, root_path="", lifespan=lifespan)
    if config.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(config.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Root endpoint for diagnostics
    @app.get("/")
    def root():
        return {
            "service": config.app_name,
            "status": "running",
            "api_prefix": config.api_prefix,
            "health": f"{config.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=config.api_prefix)
    app.include_router(routes.router, prefix=config.api_prefix)
    return app


app = create_app()
