"""
FastAPI application factory for the live detection monitor.

Routes:
- /api/* -> REST API (status, stats, logs, export, settings, stream control)
- /api/stream.mjpg -> last sampled frame with detection overlays

The engine is created by the caller and lives on ``app.state``; the app
lifespan starts it and always shuts it down, releasing the camera.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pipeline.engine import DetectionEngine
from .routes import api
from .services.config_service import ConfigService


def create_app(
    engine: DetectionEngine,
    config_service: Optional[ConfigService] = None,
    start_options: Optional[Dict[str, Any]] = None,
    cors_origins: Optional[List[str]] = None,
    stream_fps: int = 10,
) -> FastAPI:
    """Create the FastAPI app around an engine and wire routes."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with engine.running(**(start_options or {})):
            yield

    app = FastAPI(
        title="Live Detection Monitor",
        version="0.1.0",
        description="Live camera object detection with rolling logs and statistics",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.config_service = config_service
    app.state.stream_fps = stream_fps

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(api.router, prefix="/api")

    return app
