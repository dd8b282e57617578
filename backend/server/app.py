"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Configure the event logger
- Initialize shared resources (upstream connector)
- Register routes
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability import logger
from session.upstream_connection import UpstreamConnector, open_upstream

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    *,
    upstream_connector: UpstreamConnector | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations
    - Injecting a fake upstream in tests
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    logger.configure(enabled=config.enable_json_logs)

    app = FastAPI(title="Gemini Live Relay")

    app.state.config = config
    app.state.upstream_connector = upstream_connector or open_upstream

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if not config.has_credential:
        logger.log_event({
            "event_type": "CONFIG_MISSING_CREDENTIAL",
            "env": config.env,
        })

    # Routes
    register_routes(app)

    return app
