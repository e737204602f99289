# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
FastAPI application factory.

This module provides the create_app() function for creating and configuring
the FastAPI application instance.
"""

import logging
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gemini_auth import CodeAssistClient, ProxySettings
from gemini_auth_proxy.error_mapping import register_exception_handlers
from gemini_auth_proxy.startup import lifespan


def create_app(
    settings: Optional[ProxySettings] = None,
    client: Optional[CodeAssistClient] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Engine settings; read from the environment when omitted
        client: Pre-built CodeAssistClient (tests inject one with a mocked transport)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or (client.settings if client else ProxySettings.from_env())

    app = FastAPI(
        title="Gemini Auth Proxy",
        description="Serves the public Gemini API through Cloud Code Assist using Gemini CLI OAuth credentials",
        version="1.0.0",
        lifespan=lambda app: lifespan(app, settings, client),
    )
    app.state.settings = settings

    # Configure CORS
    _configure_cors(app)

    register_exception_handlers(app)

    # Register routes
    _register_routes(app)

    return app


def _configure_cors(app: FastAPI) -> None:
    """Configure CORS middleware from environment variables."""
    # PROXY_CORS_ORIGINS: comma-separated list or "*" for all
    _cors_origins_env = os.getenv("PROXY_CORS_ORIGINS", "*")
    _cors_origins = [origin.strip() for origin in _cors_origins_env.split(",") if origin.strip()]
    _cors_credentials = os.getenv("PROXY_CORS_CREDENTIALS", "false").lower() == "true"

    if _cors_credentials and _cors_origins == ["*"]:
        logging.warning(
            "CORS allow_credentials is enabled with wildcard origins. "
            "Browsers reject this combination. Set explicit PROXY_CORS_ORIGINS."
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=_cors_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _register_routes(app: FastAPI) -> None:
    """Register all API routes."""
    from gemini_auth_proxy.routes import admin, gemini

    # Public Gemini API paths
    app.include_router(gemini.router, prefix="/v1beta")

    # Same paths without the version prefix
    app.include_router(gemini.router, include_in_schema=False)

    # Health and status routes
    app.include_router(admin.router)
