# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Application startup and shutdown logic.

This module contains the lifespan context manager and the start-up checks
for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from gemini_auth import (
    AuthError,
    CodeAssistClient,
    CredentialsMissingError,
    ProxySettings,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(
    app: FastAPI,
    settings: ProxySettings,
    client: Optional[CodeAssistClient] = None,
):
    """
    Manage the CodeAssistClient's lifecycle with the app's lifespan.

    Args:
        app: The FastAPI application instance
        settings: Engine settings
        client: Optional pre-built client; it is not closed on shutdown
    """
    owns_client = client is None
    if client is None:
        client = CodeAssistClient(settings)

    _check_credentials(client)
    app.state.code_assist_client = client
    logger.info("CodeAssistClient initialized.")

    yield

    if owns_client:
        await client.close()
        logger.info("CodeAssistClient closed.")


def _check_credentials(client: CodeAssistClient) -> None:
    """Load credentials once at startup; absence is reported, not fatal."""
    try:
        creds = client.store.load()
    except CredentialsMissingError:
        logger.warning("=" * 70)
        logger.warning("⚠️  NO GEMINI CLI CREDENTIALS FOUND")
        logger.warning(f"Expected OAuth credentials at: {client.store.path}")
        logger.warning("The proxy is running but cannot serve any requests.")
        logger.warning("  • Sign in once with the Gemini CLI: gemini")
        logger.warning("  • Or point GEMINI_OAUTH_CREDENTIALS_PATH at a credential file")
        logger.warning("=" * 70)
        return
    except AuthError as e:
        logger.error(f"Gemini CLI credentials are unusable ({e.reason}): {e.message}")
        return

    if client.refresher.refresh_available(creds):
        logger.info("Token refresh is enabled.")
    elif client.refresher.is_token_truly_expired(creds):
        logger.warning(
            "Access token has expired and cannot be refreshed. "
            "Set GEMINI_OAUTH_CLIENT_ID and GEMINI_OAUTH_CLIENT_SECRET or re-authenticate."
        )

    if client.settings.project_override:
        logger.info(f"Using configured project: {client.settings.project_override}")
    else:
        logger.info("Project will be discovered on the first request.")
