# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/token_refresher.py

import logging
import time
from typing import Any, Dict, Optional

import httpx

from .client_secret import ClientSecretLoader, OAuthClient
from .config import ProxySettings
from .credential_store import CredentialStore, Credentials
from .error_handler import (
    AuthError,
    RefreshRejectedError,
    RefreshUnavailableError,
    UpstreamTransportError,
)
from .utils.single_flight import SingleFlight

lib_logger = logging.getLogger("gemini_auth")

# Refresh when token is close to expiry
REFRESH_EXPIRY_BUFFER_SECONDS = 5 * 60  # 5 minutes

TOKEN_REQUEST_TIMEOUT = 30.0


class TokenRefresher:
    """
    Keeps the stored access token usable.

    All callers that find the token expired converge on one refresh exchange
    through a SingleFlight cell, since Google may rotate the refresh token and
    a second concurrent exchange could invalidate the first one's result.
    """

    def __init__(
        self,
        store: CredentialStore,
        http_client: httpx.AsyncClient,
        settings: ProxySettings,
        client_loader: Optional[ClientSecretLoader] = None,
    ):
        self._store = store
        self._http_client = http_client
        self._settings = settings
        self._client_loader = client_loader or ClientSecretLoader(settings)
        self._flight: SingleFlight[Credentials] = SingleFlight("token-refresh")

    # =========================================================================
    # Expiry helpers
    # =========================================================================

    def is_token_expired(self, creds: Credentials) -> bool:
        """Proactive expiry check using refresh buffer."""
        if creds.expires_at is None:
            return False
        return creds.expires_at < time.time() + REFRESH_EXPIRY_BUFFER_SECONDS

    def is_token_truly_expired(self, creds: Credentials) -> bool:
        """Strict expiry check without proactive buffer."""
        if creds.expires_at is None:
            return False
        return creds.expires_at < time.time()

    def refresh_available(self, creds: Credentials) -> bool:
        return creds.can_refresh and self._client_loader.get(creds) is not None

    # =========================================================================
    # Refresh
    # =========================================================================

    async def ensure_valid(self, credentials: Optional[Credentials] = None) -> Credentials:
        """Return credentials whose access token may be sent upstream."""
        creds = credentials or self._store.current()
        if not self.is_token_expired(creds):
            return creds
        return await self._flight.run(self._refresh)

    async def _refresh(self) -> Credentials:
        # Another attempt (or the Gemini CLI itself) may have refreshed already
        current = self._reload()
        if not self.is_token_expired(current):
            lib_logger.debug("Token already refreshed by an earlier attempt; skipping exchange")
            return current

        client = self._client_loader.get(current)
        if not current.refresh_token or client is None:
            missing = "refresh_token" if not current.refresh_token else "OAuth client id/secret"
            if self.is_token_truly_expired(current):
                raise RefreshUnavailableError(
                    f"Access token expired and no {missing} is available to refresh it. "
                    "Re-authenticate with the Gemini CLI or configure "
                    "GEMINI_OAUTH_CLIENT_ID and GEMINI_OAUTH_CLIENT_SECRET."
                )
            lib_logger.warning(
                f"Access token expires soon and no {missing} is configured; "
                "using it until it expires."
            )
            return current

        lib_logger.debug("Refreshing Gemini OAuth access token...")
        token_data = await self._exchange(current.refresh_token, client)
        updated = self._apply_token_response(current, token_data)
        await self._store.commit(updated)
        lib_logger.info("Refreshed Gemini OAuth access token")
        return updated

    def _reload(self) -> Credentials:
        try:
            return self._store.load()
        except AuthError as e:
            lib_logger.warning(
                f"Could not re-read credential file before refresh ({e.reason}); "
                "using in-memory credentials."
            )
            return self._store.current()

    async def _exchange(self, refresh_token: str, client: OAuthClient) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        data = {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._http_client.post(
                self._settings.token_url,
                headers=headers,
                data=data,
                timeout=TOKEN_REQUEST_TIMEOUT,
            )
        except httpx.HTTPError as e:
            raise UpstreamTransportError(
                f"Could not reach the OAuth token endpoint: {type(e).__name__}"
            ) from e

        if not response.is_success:
            oauth_error, description = _parse_oauth_error(response)
            detail = f"{oauth_error}: {description}" if description else oauth_error
            raise RefreshRejectedError(
                f"Token refresh rejected by provider (HTTP {response.status_code}, {detail}). "
                "Re-authenticate with the Gemini CLI.",
                upstream_status=response.status_code,
                oauth_error=oauth_error,
            )

        try:
            token_data = response.json()
        except ValueError:
            token_data = None
        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise RefreshRejectedError(
                "Token endpoint returned a response without an access_token",
                upstream_status=response.status_code,
            )
        return token_data

    @staticmethod
    def _apply_token_response(current: Credentials, token_data: Dict[str, Any]) -> Credentials:
        expires_in = token_data.get("expires_in")
        expiry_date = None
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expiry_date = int((time.time() + float(expires_in)) * 1000)

        return current.with_updates(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or current.refresh_token,
            expiry_date=expiry_date,
            id_token=token_data.get("id_token") or current.id_token,
            scope=token_data.get("scope") or current.scope,
            token_type=token_data.get("token_type") or current.token_type,
        )


def _parse_oauth_error(response: httpx.Response):
    """Extract (error, error_description) from an OAuth error response."""
    try:
        payload = response.json()
    except ValueError:
        return "unknown_error", ""
    if not isinstance(payload, dict):
        return "unknown_error", ""
    error = payload.get("error", "unknown_error")
    if isinstance(error, dict):
        # Some Google endpoints answer with the RPC error shape instead
        return error.get("status", "unknown_error"), error.get("message", "")
    return str(error), str(payload.get("error_description", ""))
