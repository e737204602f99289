# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
CodeAssistClient facade.

The single object the HTTP front door talks to. It owns the shared
httpx.AsyncClient and wires the engine components together:
- CredentialStore: the authoritative OAuth credential snapshot
- TokenRefresher: refresh-before-use with a single in-flight exchange
- ProjectResolver: project discovery/onboarding with a single in-flight attempt
- transformer: envelope wrapping and unwrapping
- StreamSession: incremental relaying of streamed responses
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ..client_secret import ClientSecretLoader
from ..config import ProxySettings
from ..credential_store import CredentialStore
from ..error_handler import AuthError, UpstreamTransportError
from ..project_resolver import ProjectResolver
from ..stream_relay import FRAMING_SSE, StreamSession
from ..token_refresher import TokenRefresher
from ..transformer import (
    EndpointKind,
    TransformContext,
    build_upstream_request,
    map_upstream_error,
    unwrap_response,
)

lib_logger = logging.getLogger("gemini_auth")


class CodeAssistClient:
    """Public-API operations served through Cloud Code Assist."""

    def __init__(
        self,
        settings: Optional[ProxySettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or ProxySettings.from_env()
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.global_timeout, connect=30.0)
        )

        self.store = CredentialStore(self.settings.credentials_path)
        self.client_loader = ClientSecretLoader(self.settings)
        self.refresher = TokenRefresher(
            self.store, self.http_client, self.settings, self.client_loader
        )
        self.resolver = ProjectResolver(
            self.http_client, self.settings, token_source=self.refresher.ensure_valid
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the HTTP client if this facade created it."""
        if self._owns_http_client and self.http_client:
            await self.http_client.aclose()

    # =========================================================================
    # Request pipeline
    # =========================================================================

    async def prepare(self, model: str, kind: EndpointKind) -> TransformContext:
        """Ensure a valid token and a bound project, then build the request context."""
        credentials = await self.refresher.ensure_valid()
        project_id = await self.resolver.resolve(credentials)
        # Provisioning may have taken long enough for the token to expire
        credentials = await self.refresher.ensure_valid()
        return TransformContext(
            model=model,
            kind=kind,
            project_id=project_id,
            authorization=f"Bearer {credentials.access_token}",
        )

    async def _call_unary(self, model: str, kind: EndpointKind, body: Any) -> Dict[str, Any]:
        context = await self.prepare(model, kind)
        upstream = build_upstream_request(context, body, self.settings)

        try:
            response = await self.http_client.post(
                upstream.url,
                params=upstream.params,
                headers=upstream.headers,
                json=upstream.json,
                timeout=self.settings.global_timeout,
            )
        except httpx.HTTPError as e:
            raise UpstreamTransportError(
                f"Upstream {kind.value} request failed: {type(e).__name__}"
            ) from e

        if not response.is_success:
            lib_logger.warning(
                f"Upstream {kind.value} for model '{context.model}' returned HTTP {response.status_code}"
            )
            raise map_upstream_error(response.status_code, response.content)

        try:
            payload = response.json()
        except ValueError:
            raise map_upstream_error(502, response.content)
        return unwrap_response(payload)

    async def generate_content(self, model: str, body: Any) -> Dict[str, Any]:
        return await self._call_unary(model, EndpointKind.UNARY, body)

    async def count_tokens(self, model: str, body: Any) -> Dict[str, Any]:
        return await self._call_unary(model, EndpointKind.COUNT_TOKENS, body)

    async def open_stream(
        self, model: str, body: Any, framing: str = FRAMING_SSE
    ) -> StreamSession:
        """
        Open a streamed generation.

        Auth, provisioning and upstream rejections are raised here, before the
        caller has committed to a streaming response.
        """
        context = await self.prepare(model, EndpointKind.STREAM)
        upstream = build_upstream_request(context, body, self.settings)
        session = StreamSession(
            self.http_client,
            upstream,
            framing=framing,
            timeout=httpx.Timeout(
                self.settings.global_timeout, read=self.settings.stream_timeout
            ),
        )
        return await session.open()

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """
        Report credential and project state.

        Read-only: never refreshes a token and never provisions a project.
        """
        status: Dict[str, Any] = {
            "credentials_path": str(self.store.path),
            "credentials_present": self.store.is_loaded or self.store.exists(),
            "token_valid": False,
            "token_expires_at": None,
            "refresh_available": False,
            "error": None,
        }

        try:
            creds = self.store.current()
        except AuthError as e:
            status["error"] = {"reason": e.reason, "message": e.message}
        else:
            status["credentials_present"] = True
            status["token_valid"] = not self.refresher.is_token_truly_expired(creds)
            status["refresh_available"] = self.refresher.refresh_available(creds)
            if creds.expires_at is not None:
                status["token_expires_at"] = datetime.fromtimestamp(
                    creds.expires_at, tz=timezone.utc
                ).isoformat()
                status["token_expires_in_seconds"] = int(creds.expires_at - time.time())

        authenticated = status["token_valid"] or status["refresh_available"]
        status["status"] = "authenticated" if authenticated else "not_authenticated"

        binding = self.resolver.binding
        status["project_id"] = binding.project_id
        status["project"] = {
            "state": binding.state.value,
            "project_id": binding.project_id,
            "tier": binding.tier,
            "source": binding.source,
            "error": binding.error,
        }
        return status
