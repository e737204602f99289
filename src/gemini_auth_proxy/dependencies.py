# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
FastAPI dependencies for the proxy application.

This module centralizes all FastAPI dependency functions including:
- CodeAssistClient retrieval from app state
- Proxy API key verification for the Gemini endpoints
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader, APIKeyQuery

from gemini_auth import CodeAssistClient

# Security schemes
api_key_header = APIKeyHeader(name="Authorization", auto_error=False)
goog_api_key_header = APIKeyHeader(name="x-goog-api-key", auto_error=False)
api_key_query = APIKeyQuery(name="key", auto_error=False)


def get_code_assist_client(request: Request) -> CodeAssistClient:
    """Dependency to get the CodeAssistClient instance from the app state."""
    return request.app.state.code_assist_client


def _matches(candidate: Optional[str], expected: str) -> bool:
    if not candidate:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


async def verify_api_key(
    request: Request,
    auth: Optional[str] = Depends(api_key_header),
    goog_api_key: Optional[str] = Depends(goog_api_key_header),
    query_key: Optional[str] = Depends(api_key_query),
):
    """
    Dependency to verify the proxy API key for the Gemini endpoints.

    If PROXY_API_KEY is not set, skips verification (open access mode).
    Accepts `Authorization: Bearer <key>`, `x-goog-api-key: <key>` or `?key=<key>`,
    the three ways Gemini SDKs send a key.
    """
    proxy_api_key = request.app.state.settings.proxy_api_key
    # If PROXY_API_KEY is not set or empty, skip verification (open access)
    if not proxy_api_key:
        return None
    if _matches(auth, f"Bearer {proxy_api_key}"):
        return auth
    if _matches(goog_api_key, proxy_api_key):
        return goog_api_key
    if _matches(query_key, proxy_api_key):
        return query_key
    raise HTTPException(status_code=401, detail="Invalid or missing API Key")
