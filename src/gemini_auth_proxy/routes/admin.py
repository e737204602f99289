# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Health and status routes.

- Root banner (/)
- Liveness check (/health), always open
- Auth and project state (/status), read-only
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from gemini_auth import CodeAssistClient

from gemini_auth_proxy.dependencies import get_code_assist_client
from gemini_auth_proxy.models import StatusResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/")
def read_root():
    return {"Status": "Gemini Auth Proxy is running"}


@router.get("/health", response_class=PlainTextResponse)
async def health():
    """Liveness check. Requires no credentials and touches no upstream."""
    return "ok"


@router.get("/status", response_model=StatusResponse)
async def status(client: CodeAssistClient = Depends(get_code_assist_client)):
    """
    Returns credential validity and the bound project id.

    Never refreshes the token and never provisions a project.
    """
    return client.get_status()
