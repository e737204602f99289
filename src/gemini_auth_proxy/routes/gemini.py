# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Gemini-compatible API routes.

This module contains the public generate-content endpoints:
- Unary generation (/models/{model}:generateContent)
- Streaming generation (/models/{model}:streamGenerateContent)
- Token counting (/models/{model}:countTokens)

The router is mounted twice, under /v1beta and without a version prefix.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from gemini_auth import CodeAssistClient
from gemini_auth.stream_relay import FRAMING_JSON, FRAMING_SSE

from gemini_auth_proxy.dependencies import get_code_assist_client, verify_api_key
from gemini_auth_proxy.error_mapping import ErrorMappingHelper
from gemini_auth_proxy.streaming import streaming_response_wrapper

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/models/{model}:generateContent")
async def generate_content(
    request: Request,
    model: str,
    client: CodeAssistClient = Depends(get_code_assist_client),
    _=Depends(verify_api_key),
):
    """Unary generate-content; the upstream envelope is removed from the answer."""
    error_helper = ErrorMappingHelper("generateContent")
    try:
        # Parse errors surface as INVALID_ARGUMENT through the error helper
        request_data = await request.json()
        logger.info(f"generateContent request for model '{model}'")
        return await client.generate_content(model, request_data)
    except Exception as e:
        return error_helper.handle_error(e)


@router.post("/models/{model}:streamGenerateContent")
async def stream_generate_content(
    request: Request,
    model: str,
    alt: Optional[str] = Query(default=None),
    client: CodeAssistClient = Depends(get_code_assist_client),
    _=Depends(verify_api_key),
):
    """
    Streaming generate-content.

    `alt=sse` (or no `alt`) streams Server-Sent Events; `alt=json` streams a
    JSON array. The upstream call is opened before the response starts so
    auth and upstream rejections still carry their own HTTP status.
    """
    error_helper = ErrorMappingHelper("streamGenerateContent")
    framing = FRAMING_JSON if alt == "json" else FRAMING_SSE
    try:
        request_data = await request.json()
        logger.info(f"streamGenerateContent request for model '{model}' ({framing})")
        session = await client.open_stream(model, request_data, framing=framing)
    except Exception as e:
        return error_helper.handle_error(e)

    return StreamingResponse(
        streaming_response_wrapper(request, session),
        media_type=session.media_type,
        headers={"Cache-Control": "no-cache"},
    )


@router.post("/models/{model}:countTokens")
async def count_tokens(
    request: Request,
    model: str,
    client: CodeAssistClient = Depends(get_code_assist_client),
    _=Depends(verify_api_key),
):
    """Token counting for `contents` or a full `generateContentRequest`."""
    error_helper = ErrorMappingHelper("countTokens")
    try:
        request_data = await request.json()
        return await client.count_tokens(model, request_data)
    except Exception as e:
        return error_helper.handle_error(e)
