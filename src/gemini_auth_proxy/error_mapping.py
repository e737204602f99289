# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Centralized error mapping from engine exceptions to Google-style JSON errors.

Every failure leaves the proxy in the public Gemini error shape:
{"error": {"code", "message", "status", "details": [ErrorInfo]}} so clients
can keep branching on HTTP status and `error.status`.
"""

import json
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gemini_auth import GeminiAuthProxyError
from gemini_auth.error_handler import PROXY_DOMAIN, TransformUnsupportedError, rpc_status_for

logger = logging.getLogger(__name__)


def google_error_body(
    code: int, message: str, reason: str, domain: str = PROXY_DOMAIN
) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "status": rpc_status_for(code),
            "details": [
                {
                    "@type": "type.googleapis.com/google.rpc.ErrorInfo",
                    "reason": reason,
                    "domain": domain,
                }
            ],
        }
    }


def map_proxy_error(e: Exception, context: Optional[str] = None) -> JSONResponse:
    """
    Map an exception to a Google-style JSONResponse.

    Args:
        e: The exception raised while serving the request
        context: Optional context string for logging (e.g., endpoint name)

    Returns:
        JSONResponse with the appropriate status code and error body
    """
    ctx = f" ({context})" if context else ""

    if isinstance(e, json.JSONDecodeError):
        e = TransformUnsupportedError(f"Request body is not valid JSON: {e.msg}")
    elif isinstance(e, UnicodeDecodeError):
        e = TransformUnsupportedError("Request body is not valid UTF-8")

    if isinstance(e, GeminiAuthProxyError):
        log = logger.error if e.status_code >= 500 else logger.warning
        log(f"{type(e).__name__}{ctx}: {e.message}")
        return JSONResponse(status_code=e.status_code, content=e.to_error_body())

    # Log unexpected errors
    logger.exception(f"Unhandled exception{ctx}: {e}")
    return JSONResponse(
        status_code=500,
        content=google_error_body(500, "Internal proxy error", "INTERNAL_ERROR"),
    )


class ErrorMappingHelper:
    """
    Helper class for endpoints to handle common error patterns.

    Usage:
        error_helper = ErrorMappingHelper("generateContent")
        try:
            ...
        except Exception as e:
            return error_helper.handle_error(e)
    """

    def __init__(self, endpoint_name: str):
        self.endpoint_name = endpoint_name

    def handle_error(self, e: Exception) -> JSONResponse:
        """Map exception to the Google error response."""
        return map_proxy_error(e, self.endpoint_name)


def register_exception_handlers(app: FastAPI) -> None:
    """Render framework-raised errors in the same Google error shape."""

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        reason = "API_KEY_INVALID" if exc.status_code == 401 else "HTTP_ERROR"
        return JSONResponse(
            status_code=exc.status_code,
            content=google_error_body(exc.status_code, str(exc.detail), reason),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(GeminiAuthProxyError)
    async def _proxy_error_handler(request: Request, exc: GeminiAuthProxyError):
        return map_proxy_error(exc, request.url.path)
