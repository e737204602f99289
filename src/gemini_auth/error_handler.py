# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/error_handler.py

from typing import Any, Dict, Optional

AUTH_DOMAIN = "auth.gemini-auth-proxy"
UPSTREAM_DOMAIN = "upstream.gemini-auth-proxy"
PROXY_DOMAIN = "proxy.gemini-auth-proxy"

# Google RPC status names keyed by HTTP status, used when an upstream error
# body does not carry its own status string.
HTTP_TO_RPC_STATUS = {
    400: "INVALID_ARGUMENT",
    401: "UNAUTHENTICATED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    409: "ABORTED",
    412: "FAILED_PRECONDITION",
    429: "RESOURCE_EXHAUSTED",
    499: "CANCELLED",
    500: "INTERNAL",
    501: "NOT_IMPLEMENTED",
    502: "UNAVAILABLE",
    503: "UNAVAILABLE",
    504: "DEADLINE_EXCEEDED",
}


def rpc_status_for(status_code: int) -> str:
    """Returns the Google RPC status name closest to an HTTP status code."""
    if status_code in HTTP_TO_RPC_STATUS:
        return HTTP_TO_RPC_STATUS[status_code]
    if 400 <= status_code < 500:
        return "FAILED_PRECONDITION"
    if status_code >= 500:
        return "INTERNAL"
    return "UNKNOWN"


def mask_secret(value: Optional[str]) -> str:
    """Mask a token or secret for safe display in logs. Shows first 4 and last 4 chars."""
    if not value or len(value) <= 12:
        return "****"
    return f"{value[:4]}****{value[-4:]}"


class GeminiAuthProxyError(Exception):
    """Base class for every failure raised by the engine."""

    status_code: int = 500
    rpc_status: str = "INTERNAL"
    reason: str = "INTERNAL_ERROR"
    domain: str = PROXY_DOMAIN

    def __init__(self, message: str, *, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason

    def to_error_body(self) -> Dict[str, Any]:
        """Public Google-style error body for this failure."""
        return {
            "error": {
                "code": self.status_code,
                "message": self.message,
                "status": self.rpc_status,
                "details": [
                    {
                        "@type": "type.googleapis.com/google.rpc.ErrorInfo",
                        "reason": self.reason,
                        "domain": self.domain,
                    }
                ],
            }
        }


# =============================================================================
# Auth-class failures ("fix your auth")
# =============================================================================


class AuthError(GeminiAuthProxyError):
    """Credential, refresh or project-binding failure."""

    status_code = 401
    rpc_status = "UNAUTHENTICATED"
    reason = "AUTH_FAILED"
    domain = AUTH_DOMAIN


class CredentialsMissingError(AuthError):
    reason = "CREDENTIALS_MISSING"


class CredentialsCorruptError(AuthError):
    reason = "CREDENTIALS_CORRUPT"


class CredentialsIncompleteError(AuthError):
    reason = "CREDENTIALS_INCOMPLETE"


class RefreshUnavailableError(AuthError):
    """Token expired and no refresh token or OAuth client is configured."""

    reason = "REFRESH_UNAVAILABLE"


class RefreshRejectedError(AuthError):
    """The token endpoint refused the refresh exchange. Never retried automatically."""

    reason = "REFRESH_REJECTED"

    def __init__(
        self,
        message: str,
        *,
        upstream_status: Optional[int] = None,
        oauth_error: Optional[str] = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.oauth_error = oauth_error


class ProvisioningFailedError(AuthError):
    """Project discovery/onboarding failed. Retryable on a later request."""

    status_code = 503
    rpc_status = "UNAVAILABLE"
    reason = "PROJECT_PROVISIONING_FAILED"


# =============================================================================
# Upstream failures ("the model call itself failed")
# =============================================================================


class UpstreamError(GeminiAuthProxyError):
    domain = UPSTREAM_DOMAIN


class UpstreamTransportError(UpstreamError):
    """Network-level failure talking to a Google endpoint. Surfaced immediately."""

    status_code = 502
    rpc_status = "UNAVAILABLE"
    reason = "UPSTREAM_TRANSPORT_ERROR"


class UpstreamRejectedError(UpstreamError):
    """
    The provider answered with an application-level error.

    `body` holds the public-shaped error body and `status_code` the provider's
    HTTP status, both forwarded to the client as-is.
    """

    reason = "UPSTREAM_REJECTED"

    def __init__(self, message: str, *, status_code: int, body: Dict[str, Any]):
        super().__init__(message)
        self.status_code = status_code
        self.rpc_status = body.get("error", {}).get("status") or rpc_status_for(
            status_code
        )
        self.body = body

    def to_error_body(self) -> Dict[str, Any]:
        return self.body


class TransformUnsupportedError(GeminiAuthProxyError):
    """A payload shape the transformer cannot map."""

    status_code = 400
    rpc_status = "INVALID_ARGUMENT"
    reason = "TRANSFORM_UNSUPPORTED"
