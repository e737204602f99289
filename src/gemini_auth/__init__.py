# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .client import CodeAssistClient
from .config import ProxySettings
from .credential_store import CredentialStore, Credentials
from .error_handler import (
    AuthError,
    CredentialsCorruptError,
    CredentialsIncompleteError,
    CredentialsMissingError,
    GeminiAuthProxyError,
    ProvisioningFailedError,
    RefreshRejectedError,
    RefreshUnavailableError,
    TransformUnsupportedError,
    UpstreamError,
    UpstreamRejectedError,
    UpstreamTransportError,
)
from .project_resolver import BindingState, ProjectBinding, ProjectResolver
from .stream_relay import StreamSession, StreamState
from .token_refresher import TokenRefresher

__all__ = [
    "CodeAssistClient",
    "ProxySettings",
    "CredentialStore",
    "Credentials",
    "TokenRefresher",
    "ProjectResolver",
    "ProjectBinding",
    "BindingState",
    "StreamSession",
    "StreamState",
    "GeminiAuthProxyError",
    "AuthError",
    "CredentialsMissingError",
    "CredentialsCorruptError",
    "CredentialsIncompleteError",
    "RefreshUnavailableError",
    "RefreshRejectedError",
    "ProvisioningFailedError",
    "UpstreamError",
    "UpstreamTransportError",
    "UpstreamRejectedError",
    "TransformUnsupportedError",
]
