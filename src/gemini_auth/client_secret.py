# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/client_secret.py

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import ProxySettings
from .credential_store import Credentials

lib_logger = logging.getLogger("gemini_auth")

_UNSET = object()


@dataclass(frozen=True)
class OAuthClient:
    """OAuth client id/secret pair used only as refresh-request parameters."""

    client_id: str
    client_secret: str
    source: str = "env"

    def __repr__(self) -> str:
        return f"OAuthClient(client_id={self.client_id!r}, client_secret=<redacted>, source={self.source!r})"


def _pair_from(data: Dict[str, Any], source: str) -> Optional[OAuthClient]:
    client_id = data.get("client_id")
    client_secret = data.get("client_secret")
    if isinstance(client_id, str) and isinstance(client_secret, str):
        if client_id.strip() and client_secret.strip():
            return OAuthClient(client_id.strip(), client_secret.strip(), source)
    return None


class ClientSecretLoader:
    """
    Resolves the OAuth client used for refresh exchanges.

    Precedence, first match wins:
      1. GEMINI_OAUTH_CLIENT_ID + GEMINI_OAUTH_CLIENT_SECRET
      2. client_id/client_secret embedded in the credential file
      3. the client file (GEMINI_OAUTH_CLIENT_FILE or ~/.gemini/oauth_client.json)

    The lookup runs at most once per process; a negative result is remembered too.
    """

    def __init__(self, settings: ProxySettings):
        self._settings = settings
        self._cached: Any = _UNSET

    @property
    def resolved(self) -> bool:
        return self._cached is not _UNSET

    def get(self, credentials: Optional[Credentials] = None) -> Optional[OAuthClient]:
        if self._cached is _UNSET:
            self._cached = self._resolve(credentials)
            if self._cached is None:
                lib_logger.warning(
                    "No OAuth client id/secret configured; token refresh is unavailable. "
                    "Set GEMINI_OAUTH_CLIENT_ID and GEMINI_OAUTH_CLIENT_SECRET to enable it."
                )
            else:
                lib_logger.info(f"Using OAuth client from {self._cached.source}")
        return self._cached

    def _resolve(self, credentials: Optional[Credentials]) -> Optional[OAuthClient]:
        settings = self._settings
        if settings.client_id and settings.client_secret:
            return OAuthClient(settings.client_id, settings.client_secret, "env")
        if settings.client_id or settings.client_secret:
            lib_logger.warning(
                "Only one of GEMINI_OAUTH_CLIENT_ID / GEMINI_OAUTH_CLIENT_SECRET is set; both are required."
            )

        if credentials is not None:
            client = _pair_from(credentials.extra, "credentials file")
            if client:
                return client

        return self._read_client_file(settings.client_file_path)

    @staticmethod
    def _read_client_file(path: Path) -> Optional[OAuthClient]:
        if not path.is_file():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            lib_logger.warning(f"Ignoring unreadable OAuth client file '{path.name}': {e}")
            return None
        if not isinstance(data, dict):
            lib_logger.warning(f"Ignoring OAuth client file '{path.name}': root must be a JSON object")
            return None
        # Accept Google's "installed" client JSON layout as well as a flat pair
        nested = data.get("installed") or data.get("web")
        if isinstance(nested, dict):
            data = nested
        return _pair_from(data, f"client file '{path.name}'")
