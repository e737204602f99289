# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/config.py

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

lib_logger = logging.getLogger("gemini_auth")

DEFAULT_CODE_ASSIST_ENDPOINT = "https://cloudcode-pa.googleapis.com/v1internal"
DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"

DEFAULT_GEMINI_DIR = Path.home() / ".gemini"
DEFAULT_CREDENTIALS_PATH = DEFAULT_GEMINI_DIR / "oauth_creds.json"
DEFAULT_CLIENT_FILE = DEFAULT_GEMINI_DIR / "oauth_client.json"

# First non-empty variable wins
PROJECT_OVERRIDE_ENV_VARS = (
    "GEMINI_CLI_PROJECT_ID",
    "GOOGLE_CLOUD_PROJECT",
    "GCLOUD_PROJECT",
    "GCP_PROJECT",
)


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    """Parse an integer environment variable, falling back on invalid values."""
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        lib_logger.warning(f"Invalid {name}: {value!r}, using default {default}")
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        lib_logger.warning(f"Invalid {name}: {value!r}, using default {default}")
        return default


@dataclass(frozen=True)
class ProxySettings:
    """Runtime configuration for the engine, resolved once from the environment."""

    credentials_path: Path = DEFAULT_CREDENTIALS_PATH
    client_file_path: Path = DEFAULT_CLIENT_FILE
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    project_override: Optional[str] = None
    code_assist_endpoint: str = DEFAULT_CODE_ASSIST_ENDPOINT
    token_url: str = DEFAULT_TOKEN_URL
    global_timeout: float = 120.0
    stream_timeout: float = 600.0
    onboard_poll_interval: float = 2.0
    onboard_max_polls: int = 150
    proxy_api_key: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ProxySettings":
        env = os.environ if env is None else env

        project_override = None
        for name in PROJECT_OVERRIDE_ENV_VARS:
            project_override = _env_str(env, name)
            if project_override:
                break

        credentials_path = _env_str(env, "GEMINI_OAUTH_CREDENTIALS_PATH")
        client_file_path = _env_str(env, "GEMINI_OAUTH_CLIENT_FILE")

        return cls(
            credentials_path=Path(credentials_path).expanduser()
            if credentials_path
            else DEFAULT_CREDENTIALS_PATH,
            client_file_path=Path(client_file_path).expanduser()
            if client_file_path
            else DEFAULT_CLIENT_FILE,
            client_id=_env_str(env, "GEMINI_OAUTH_CLIENT_ID"),
            client_secret=_env_str(env, "GEMINI_OAUTH_CLIENT_SECRET"),
            project_override=project_override,
            code_assist_endpoint=(
                _env_str(env, "CODE_ASSIST_ENDPOINT") or DEFAULT_CODE_ASSIST_ENDPOINT
            ).rstrip("/"),
            token_url=_env_str(env, "GEMINI_OAUTH_TOKEN_URL") or DEFAULT_TOKEN_URL,
            global_timeout=_env_float(env, "GLOBAL_TIMEOUT", 120.0),
            stream_timeout=_env_float(env, "STREAM_TIMEOUT", 600.0),
            onboard_poll_interval=_env_float(env, "ONBOARD_POLL_INTERVAL_SECONDS", 2.0),
            onboard_max_polls=max(1, _env_int(env, "ONBOARD_MAX_POLLS", 150)),
            proxy_api_key=_env_str(env, "PROXY_API_KEY"),
        )
