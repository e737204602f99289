import json
import sys
import time
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from gemini_auth.config import (  # noqa: E402
    DEFAULT_CODE_ASSIST_ENDPOINT,
    DEFAULT_TOKEN_URL,
    ProxySettings,
)


@pytest.fixture
def creds_path(tmp_path: Path) -> Path:
    return tmp_path / "gemini" / "oauth_creds.json"


@pytest.fixture
def write_creds(creds_path: Path):
    """Write a Gemini CLI style credential file; `expires_in` is seconds from now."""

    def _write(expires_in=3600, **overrides) -> dict:
        data = {
            "access_token": "ya29.initial-access-token",
            "refresh_token": "1//initial-refresh-token",
            "scope": "https://www.googleapis.com/auth/cloud-platform",
            "token_type": "Bearer",
            "id_token": "eyJ.initial-id-token",
        }
        if expires_in is not None:
            data["expiry_date"] = int((time.time() + expires_in) * 1000)
        data.update(overrides)
        data = {k: v for k, v in data.items() if v is not None}
        creds_path.parent.mkdir(parents=True, exist_ok=True)
        creds_path.write_text(json.dumps(data))
        return data

    return _write


@pytest.fixture
def make_settings(tmp_path: Path, creds_path: Path):
    """Settings isolated from the real ~/.gemini directory and environment."""

    def _make(**overrides) -> ProxySettings:
        values = dict(
            credentials_path=creds_path,
            client_file_path=tmp_path / "no_client_file.json",
            client_id="test-client-id.apps.googleusercontent.com",
            client_secret="test-client-secret",
            project_override=None,
            code_assist_endpoint=DEFAULT_CODE_ASSIST_ENDPOINT,
            token_url=DEFAULT_TOKEN_URL,
            onboard_poll_interval=0,
            onboard_max_polls=5,
        )
        values.update(overrides)
        return ProxySettings(**values)

    return _make
