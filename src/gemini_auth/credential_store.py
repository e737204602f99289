# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/credential_store.py

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .error_handler import (
    CredentialsCorruptError,
    CredentialsIncompleteError,
    CredentialsMissingError,
)
from .utils.resilient_io import safe_write_json

lib_logger = logging.getLogger("gemini_auth")

# Keys with a dedicated attribute on Credentials; everything else lands in `extra`
_STRING_FIELDS = ("access_token", "refresh_token", "id_token", "scope", "token_type")


@dataclass(frozen=True)
class Credentials:
    """Immutable snapshot of the OAuth credential file."""

    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expiry_date: Optional[int] = None  # epoch milliseconds
    scope: Optional[str] = None
    token_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def expires_at(self) -> Optional[float]:
        """Expiry as epoch seconds, None when the file carries no expiry."""
        if self.expiry_date is None:
            return None
        return self.expiry_date / 1000

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def __repr__(self) -> str:
        return (
            f"Credentials(access_token=<redacted>, "
            f"refresh_token={'<redacted>' if self.refresh_token else None}, "
            f"expiry_date={self.expiry_date})"
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credentials":
        for key in _STRING_FIELDS:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise CredentialsCorruptError(
                    f"Credential field '{key}' must be a string"
                )

        expiry = data.get("expiry_date")
        if expiry is not None:
            if isinstance(expiry, bool) or not isinstance(expiry, (int, float)):
                raise CredentialsCorruptError(
                    "Credential field 'expiry_date' must be a number of milliseconds"
                )
            expiry = int(expiry)

        if not data.get("access_token"):
            raise CredentialsIncompleteError(
                "Credential file has no access_token. Re-authenticate with the Gemini CLI."
            )

        extra = {
            k: v
            for k, v in data.items()
            if k not in _STRING_FIELDS and k != "expiry_date"
        }
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token"),
            expiry_date=expiry,
            scope=data.get("scope"),
            token_type=data.get("token_type"),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data["access_token"] = self.access_token
        for key in ("refresh_token", "id_token", "scope", "token_type"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.expiry_date is not None:
            data["expiry_date"] = self.expiry_date
        return data

    def with_updates(self, **changes: Any) -> "Credentials":
        return replace(self, **changes)


class CredentialStore:
    """
    Holds the single authoritative Credentials snapshot for the process.

    Readers get the current frozen snapshot. `commit` persists a new snapshot
    to disk first and swaps the in-memory reference only after the write
    succeeded, so no reader ever observes a half-applied update.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._current: Optional[Credentials] = None

    @property
    def is_loaded(self) -> bool:
        return self._current is not None

    def exists(self) -> bool:
        return self.path.is_file()

    def _read(self) -> Credentials:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise CredentialsMissingError(
                f"Gemini OAuth credentials not found at '{self.path}'. "
                "Run the Gemini CLI once to sign in, or set GEMINI_OAUTH_CREDENTIALS_PATH."
            )
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CredentialsCorruptError(
                f"Could not parse credential file '{self.path.name}': {e}"
            )

        if not isinstance(data, dict):
            raise CredentialsCorruptError(
                f"Credential file '{self.path.name}' root must be a JSON object"
            )
        return Credentials.from_dict(data)

    def load(self) -> Credentials:
        """Read the credential file from disk and make it the current snapshot."""
        first_load = self._current is None
        creds = self._read()
        self._current = creds
        if first_load and not creds.can_refresh:
            lib_logger.warning(
                f"Credential file '{self.path.name}' has no refresh_token; "
                "the access token will be used until it expires."
            )
        lib_logger.debug(f"Loaded Gemini OAuth credentials from '{self.path}'")
        return creds

    def current(self) -> Credentials:
        """Return the current snapshot, loading it on first use."""
        creds = self._current
        if creds is None:
            creds = self.load()
        return creds

    async def commit(self, updated: Credentials) -> Credentials:
        """
        Persist `updated` atomically, then make it the current snapshot.

        Raises OSError if the disk write fails; the previous snapshot stays current.
        """
        ok = await asyncio.to_thread(
            safe_write_json,
            self.path,
            updated.to_dict(),
            lib_logger,
            secure_permissions=True,
        )
        if not ok:
            lib_logger.error(
                f"Failed to persist Gemini credentials to '{self.path.name}'. Cache not updated."
            )
            raise OSError(f"Failed to persist credentials to '{self.path.name}'")

        self._current = updated
        lib_logger.debug(f"Committed refreshed credentials to '{self.path.name}'")
        return updated
