# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/project_resolver.py

import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .config import ProxySettings
from .credential_store import Credentials
from .error_handler import ProvisioningFailedError
from .transformer import CLIENT_METADATA, build_headers
from .utils.single_flight import SingleFlight

lib_logger = logging.getLogger("gemini_auth")

PROVISIONING_REQUEST_TIMEOUT = 30.0


class BindingState(str, enum.Enum):
    UNRESOLVED = "unresolved"
    PROVISIONING = "provisioning"
    BOUND = "bound"
    FAILED = "failed"


@dataclass(frozen=True)
class ProjectBinding:
    project_id: Optional[str] = None
    state: BindingState = BindingState.UNRESOLVED
    tier: Optional[str] = None
    error: Optional[str] = None
    source: Optional[str] = None  # "override" | "loadCodeAssist" | "onboardUser"


class ProjectResolver:
    """
    Determines the Cloud Code Assist project bound to the signed-in account.

    An operator override short-circuits everything. Otherwise the first caller
    runs discovery (loadCodeAssist, then onboardUser for new accounts) and the
    result is cached for the process lifetime. Concurrent callers share the
    single in-flight attempt; a failed attempt leaves the binding retryable.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: ProxySettings,
        token_source: Optional[Callable[[], Awaitable[Credentials]]] = None,
    ):
        self._http_client = http_client
        self._settings = settings
        # Called before every provisioning request; onboarding can outlive one token
        self._token_source = token_source
        self._flight: SingleFlight[str] = SingleFlight("project-provisioning")
        if settings.project_override:
            self._binding = ProjectBinding(
                project_id=settings.project_override,
                state=BindingState.BOUND,
                source="override",
            )
        else:
            self._binding = ProjectBinding()

    @property
    def binding(self) -> ProjectBinding:
        """Read-only snapshot of the current binding; never triggers provisioning."""
        return self._binding

    def override(self, project_id: str) -> None:
        """Bind to an explicitly supplied project, replacing any earlier binding."""
        lib_logger.info(f"Project binding overridden to '{project_id}'")
        self._binding = ProjectBinding(
            project_id=project_id, state=BindingState.BOUND, source="override"
        )

    def reset(self) -> None:
        """Drop the cached binding so the next request resolves again."""
        if self._settings.project_override:
            self._binding = ProjectBinding(
                project_id=self._settings.project_override,
                state=BindingState.BOUND,
                source="override",
            )
        else:
            self._binding = ProjectBinding()

    async def resolve(self, credentials: Credentials) -> str:
        binding = self._binding
        if binding.state == BindingState.BOUND and binding.project_id:
            return binding.project_id
        return await self._flight.run(lambda: self._provision(credentials))

    # =========================================================================
    # Provisioning
    # =========================================================================

    async def _provision(self, credentials: Credentials) -> str:
        if self._binding.state == BindingState.BOUND and self._binding.project_id:
            return self._binding.project_id

        self._binding = replace(self._binding, state=BindingState.PROVISIONING, error=None)
        try:
            project_id, tier, source = await self._discover(credentials)
        except ProvisioningFailedError as e:
            self._binding = ProjectBinding(state=BindingState.FAILED, error=e.message)
            lib_logger.error(f"Gemini project provisioning failed: {e.message}")
            raise
        except httpx.HTTPError as e:
            message = f"Network error during project provisioning: {type(e).__name__}"
            self._binding = ProjectBinding(state=BindingState.FAILED, error=message)
            lib_logger.error(message)
            raise ProvisioningFailedError(message) from e
        except Exception as e:
            self._binding = ProjectBinding(state=BindingState.FAILED, error=str(e))
            raise

        self._binding = ProjectBinding(
            project_id=project_id, state=BindingState.BOUND, tier=tier, source=source
        )
        lib_logger.info(f"Resolved Gemini project '{project_id}' (tier: {tier or 'unknown'})")
        return project_id

    async def _post(self, method: str, credentials: Credentials, body: Dict[str, Any]) -> Dict[str, Any]:
        if self._token_source is not None:
            credentials = await self._token_source()
        url = f"{self._settings.code_assist_endpoint}:{method}"
        response = await self._http_client.post(
            url,
            headers=build_headers(credentials.access_token),
            json=body,
            timeout=PROVISIONING_REQUEST_TIMEOUT,
        )
        if not response.is_success:
            raise ProvisioningFailedError(
                f"{method} failed with HTTP {response.status_code}: {_error_message(response)}"
            )
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise ProvisioningFailedError(f"{method} returned a non-object response")
        return data

    async def _discover(self, credentials: Credentials):
        lib_logger.debug("Attempting project discovery via loadCodeAssist...")
        data = await self._post(
            "loadCodeAssist",
            credentials,
            {"cloudaicompanionProject": None, "metadata": dict(CLIENT_METADATA)},
        )

        allowed_tiers: List[Dict[str, Any]] = [
            t for t in data.get("allowedTiers") or [] if isinstance(t, dict)
        ]
        current_tier = data.get("currentTier")
        current_tier_id = current_tier.get("id") if isinstance(current_tier, dict) else None

        if current_tier:
            project = data.get("cloudaicompanionProject")
            if isinstance(project, dict):
                project = project.get("id")
            if isinstance(project, str) and project:
                return project, current_tier_id, "loadCodeAssist"
            lib_logger.debug("User has a currentTier but no project; trying onboarding")

        tier = _pick_onboard_tier(allowed_tiers)
        tier_id = tier.get("id") or "free-tier"
        if tier.get("userDefinedCloudaicompanionProject") and tier_id != "free-tier":
            raise ProvisioningFailedError(
                f"Tier '{tier_id}' requires a user-defined project. "
                "Set GEMINI_CLI_PROJECT_ID to your Google Cloud project id."
            )

        lib_logger.info(f"No existing Gemini project found; onboarding with tier '{tier_id}'...")
        onboard_request = {
            "tierId": tier_id,
            "cloudaicompanionProject": None,
            "metadata": dict(CLIENT_METADATA),
        }
        lro_data = await self._post("onboardUser", credentials, onboard_request)

        max_polls = self._settings.onboard_max_polls
        for attempt in range(max_polls):
            if lro_data.get("done"):
                break
            await asyncio.sleep(self._settings.onboard_poll_interval)
            lib_logger.debug(f"Polling onboarding status... (Attempt {attempt + 1}/{max_polls})")
            lro_data = await self._post("onboardUser", credentials, onboard_request)

        if not lro_data.get("done"):
            raise ProvisioningFailedError(
                f"Onboarding did not complete after {max_polls} polls. Try again later."
            )

        project = (lro_data.get("response") or {}).get("cloudaicompanionProject")
        project_id = project.get("id") if isinstance(project, dict) else project
        if not isinstance(project_id, str) or not project_id:
            raise ProvisioningFailedError(
                "Onboarding completed but no project id was returned. "
                "Set GEMINI_CLI_PROJECT_ID to use an existing project."
            )
        return project_id, tier_id, "onboardUser"


def _pick_onboard_tier(allowed_tiers: List[Dict[str, Any]]) -> Dict[str, Any]:
    for tier in allowed_tiers:
        if tier.get("isDefault"):
            return tier
    for tier in allowed_tiers:
        if tier.get("id") == "legacy-tier":
            return tier
    if allowed_tiers:
        return allowed_tiers[0]
    return {"id": "free-tier"}


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"].get("message") or response.reason_phrase
    return response.reason_phrase
