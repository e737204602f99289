# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Pydantic models for the proxy application.

Request bodies of the Gemini endpoints are validated in the engine
(gemini_auth.transformer); this module holds the proxy's own responses.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class StatusError(BaseModel):
    reason: str
    message: str


class ProjectStatus(BaseModel):
    """Project binding as last resolved; never triggers provisioning."""
    state: str
    project_id: Optional[str] = None
    tier: Optional[str] = None
    source: Optional[str] = None
    error: Optional[str] = None


class StatusResponse(BaseModel):
    """Response model for the /status endpoint."""
    status: str
    credentials_path: str
    credentials_present: bool
    token_valid: bool
    token_expires_at: Optional[str] = None
    token_expires_in_seconds: Optional[int] = None
    refresh_available: bool
    project_id: Optional[str] = None
    project: ProjectStatus
    error: Optional[StatusError] = None

    model_config = ConfigDict(extra="allow")
