# Copyright (c) Syntropy Systems
"""Pydantic models for the mcplab HTTP API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from mcplab.models.base import JSONObject


class HealthResponse(BaseModel):
    """Liveness check response."""

    status: str = "healthy"


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


class AblationSummary(BaseModel):
    """One row of the ablation listing."""

    name: str
    description: str = ""
    created: str = ""
    updated: Optional[str] = None
    models: list[str] = Field(default_factory=list, description="provider/model labels")
    phases: list[str] = Field(default_factory=list, description="Phase names in order")
    dry_run: bool = False
    runs: int = 1


class AblationCreate(BaseModel):
    """Request to create an ablation from a definition document."""

    definition: JSONObject = Field(..., description="Definition document (camelCase keys, as in YAML)")


class RunRequest(BaseModel):
    """Request to start an ablation run."""

    arguments: dict[str, str] = Field(default_factory=dict, description="Values for {{ placeholders }}")


class RunListItem(BaseModel):
    """One past run of an ablation."""

    timestamp: str
    started_at: str
    completed_at: Optional[str] = None
    aborted: bool = False
    total_tokens: int = 0
    total_duration: int = Field(0, description="Milliseconds")
    completed: int = 0
    failed: int = 0
    skipped: int = 0
