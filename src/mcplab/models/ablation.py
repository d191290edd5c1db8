# Copyright (c) Syntropy Systems
"""Pydantic models for ablation definitions."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from typing_extensions import Self

from mcplab.errors import InvalidDefinitionError

from .base import JSONObject, JSONValue, LabBaseModel

# Fixed key order of a persisted definition
DEFINITION_KEY_ORDER = (
    "name",
    "description",
    "created",
    "updated",
    "models",
    "dryRun",
    "runs",
    "arguments",
    "settings",
    "phases",
    "hooks",
)


def sanitize_name(name: str) -> str:
    """Make a name safe for use as a file or folder name.

    Lower-cases, drops everything but alphanumerics, spaces and hyphens,
    turns spaces into hyphens and collapses/strips hyphens.
    """
    value = name.lower()
    value = re.sub(r"[^a-z0-9\s-]", "", value)
    value = re.sub(r"\s+", "-", value)
    value = re.sub(r"-+", "-", value)
    return value.strip("-")


def utcnow_iso() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).isoformat()


class AblationModel(LabBaseModel):
    """A (provider, model) pair to run every phase against."""

    provider: str
    model: str

    @property
    def label(self) -> str:
        return f"{self.provider}/{self.model}"

    @property
    def slug(self) -> str:
        """File-safe name unique per (provider, model) pair."""
        return sanitize_name(f"{self.provider} {self.model}")

    @property
    def short_name(self) -> str:
        """Short display name for tables."""
        name = self.model
        if "claude" in name:
            for family in ("haiku", "sonnet", "opus"):
                if family in name:
                    return family
        for prefix in ("gpt-4o-mini", "gpt-4o", "gpt-5-mini", "gpt-5", "gpt-4"):
            if prefix in name:
                return prefix
        if "gemini-2.5-flash" in name:
            return "gemini-flash"
        if "gemini-2.5-pro" in name:
            return "gemini-pro"
        if len(name) <= 15:
            return name
        return name[:12] + "..."


class AblationArgument(LabBaseModel):
    """A named {{placeholder}} a definition expects at run time."""

    name: str
    type: Literal["string", "attachment"] = "string"
    description: str | None = None
    required: bool = True
    default: str | None = None


class AblationHook(LabBaseModel):
    """Trigger that runs a directive before or after a matching tool call."""

    id: str | None = None
    before: str | None = None
    after: str | None = None
    when_input: JSONObject | None = None
    when_output: JSONObject | None = None
    run: str
    enabled: bool = True
    description: str | None = None

    @model_validator(mode="after")
    def _check_trigger(self) -> Self:
        if (self.before is None) == (self.after is None):
            msg = "Hook must define exactly one of 'before' or 'after'"
            raise ValueError(msg)
        return self

    @property
    def kind(self) -> Literal["before", "after"]:
        return "before" if self.before is not None else "after"

    @property
    def trigger_tool(self) -> str:
        return self.before if self.before is not None else str(self.after)


class AblationPhase(LabBaseModel):
    """One named stage of an ablation."""

    name: str
    commands: list[str] = Field(default_factory=list)
    on_start: list[str] | None = None
    on_end: list[str] | None = None
    hooks: list[AblationHook] | None = None


class AblationSettings(LabBaseModel):
    """Execution settings shared by every scenario."""

    max_iterations: int = 100
    mcp_config_path: str | None = None
    # Continue one conversation across the phases of a model instead of
    # starting fresh for each phase
    keep_context: bool = False


class AblationDefinition(LabBaseModel):
    """A persisted experiment definition."""

    name: str
    description: str = ""
    created: str = ""
    updated: str | None = None
    models: list[AblationModel] = Field(default_factory=list)
    dry_run: bool = False
    runs: int = Field(default=1, ge=1)
    arguments: list[AblationArgument] = Field(default_factory=list)
    settings: AblationSettings = Field(default_factory=AblationSettings)
    phases: list[AblationPhase] = Field(default_factory=list)
    hooks: list[AblationHook] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _sanitize(cls, value: str) -> str:
        sanitized = sanitize_name(value)
        if not sanitized:
            msg = f"Invalid ablation name: {value!r}"
            raise ValueError(msg)
        return sanitized

    @field_validator("runs", mode="before")
    @classmethod
    def _default_runs(cls, value: object) -> object:
        return 1 if value is None else value

    @model_validator(mode="after")
    def _check_unique(self) -> Self:
        seen_phases: set[str] = set()
        for phase in self.phases:
            if phase.name in seen_phases:
                msg = f'Duplicate phase name "{phase.name}"'
                raise ValueError(msg)
            seen_phases.add(phase.name)

        seen_models: set[tuple[str, str]] = set()
        for model in self.models:
            key = (model.provider, model.model)
            if key in seen_models:
                msg = f'Duplicate model "{model.label}"'
                raise ValueError(msg)
            seen_models.add(key)

        seen_args: set[str] = set()
        for argument in self.arguments:
            if argument.name in seen_args:
                msg = f'Duplicate argument "{argument.name}"'
                raise ValueError(msg)
            seen_args.add(argument.name)
        return self

    @classmethod
    def from_document(cls, data: object) -> AblationDefinition:
        """Validate a raw document, raising InvalidDefinitionError on failure."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidDefinitionError(str(e)) from e

    def check_runnable(self) -> None:
        """Raise InvalidDefinitionError if the definition cannot be scheduled."""
        if not self.phases:
            msg = f'Ablation "{self.name}" has no phases'
            raise InvalidDefinitionError(msg)
        if not self.dry_run and not self.models:
            msg = f'Ablation "{self.name}" has no models (add one or enable dryRun)'
            raise InvalidDefinitionError(msg)

    def get_phase(self, name: str) -> AblationPhase | None:
        return next((p for p in self.phases if p.name == name), None)

    def to_ordered_document(self) -> dict[str, JSONValue]:
        """Dump with the fixed persisted key order.

        Optional keys (updated, dryRun, runs, arguments, hooks) are omitted
        when unset or at their defaults.
        """
        data = self.to_document()
        if not self.dry_run:
            _ = data.pop("dryRun", None)
        if self.runs == 1:
            _ = data.pop("runs", None)
        if not self.arguments:
            _ = data.pop("arguments", None)
        if not self.hooks:
            _ = data.pop("hooks", None)
        return {key: data[key] for key in DEFINITION_KEY_ORDER if key in data}
