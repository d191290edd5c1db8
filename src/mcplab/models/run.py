# Copyright (c) Syntropy Systems
"""Pydantic models for ablation run results and progress events."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from .ablation import AblationModel
from .base import JSONObject, JSONValue, LabBaseModel

RunStatus = Literal["pending", "running", "completed", "failed", "skipped", "aborted"]
EventType = Literal["progress", "result", "error"]


class RunResult(LabBaseModel):
    """Outcome of one (phase, model, iteration) scenario."""

    phase: str
    model: AblationModel | None = None
    run: int | None = None
    status: RunStatus = "pending"
    duration: int = 0  # milliseconds
    tokens: int = 0
    chat_file: str | None = None
    tool_log_file: str | None = None
    outputs_captured: int = 0
    error: str | None = None

    @property
    def scenario_key(self) -> tuple[str, str | None, int | None]:
        return (self.phase, self.model.label if self.model else None, self.run)


class AblationRun(LabBaseModel):
    """One execution of an ablation definition."""

    ablation_name: str
    started_at: str
    completed_at: str | None = None
    run_dir: str | None = None
    arguments: dict[str, str] = Field(default_factory=dict)
    results: list[RunResult] = Field(default_factory=list)
    total_tokens: int = 0
    total_duration: int = 0  # milliseconds
    aborted: bool = False

    def count(self, status: RunStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    def finalize(self, completed_at: str, total_duration: int) -> None:
        """Stamp completion time and aggregate tokens/duration."""
        self.completed_at = completed_at
        self.total_duration = total_duration
        self.total_tokens = sum(r.tokens for r in self.results)


class HookProvenance(LabBaseModel):
    """Which hook produced a tool invocation."""

    type: Literal["before", "after"]
    trigger_tool: str
    when_input: JSONObject | None = None
    when_output: JSONObject | None = None


class ToolExecLogEntry(LabBaseModel):
    """One tool invocation made during a dry-run scenario."""

    command_index: int
    command: str | None = None
    tool_name: str
    args: JSONObject = Field(default_factory=dict)
    started_at: str
    duration_ms: int = 0
    success: bool = True
    result: str | None = None
    error: str | None = None
    hook: HookProvenance | None = None


class ProgressEvent(LabBaseModel):
    """Streamed progress notification from the scheduler."""

    type: EventType
    phase: str | None = None
    model: str | None = None
    run: int | None = None
    command_index: int | None = None
    status: RunStatus | None = None
    duration: int | None = None
    message: str | None = None
    result: RunResult | None = None
    data: JSONValue = None
