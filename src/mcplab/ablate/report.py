# Copyright (c) Syntropy Systems
"""Markdown reports for ablation runs and dry-run tool logs."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from mcplab.models.ablation import AblationDefinition
    from mcplab.models.run import AblationRun, ToolExecLogEntry

TOOL_LOG_FILE = "tool-log.json"
TOOL_LOG_REPORT_FILE = "tool-log.md"

_STATUS_ICONS = {
    "completed": "OK",
    "failed": "FAIL",
    "skipped": "SKIP",
    "aborted": "ABORT",
    "pending": "...",
    "running": "...",
}


def format_duration(ms: int) -> str:
    """Human-readable duration, e.g. ``850ms``, ``12.3s``, ``4m 05s``."""
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs:02d}s"


def render_run_summary(run: AblationRun, definition: AblationDefinition | None = None) -> str:
    """Render the human-readable twin of ``summary.json``."""
    lines = [f"# Ablation: {run.ablation_name}", ""]
    if definition is not None and definition.description:
        lines += [definition.description, ""]
    lines += [
        f"- **Started:** {run.started_at}",
        f"- **Completed:** {run.completed_at or 'incomplete'}",
        f"- **Duration:** {format_duration(run.total_duration)}",
        f"- **Tokens:** {run.total_tokens:,}",
    ]
    if run.aborted:
        lines.append("- **Aborted:** yes")
    if run.arguments:
        lines += ["", "## Arguments", ""]
        lines += [f"- `{name}` = `{value}`" for name, value in run.arguments.items()]

    lines += [
        "",
        "## Results",
        "",
        "| Phase | Model | Run | Status | Duration | Tokens | Outputs | Chat |",
        "|---|---|---|---|---|---|---|---|",
    ]
    for result in run.results:
        lines.append(
            "| {phase} | {model} | {run} | {status} | {duration} | {tokens:,} | {outputs} | {chat} |".format(
                phase=result.phase,
                model=result.model.label if result.model else "dry-run",
                run=result.run if result.run is not None else "-",
                status=_STATUS_ICONS.get(result.status, result.status) + f" {result.status}",
                duration=format_duration(result.duration),
                tokens=result.tokens,
                outputs=result.outputs_captured,
                chat=result.chat_file or result.tool_log_file or "-",
            )
        )

    errors = [r for r in run.results if r.error]
    if errors:
        lines += ["", "## Errors", ""]
        for result in errors:
            who = result.model.label if result.model else "dry-run"
            lines.append(f"- **{result.phase} / {who}:** {result.error}")

    counts = ", ".join(
        f"{run.count(status)} {status}"
        for status in ("completed", "failed", "skipped", "aborted")
        if run.count(status)
    )
    lines += ["", f"**Totals:** {counts or 'no scenarios'}", ""]
    return "\n".join(lines)


def render_tool_log(entries: list[ToolExecLogEntry], phase: str, iteration: int | None = None) -> str:
    """Render the human-readable twin of ``tool-log.json``."""
    title = f"# Tool log: {phase}" + (f" (run {iteration})" if iteration is not None else "")
    lines = [title, ""]
    if not entries:
        lines += ["_No tool calls._", ""]
        return "\n".join(lines)

    for entry in entries:
        status = "ok" if entry.success else "failed"
        heading = f"## {entry.command_index + 1}. `{entry.tool_name}` ({status}, {format_duration(entry.duration_ms)})"
        lines += [heading, ""]
        if entry.hook is not None:
            lines.append(f"Triggered by {entry.hook.type}-hook on `{entry.hook.trigger_tool}`")
            lines.append("")
        elif entry.command:
            lines += [f"Command: `{entry.command}`", ""]
        lines += ["Arguments:", "", "```json", json.dumps(entry.args, indent=2), "```", ""]
        if entry.error:
            lines += [f"Error: {entry.error}", ""]
        elif entry.result is not None:
            lines += ["Result:", "", "```", entry.result, "```", ""]
    return "\n".join(lines)


def write_tool_log(directory: Path, entries: list[ToolExecLogEntry], phase: str, iteration: int | None = None) -> Path:
    """Write ``tool-log.json`` and ``tool-log.md``; returns the JSON path."""
    directory.mkdir(parents=True, exist_ok=True)
    json_path = directory / TOOL_LOG_FILE
    with json_path.open("w") as f:
        json.dump([entry.to_document() for entry in entries], f, indent=2)
    _ = (directory / TOOL_LOG_REPORT_FILE).write_text(render_tool_log(entries, phase, iteration))
    return json_path
