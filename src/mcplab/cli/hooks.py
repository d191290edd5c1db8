# Copyright (c) Syntropy Systems
"""mcplab hooks commands - manage global tool hooks."""
from __future__ import annotations

import json
from typing import cast

import typer
from rich.table import Table

from mcplab.cli.common import console
from mcplab.config import LabPaths, require_lab_dir
from mcplab.hooks.store import HookStore
from mcplab.models.base import JSONObject

hooks_app = typer.Typer(
    name="hooks",
    help="Manage hooks that run directives around tool calls.",
    no_args_is_help=True,
)


def _store() -> HookStore:
    try:
        lab_dir = require_lab_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    return HookStore(LabPaths(lab_dir).hooks_file)


def _parse_predicate(raw: str | None, option: str) -> JSONObject | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {option} is not valid JSON: {e}")
        raise typer.Exit(1) from e
    if not isinstance(value, dict):
        console.print(f"[red]Error:[/red] {option} must be a JSON object")
        raise typer.Exit(1)
    return cast("JSONObject", value)


@hooks_app.command("list")
def list_hooks() -> None:
    """List configured hooks."""
    store = _store()
    hooks = store.list_hooks()
    if not hooks:
        console.print("[dim]No hooks configured[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("When")
    table.add_column("Tool")
    table.add_column("Run")
    table.add_column("Match")
    table.add_column("Enabled")

    for hook in hooks:
        match = []
        if hook.when_input:
            match.append(f"input={json.dumps(hook.when_input)}")
        if hook.when_output:
            match.append(f"output={json.dumps(hook.when_output)}")
        table.add_row(
            hook.id or "-",
            hook.kind,
            hook.trigger_tool,
            hook.run,
            " ".join(match) or "-",
            "[green]yes[/green]" if hook.enabled else "[dim]no[/dim]",
        )
    console.print(table)


@hooks_app.command("add")
def add(
    run: str = typer.Argument(..., help='Directive to run, e.g. \'@tool:fs__log(msg="x")\''),
    before: str | None = typer.Option(None, "--before", help="Fire before this tool"),
    after: str | None = typer.Option(None, "--after", help="Fire after this tool"),
    when_input: str | None = typer.Option(None, "--when-input", help="JSON subset the input must match"),
    when_output: str | None = typer.Option(None, "--when-output", help="JSON subset the output must match"),
    description: str | None = typer.Option(None, "--description", "-d", help="Description"),
    disabled: bool = typer.Option(False, "--disabled", help="Create the hook disabled"),
) -> None:
    """Add a hook that fires before or after a tool call."""
    store = _store()
    try:
        hook = store.add(
            run,
            before=before,
            after=after,
            when_input=_parse_predicate(when_input, "--when-input"),
            when_output=_parse_predicate(when_output, "--when-output"),
            description=description,
            enabled=not disabled,
        )
    except ValueError as e:
        console.print("[red]Error:[/red] Specify exactly one of --before or --after")
        raise typer.Exit(1) from e

    console.print(f"[green]Added hook[/green] {hook.id} ({hook.kind} {hook.trigger_tool})")


@hooks_app.command("remove")
def remove(hook_id: str = typer.Argument(..., help="Hook ID (or unique prefix)")) -> None:
    """Remove a hook."""
    if not _store().remove(hook_id):
        console.print(f"[red]Error:[/red] Hook not found: {hook_id}")
        raise typer.Exit(1)
    console.print(f"[green]Removed hook[/green] {hook_id}")


@hooks_app.command("enable")
def enable(hook_id: str = typer.Argument(..., help="Hook ID (or unique prefix)")) -> None:
    """Enable a hook."""
    if not _store().enable(hook_id):
        console.print(f"[red]Error:[/red] Hook not found: {hook_id}")
        raise typer.Exit(1)
    console.print(f"[green]Enabled hook[/green] {hook_id}")


@hooks_app.command("disable")
def disable(hook_id: str = typer.Argument(..., help="Hook ID (or unique prefix)")) -> None:
    """Disable a hook."""
    if not _store().disable(hook_id):
        console.print(f"[red]Error:[/red] Hook not found: {hook_id}")
        raise typer.Exit(1)
    console.print(f"[green]Disabled hook[/green] {hook_id}")
