# Copyright (c) Syntropy Systems
"""mcplab ablate run and results commands."""
from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import typer
from rich.table import Table

from mcplab.ablate.report import format_duration
from mcplab.ablate.scheduler import CancelToken, get_total_scenarios
from mcplab.cli.ablate.manage import load_or_exit, open_store
from mcplab.cli.common import abort_on_interrupt, console, open_lab
from mcplab.errors import MCPLabError

if TYPE_CHECKING:
    from mcplab.models.run import AblationRun, ProgressEvent

_STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "skipped": "dim",
    "aborted": "yellow",
    "running": "cyan",
    "pending": "dim",
}


class ConsoleEventSink:
    """Prints scheduler progress to the terminal."""

    def __init__(self, total: int) -> None:
        self.total = total
        self.done = 0

    def emit(self, event: ProgressEvent) -> None:
        where = " / ".join(str(part) for part in (event.phase, event.model) if part)
        if event.run is not None:
            where += f" (run {event.run})"

        if event.type == "result":
            self.done += 1
            style = _STATUS_STYLES.get(event.status or "", "white")
            line = f"[{self.done}/{self.total}] {where}: [{style}]{event.status}[/{style}]"
            if event.duration is not None:
                line += f" [dim]{format_duration(event.duration)}[/dim]"
            if event.message:
                line += f" - {event.message}"
            console.print(line)
        elif event.type == "error":
            console.print(f"  [red]Error[/red] {where}: {event.message}")
        elif event.message:
            console.print(f"[dim]{event.message}[/dim]")
        elif event.status == "running" and event.command_index is None:
            console.print(f"[cyan]>[/cyan] {where}")


def _parse_arguments(raw: list[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key:
            console.print(f"[red]Error:[/red] Invalid argument '{item}' (expected name=value)")
            raise typer.Exit(1)
        values[key.strip()] = value
    return values


def print_run_table(run: AblationRun) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Phase", style="cyan")
    table.add_column("Model")
    table.add_column("Run", justify="right")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Outputs", justify="right")

    for result in run.results:
        style = _STATUS_STYLES.get(result.status, "white")
        table.add_row(
            result.phase,
            result.model.label if result.model else "dry-run",
            str(result.run) if result.run is not None else "-",
            f"[{style}]{result.status}[/{style}]",
            format_duration(result.duration),
            f"{result.tokens:,}",
            str(result.outputs_captured),
        )
    console.print(table)

    errors = [r for r in run.results if r.error]
    for result in errors:
        who = result.model.label if result.model else "dry-run"
        console.print(f"  [red]{result.phase} / {who}:[/red] {result.error}")


def run(
    name: str = typer.Argument(..., help="Ablation name"),
    arg: list[str] = typer.Option([], "--arg", "-a", help="Argument value as name=value (repeatable)"),
    agent: str | None = typer.Option(
        None,
        "--agent",
        envvar="MCPLAB_AGENT_LOOP",
        help="Agent loop to use, as module:attribute",
    ),
) -> None:
    """Run every phase of an ablation against every model.

    Ctrl+C aborts the run after the current command; the remaining
    scenarios are recorded as aborted.

    Example:
        mcplab ablate run study -a doc=report.pdf --agent my_agents:loop

    """
    store = open_store()
    definition = load_or_exit(store, name)
    values = _parse_arguments(arg)

    abort = threading.Event()
    cancel = CancelToken()
    sink = ConsoleEventSink(get_total_scenarios(definition))

    console.print(f"[bold]Running ablation[/bold] {definition.name} ({sink.total} scenario(s))")
    with open_lab(abort_signal=abort) as lab:
        try:
            scheduler = lab.scheduler(definition, agent_loop=agent)
            with abort_on_interrupt(abort, on_abort=cancel.cancel):
                result = scheduler.run(definition, values, events=sink, cancel=cancel)
        except (MCPLabError, ImportError, AttributeError, ValueError) as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e

    console.print()
    print_run_table(result)
    console.print(
        f"\n[dim]Total:[/dim] {format_duration(result.total_duration)}, {result.total_tokens:,} tokens"
        f"  [dim]Results:[/dim] {result.run_dir}"
    )
    if result.aborted:
        raise typer.Exit(1)


def results(
    name: str = typer.Argument(..., help="Ablation name"),
    timestamp: str | None = typer.Option(None, "--run", help="Run folder to show (default: latest)"),
    all_runs: bool = typer.Option(False, "--all", help="List every run instead of one"),
) -> None:
    """Show results of past runs of an ablation."""
    store = open_store()
    runs = store.list_runs(name)
    if not runs:
        console.print(f"[dim]No runs for {name}[/dim]")
        return

    if all_runs:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Run", style="cyan")
        table.add_column("Completed", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Tokens", justify="right")
        for folder, record in runs:
            table.add_row(
                folder + (" [yellow](aborted)[/yellow]" if record.aborted else ""),
                str(record.count("completed")),
                str(record.count("failed")),
                format_duration(record.total_duration),
                f"{record.total_tokens:,}",
            )
        console.print(table)
        return

    selected = runs[0] if timestamp is None else next((r for r in runs if r[0] == timestamp), None)
    if selected is None:
        console.print(f"[red]Error:[/red] Run '{timestamp}' not found for {name}")
        raise typer.Exit(1)

    folder, record = selected
    console.print(f"[bold]{record.ablation_name}[/bold] [dim]{folder}[/dim]")
    print_run_table(record)
