# Copyright (c) Syntropy Systems
"""mcplab ablate commands that edit phases and models."""
from __future__ import annotations

import typer
from rich.console import Console

from mcplab.cli.ablate.manage import load_or_exit, open_store, parse_model
from mcplab.errors import InvalidDefinitionError
from mcplab.models.ablation import AblationPhase

console = Console()


def add_phase(
    name: str = typer.Argument(..., help="Ablation name"),
    phase: str = typer.Argument(..., help="Phase name"),
    command: list[str] = typer.Option([], "--command", "-c", help="Prompt or directive (repeatable)"),
    on_start: list[str] = typer.Option([], "--on-start", help="Command run before the phase (repeatable)"),
    on_end: list[str] = typer.Option([], "--on-end", help="Command run after the phase (repeatable)"),
) -> None:
    """Append a phase to an ablation.

    Example:
        mcplab ablate add-phase study baseline -c "Summarize {{ doc }}" -c "@tool:fs__list()"

    """
    store = open_store()
    _ = load_or_exit(store, name)
    try:
        _ = store.add_phase(
            name,
            AblationPhase(
                name=phase,
                commands=command,
                on_start=on_start or None,
                on_end=on_end or None,
            ),
        )
    except InvalidDefinitionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"[green]Added phase[/green] {phase} ({len(command)} command(s))")


def remove_phase(
    name: str = typer.Argument(..., help="Ablation name"),
    phase: str = typer.Argument(..., help="Phase name"),
) -> None:
    """Remove a phase from an ablation."""
    store = open_store()
    _ = load_or_exit(store, name)
    try:
        _ = store.remove_phase(name, phase)
    except InvalidDefinitionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"[green]Removed phase[/green] {phase}")


def add_model(
    name: str = typer.Argument(..., help="Ablation name"),
    models: list[str] = typer.Argument(..., help="Models as provider/model"),
) -> None:
    """Add models to an ablation; duplicates are ignored."""
    store = open_store()
    _ = load_or_exit(store, name)
    definition = store.add_models(name, [parse_model(m) for m in models])
    console.print(f"[green]Models:[/green] {', '.join(m.label for m in definition.models)}")


def remove_model(
    name: str = typer.Argument(..., help="Ablation name"),
    models: list[str] = typer.Argument(..., help="Models as provider/model"),
) -> None:
    """Remove models from an ablation."""
    store = open_store()
    _ = load_or_exit(store, name)
    definition = store.remove_models(name, [parse_model(m) for m in models])
    remaining = ", ".join(m.label for m in definition.models)
    console.print(f"[green]Models:[/green] {remaining or '[dim]none[/dim]'}")
