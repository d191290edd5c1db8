# Copyright (c) Syntropy Systems
"""mcplab ablate create/list/show/delete commands."""
from __future__ import annotations

from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.table import Table

from mcplab.ablate import AblationStore
from mcplab.config import LabPaths, require_lab_dir
from mcplab.errors import InvalidDefinitionError
from mcplab.models.ablation import AblationDefinition, AblationModel

console = Console()


def open_store() -> AblationStore:
    """Ablation store of the nearest lab, or exit with an error."""
    try:
        lab_dir = require_lab_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    return AblationStore(LabPaths(lab_dir))


def load_or_exit(store: AblationStore, name: str) -> AblationDefinition:
    try:
        return store.load(name)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] Ablation '{name}' not found")
        raise typer.Exit(1) from e
    except InvalidDefinitionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def parse_model(raw: str) -> AblationModel:
    """Parse ``provider/model`` into an AblationModel."""
    provider, sep, model = raw.partition("/")
    if not sep or not provider or not model:
        console.print(f"[red]Error:[/red] Invalid model '{raw}' (expected provider/model)")
        raise typer.Exit(1)
    return AblationModel(provider=provider, model=model)


def create(
    name: str = typer.Argument(..., help="Name for the ablation"),
    description: str = typer.Option("", "--description", "-d", help="What the ablation tests"),
    model: list[str] = typer.Option([], "--model", "-m", help="Model as provider/model (repeatable)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only run @tool directives, no model"),
    runs: int = typer.Option(1, "--runs", "-r", min=1, help="Iterations of every scenario"),
    from_file: Path | None = typer.Option(
        None,
        "--from-file",
        "-f",
        exists=True,
        dir_okay=False,
        help="Import a full definition from a YAML file",
    ),
) -> None:
    """Create a new ablation definition.

    Example:
        mcplab ablate create tool-choice -m anthropic/claude-sonnet-4 -m openai/gpt-4o

    """
    store = open_store()

    if from_file is not None:
        with from_file.open() as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            console.print(f"[red]Error:[/red] {from_file} does not contain a mapping")
            raise typer.Exit(1)
        data["name"] = name
    else:
        data = {
            "name": name,
            "description": description,
            "models": [parse_model(m).model_dump() for m in model],
            "dryRun": dry_run,
            "runs": runs,
        }

    try:
        definition = store.create(AblationDefinition.from_document(data))
    except (ValueError, InvalidDefinitionError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[green]Created ablation:[/green] {definition.name}")
    console.print(f"  [dim]file:[/dim] {store.definition_path(definition.name)}")
    console.print("\nNext steps:")
    console.print(f'  1. Add a phase: [cyan]mcplab ablate add-phase {definition.name} baseline -c "..."[/cyan]')
    console.print(f"  2. Run it:      [cyan]mcplab ablate run {definition.name}[/cyan]")


def list_ablations() -> None:
    """List ablation definitions, newest first."""
    store = open_store()
    definitions = store.list_definitions()
    if not definitions:
        console.print("[dim]No ablations defined[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Phases", justify="right")
    table.add_column("Models")
    table.add_column("Runs", justify="right")
    table.add_column("Created")

    for definition in definitions:
        models = "dry-run" if definition.dry_run else ", ".join(m.short_name for m in definition.models)
        table.add_row(
            definition.name,
            str(len(definition.phases)),
            models or "-",
            str(definition.runs),
            definition.created[:19].replace("T", " ") if definition.created else "-",
        )
    console.print(table)


def show(name: str = typer.Argument(..., help="Ablation name")) -> None:
    """Show an ablation definition."""
    store = open_store()
    definition = load_or_exit(store, name)
    console.print(
        yaml.safe_dump(definition.to_ordered_document(), sort_keys=False, allow_unicode=True),
        markup=False,
        highlight=False,
    )


def delete(
    name: str = typer.Argument(..., help="Ablation name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete an ablation definition (its runs are kept)."""
    store = open_store()
    if not store.exists(name):
        console.print(f"[red]Error:[/red] Ablation '{name}' not found")
        raise typer.Exit(1)
    if not yes and not typer.confirm(f"Delete ablation '{name}'?"):
        raise typer.Exit(0)
    _ = store.delete(name)
    console.print(f"[green]Deleted ablation:[/green] {name}")
