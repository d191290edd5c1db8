# Copyright (c) Syntropy Systems
"""mcplab config command."""
from __future__ import annotations

from dataclasses import asdict, fields

import typer
from rich.console import Console
from rich.table import Table

from mcplab.config import LabConfig, load_config, require_lab_dir, save_config

console = Console()


def _coerce(field_type: object, raw: str) -> object:
    """Convert a CLI string to the type of a LabConfig field."""
    type_name = str(field_type)
    if raw.lower() in ("none", "null") and "None" in type_name:
        return None
    if type_name.startswith("int"):
        return int(raw)
    if type_name.startswith("float"):
        return float(raw)
    return raw


def config(
    key: str | None = typer.Argument(None, help="Setting to change"),
    value: str | None = typer.Argument(None, help="New value"),
) -> None:
    """Show settings, or change one with KEY VALUE.

    Examples:
        mcplab config
        mcplab config tool_timeout 120
        mcplab config mcp_config mcp.json

    """
    try:
        lab_dir = require_lab_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    current = load_config(lab_dir)

    if key is None:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Setting")
        table.add_column("Value")
        for name, setting in asdict(current).items():
            table.add_row(name, "-" if setting is None else str(setting))
        console.print(table)
        return

    field_types = {f.name: f.type for f in fields(LabConfig)}
    if key not in field_types:
        console.print(f"[red]Error:[/red] Unknown setting '{key}'")
        console.print(f"Known settings: {', '.join(field_types)}")
        raise typer.Exit(1)
    if value is None:
        console.print(f"{key} = {getattr(current, key)}")
        return

    try:
        setattr(current, key, _coerce(field_types[key], value))
    except ValueError as e:
        console.print(f"[red]Error:[/red] Invalid value for {key}: {value}")
        raise typer.Exit(1) from e

    _ = save_config(current, lab_dir)
    console.print(f"[green]Set[/green] {key} = {getattr(current, key)}")
