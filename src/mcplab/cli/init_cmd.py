# Copyright (c) Syntropy Systems
"""mcplab init command."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from mcplab.config import LAB_DIR_NAME, LabConfig, LabPaths, save_config

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
    mcp_config: str | None = typer.Option(
        None,
        "--mcp-config",
        "-m",
        help="MCP server config file (JSON, relative to the project root)",
    ),
) -> None:
    """Initialize a new mcplab project.

    Creates a .mcplab directory with configuration and data folders.
    """
    target = path.resolve()
    lab_dir = target / LAB_DIR_NAME

    if lab_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {lab_dir}")
        return

    paths = LabPaths(lab_dir)
    paths.ensure()

    config = LabConfig(mcp_config=mcp_config)
    config_path = save_config(config, lab_dir)

    console.print(f"[green]Initialized mcplab project:[/green] {lab_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]ablations:[/dim] {paths.ablations_dir}")
    console.print(f"  [dim]outputs:[/dim] {paths.outputs_dir}")
    console.print(f"  [dim]attachments:[/dim] {paths.attachments_dir}")
