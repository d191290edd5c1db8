# Copyright (c) Syntropy Systems
"""CLI command for running the mcplab HTTP server."""
from __future__ import annotations

import typer
from rich.console import Console

from mcplab.config import require_lab_dir

console = Console()


def server(
    port: int = typer.Option(8080, "--port", "-p", help="Port to listen on"),
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    agent: str | None = typer.Option(
        None,
        "--agent",
        envvar="MCPLAB_AGENT_LOOP",
        help="Agent loop for non-dry-run ablations, as module:attribute",
    ),
) -> None:
    """
    Start the mcplab HTTP API for the current lab.

    Ablation runs are streamed back as newline-delimited JSON events.

    Examples:

        # Serve the lab in the current directory
        mcplab server

        # Bind to all interfaces with an agent loop
        mcplab server --host 0.0.0.0 --agent my_agents:loop
    """
    try:
        import uvicorn
    except ImportError as e:
        console.print("[red]Error:[/red] uvicorn is required for server mode.")
        console.print("Install with: pip install mcplab[server]")
        raise typer.Exit(1) from e

    try:
        lab_dir = require_lab_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print("[bold]mcplab server[/bold]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Lab:  {lab_dir}")
    if agent:
        console.print(f"  Agent: {agent}")
    console.print()

    # Import and create app here to handle import errors gracefully
    try:
        from mcplab.server.app import create_app
    except ImportError as e:
        console.print(f"[red]Error:[/red] Missing dependency: {e}")
        console.print("Install server dependencies with: pip install mcplab[server]")
        raise typer.Exit(1) from e

    app = create_app(lab_dir, agent_loop=agent)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
    )
