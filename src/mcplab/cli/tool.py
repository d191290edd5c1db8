# Copyright (c) Syntropy Systems
"""mcplab tool commands - list and call tools on the configured servers."""
from __future__ import annotations

import threading

import typer
from rich.table import Table

from mcplab.cli.common import abort_on_interrupt, console, open_lab
from mcplab.commands import TOOL_PREFIX, is_directive, parse_direct_tool_call
from mcplab.errors import MCPLabError

tool_app = typer.Typer(
    name="tool",
    help="Inspect and call tools exposed by MCP servers.",
    no_args_is_help=True,
)


@tool_app.command("list")
def list_tools(
    mcp_config: str | None = typer.Option(None, "--mcp-config", "-m", help="MCP config file to use"),
) -> None:
    """List tools of every connected server (as server__tool)."""
    with open_lab() as lab:
        tools = lab.gate(mcp_config).list_tools()

    if not tools:
        console.print("[dim]No tools available[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool")
    table.add_column("Description")
    for info in tools:
        description = info.description.strip().splitlines()[0] if info.description.strip() else ""
        table.add_row(info.name, description)
    console.print(table)


@tool_app.command("call")
def call(
    expression: str = typer.Argument(
        ...,
        help='Tool call, e.g. fs__read(path="a.txt") or fs__read {"path": "a.txt"}',
    ),
    mcp_config: str | None = typer.Option(None, "--mcp-config", "-m", help="MCP config file to use"),
) -> None:
    """Call one tool and print its result.

    Ctrl+C requests an abort; if the tool keeps running you are offered
    a force stop, which restarts its server.
    """
    direct = parse_direct_tool_call(expression if is_directive(expression) else TOOL_PREFIX + expression)
    if direct is None:
        console.print(f"[red]Error:[/red] Could not parse tool call: {expression}")
        raise typer.Exit(1)

    abort = threading.Event()
    with open_lab(abort_signal=abort) as lab:
        gate = lab.gate(mcp_config)
        try:
            with abort_on_interrupt(abort):
                result = gate.execute(direct.tool_name, direct.args)
        except MCPLabError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e

    if result.timed_out:
        console.print("[yellow]Tool call timed out[/yellow]")
    console.print(result.text, markup=False, highlight=False)
    if result.is_error:
        raise typer.Exit(1)
