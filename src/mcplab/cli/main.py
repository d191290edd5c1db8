# Copyright (c) Syntropy Systems
"""Main CLI entry point for mcplab."""

import typer

from mcplab.cli.ablate import ablate_app
from mcplab.cli.common import setup_logging
from mcplab.cli.config_cmd import config
from mcplab.cli.hooks import hooks_app
from mcplab.cli.init_cmd import init
from mcplab.cli.server_cmd import server
from mcplab.cli.tool import tool_app

app = typer.Typer(
    name="mcplab",
    help=(
        "Ablation runner for MCP tool servers. Script phases of prompts and "
        "tool calls, run them across models, compare the results."
    ),
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    setup_logging(verbose)


# Register commands
_ = app.command()(init)
_ = app.command()(config)
_ = app.command()(server)

# Register sub-apps
app.add_typer(tool_app, name="tool")
app.add_typer(hooks_app, name="hooks")
app.add_typer(ablate_app, name="ablate")


if __name__ == "__main__":
    app()
