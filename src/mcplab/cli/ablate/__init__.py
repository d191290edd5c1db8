# Copyright (c) Syntropy Systems
"""mcplab ablate subcommand group."""

import typer

from mcplab.cli.ablate.edit import add_model, add_phase, remove_model, remove_phase
from mcplab.cli.ablate.manage import create, delete, list_ablations, show
from mcplab.cli.ablate.run import results, run

ablate_app = typer.Typer(
    name="ablate",
    help="Define and run ablations: phases of prompts and tool calls across models.",
    no_args_is_help=True,
)

# Register subcommands
_ = ablate_app.command()(create)
_ = ablate_app.command(name="list")(list_ablations)
_ = ablate_app.command()(show)
_ = ablate_app.command()(delete)
_ = ablate_app.command(name="add-phase")(add_phase)
_ = ablate_app.command(name="remove-phase")(remove_phase)
_ = ablate_app.command(name="add-model")(add_model)
_ = ablate_app.command(name="remove-model")(remove_model)
_ = ablate_app.command()(run)
_ = ablate_app.command()(results)
