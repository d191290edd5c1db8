# Copyright (c) Syntropy Systems
"""Helpers shared by mcplab CLI commands."""
from __future__ import annotations

import contextlib
import logging
import signal
import threading
from typing import TYPE_CHECKING, Callable

import typer
from rich.console import Console
from rich.logging import RichHandler

from mcplab.config import require_lab_dir
from mcplab.lab import Lab
from mcplab.tools.gate import GateContext

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import FrameType

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    """Route library logging through rich on stderr (warnings only unless verbose)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def confirm_force_stop(tool_name: str, elapsed_seconds: float) -> bool:
    """Console prompt shown when an aborted tool call keeps running."""
    console.print(
        f"\n[yellow]Tool[/yellow] {tool_name} [yellow]is still running "
        f"{int(elapsed_seconds)}s after abort.[/yellow]"
    )
    return typer.confirm("Force stop it (the server will be restarted)?", default=False)


def open_lab(abort_signal: threading.Event | None = None) -> Lab:
    """Open the nearest lab or exit with an error."""
    try:
        lab_dir = require_lab_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    context = GateContext(abort_signal=abort_signal or threading.Event(), prompt=confirm_force_stop)
    lab = Lab(lab_dir, context=context)
    context.poll_interval = lab.config.abort_poll_interval
    context.force_stop_after = lab.config.force_stop_after
    return lab


@contextlib.contextmanager
def abort_on_interrupt(abort: threading.Event, on_abort: Callable[[], None] | None = None) -> Iterator[None]:
    """First Ctrl+C sets ``abort``; a second one interrupts for real."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        if abort.is_set():
            raise KeyboardInterrupt
        abort.set()
        if on_abort is not None:
            on_abort()
        console.print("\n[yellow]Abort requested.[/yellow] Waiting for the current tool call (Ctrl+C again to quit)")

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        _ = signal.signal(signal.SIGINT, previous)
