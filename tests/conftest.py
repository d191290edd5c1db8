# Copyright (c) Syntropy Systems
"""Pytest fixtures for mcplab tests."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from mcplab.ablate.scheduler import TurnOutcome
from mcplab.config import LabConfig, LabPaths, save_config
from mcplab.errors import ToolTimeoutError
from mcplab.models.tools import ContentBlock, ToolInfo
from mcplab.tools.registry import ServerPool

# Store original cwd at module load time
_original_cwd = Path.cwd()

Handler = Callable[[dict], object]


class FakeToolServer:
    """In-process ToolServer whose tools are plain functions.

    A handler returns a value that is sent back as JSON text, or raises.
    ``block`` makes every call wait until the event is set.
    """

    def __init__(self, name: str, handlers: dict[str, Handler] | None = None) -> None:
        self.name = name
        self.handlers = handlers or {}
        self.calls: list[tuple[str, dict]] = []
        self.restarts = 0
        self.closed = False
        self.block: threading.Event | None = None

    @property
    def tools(self) -> list[ToolInfo]:
        return [ToolInfo(name=name, description=f"{name} tool") for name in self.handlers]

    def request(self, tool_name: str, arguments: dict, timeout: float) -> list[ContentBlock]:
        self.calls.append((tool_name, arguments))
        if self.block is not None and not self.block.wait(timeout):
            msg = f"Request timed out after {timeout}s"
            raise ToolTimeoutError(msg)
        value = self.handlers[tool_name](arguments)
        text = value if isinstance(value, str) else json.dumps(value)
        return [ContentBlock(type="text", text=text)]

    def restart(self) -> None:
        self.restarts += 1
        if self.block is not None:
            self.block.set()

    def close(self) -> None:
        self.closed = True

    def called(self, tool_name: str) -> int:
        return sum(1 for name, _ in self.calls if name == tool_name)


class FakeAgentLoop:
    """Agent loop that answers every query with one model round trip.

    ``tool_calls`` maps a word in the query to a (tool, args) pair the
    "model" calls through the gate; ``fail_on`` maps a model name to a
    query substring that makes the turn fail.
    """

    def __init__(
        self,
        tool_calls: dict[str, tuple[str, dict]] | None = None,
        fail_on: dict[str, str] | None = None,
        tokens: tuple[int, int] = (10, 5),
    ) -> None:
        self.tool_calls = tool_calls or {}
        self.fail_on = fail_on or {}
        self.tokens = tokens
        self.model: str | None = None
        self.queries: list[tuple[str | None, str]] = []
        self.switches: list[str] = []

    def switch_model(self, model) -> None:
        self.model = model.model
        self.switches.append(model.label)

    def process_query(self, query, session, gate, max_iterations, attachments) -> TurnOutcome:
        self.queries.append((self.model, query))
        for word, (tool_name, args) in self.tool_calls.items():
            if word in query:
                result = gate.execute(tool_name, args)
                session.add_tool_execution(tool_name, args, result.text)
        session.add_assistant_message(f"{self.model}: {query}")
        session.record_round_trip(*self.tokens)
        failing = self.fail_on.get(self.model or "")
        if failing is not None and failing in query:
            return TurnOutcome(error=f"{self.model} refused")
        return TurnOutcome(response="ok")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def lab_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary mcplab project and chdir into it."""
    lab_dir = temp_dir / ".mcplab"
    LabPaths(lab_dir).ensure()
    _ = save_config(LabConfig(), lab_dir)

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def lab_paths(lab_project: Path) -> LabPaths:
    return LabPaths(lab_project / ".mcplab")


@pytest.fixture
def fake_server() -> FakeToolServer:
    """A server named 'fs' with write/read/status tools."""
    files: dict[str, str] = {}

    def write(args: dict) -> object:
        files[args["path"]] = args.get("content", "")
        return {"status": "success", "path": args["path"]}

    def read(args: dict) -> object:
        return files.get(args["path"], "")

    def status(args: dict) -> object:
        return {"status": args.get("status", "success")}

    return FakeToolServer("fs", {"write": write, "read": read, "status": status})


@pytest.fixture
def pool(fake_server: FakeToolServer) -> ServerPool:
    return ServerPool([fake_server])
