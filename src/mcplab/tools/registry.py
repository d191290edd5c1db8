# Copyright (c) Syntropy Systems
"""Loading MCP server configs and routing tool names to servers."""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from mcplab.errors import ToolNotFoundError, ToolServerError, ToolTimeoutError
from mcplab.models.tools import ServerSpec, ToolInfo
from mcplab.tools.server import StdioToolServer

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from mcplab.tools.server import ToolServer

logger = logging.getLogger(__name__)

TOOL_SEPARATOR = "__"


def load_server_specs(config_path: Path) -> dict[str, ServerSpec]:
    """Read ``{"mcpServers": {name: {command, args, env, cwd}}}`` from a JSON file."""
    try:
        data = json.loads(config_path.read_text())
    except (OSError, ValueError) as e:
        msg = f"Cannot read MCP config {config_path}: {e}"
        raise ToolServerError(msg) from e

    servers = data.get("mcpServers") if isinstance(data, dict) else None
    if not isinstance(servers, dict):
        msg = f'MCP config {config_path} has no "mcpServers" object'
        raise ToolServerError(msg)

    specs: dict[str, ServerSpec] = {}
    for name, raw in servers.items():
        try:
            specs[name] = ServerSpec.model_validate(raw)
        except ValidationError as e:
            msg = f'Invalid MCP server entry "{name}": {e}'
            raise ToolServerError(msg) from e
    return specs


def prefixed_name(server_name: str, tool_name: str) -> str:
    return f"{server_name}{TOOL_SEPARATOR}{tool_name}"


class ServerPool:
    """The set of connected tool servers, in connection order."""

    def __init__(self, servers: list[ToolServer] | None = None) -> None:
        self._servers: dict[str, ToolServer] = {}
        for server in servers or []:
            self.add(server)

    def add(self, server: ToolServer) -> None:
        self._servers[server.name] = server

    def get(self, name: str) -> ToolServer | None:
        return self._servers.get(name)

    def __iter__(self) -> Iterator[ToolServer]:
        return iter(list(self._servers.values()))

    def __len__(self) -> int:
        return len(self._servers)

    @property
    def names(self) -> list[str]:
        return list(self._servers)

    def all_tools(self) -> list[ToolInfo]:
        """Every tool of every server, named ``server__tool``."""
        return [
            tool.model_copy(update={"name": prefixed_name(server.name, tool.name)})
            for server in self
            for tool in server.tools
        ]

    def resolve(self, tool_name: str) -> tuple[ToolServer, str]:
        """Find the server owning a tool and the tool's name on that server.

        ``server__tool`` routes to the named server. Anything else falls back
        to the first server exposing a tool with that exact name or with a
        ``__<name>`` suffix.

        Raises:
            ToolNotFoundError: If no server matches.

        """
        if TOOL_SEPARATOR in tool_name:
            server_name, actual = tool_name.split(TOOL_SEPARATOR, 1)
            server = self._servers.get(server_name)
            if server is not None:
                return server, actual

        suffix = TOOL_SEPARATOR + tool_name
        for server in self:
            for tool in server.tools:
                if tool.name == tool_name or tool.name.endswith(suffix):
                    return server, tool.name

        raise ToolNotFoundError(tool_name)

    def close_all(self) -> None:
        for server in self:
            try:
                server.close()
            except ToolServerError:
                logger.exception('Failed to close tool server "%s"', server.name)
        self._servers.clear()

    @classmethod
    def connect(
        cls,
        config_path: Path,
        kill_grace_period: float = 5.0,
        log_dir: Path | None = None,
    ) -> ServerPool:
        """Start and connect every server listed in an MCP config file.

        Servers that fail to start are logged and left out of the pool.
        """
        pool = cls()
        for name, spec in load_server_specs(config_path).items():
            server = StdioToolServer(
                name,
                spec,
                kill_grace_period=kill_grace_period,
                stderr_path=log_dir / f"{name}.stderr.log" if log_dir is not None else None,
            )
            try:
                server.connect()
            except (ToolServerError, ToolTimeoutError):
                logger.exception('Could not connect to tool server "%s"', name)
                continue
            pool.add(server)
        return pool
