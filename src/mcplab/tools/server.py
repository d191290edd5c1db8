# Copyright (c) Syntropy Systems
"""Tool server connections.

StdioToolServer speaks newline-delimited JSON-RPC 2.0 to a child process:
``initialize`` / ``notifications/initialized`` once, then ``tools/list`` and
``tools/call``. A reader thread dispatches responses to waiting requests by id.
"""
from __future__ import annotations

import itertools
import json
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, cast

from mcplab.errors import ToolExecutionError, ToolServerError, ToolTimeoutError
from mcplab.models.tools import ContentBlock, ServerSpec, ToolInfo
from mcplab.runner import ServerProcess

if TYPE_CHECKING:
    from mcplab.models.base import JSONObject

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO: JSONObject = {"name": "mcplab", "version": "0.1.0"}
HANDSHAKE_TIMEOUT = 30.0


class ToolServer(Protocol):
    """A connection to one tool server."""

    name: str

    @property
    def tools(self) -> list[ToolInfo]: ...

    def request(self, tool_name: str, arguments: JSONObject, timeout: float) -> list[ContentBlock]:
        """Call a tool, blocking until it answers.

        Raises:
            ToolTimeoutError: If no answer arrives within timeout seconds.
            ToolExecutionError: If the server reports a protocol error.

        """
        ...

    def restart(self) -> None:
        """Kill the server and reconnect, dropping in-flight requests."""
        ...

    def close(self) -> None: ...


class _PendingRequest:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.response: JSONObject | None = None
        self.error: str | None = None


class StdioToolServer:
    """Tool server spoken to over a child process's stdin/stdout."""

    def __init__(
        self,
        name: str,
        spec: ServerSpec,
        kill_grace_period: float = 5.0,
        stderr_path: Path | None = None,
    ) -> None:
        self.name = name
        self.spec = spec
        self.kill_grace_period = kill_grace_period
        self.stderr_path = stderr_path
        self._process: ServerProcess | None = None
        self._reader: threading.Thread | None = None
        self._pending: dict[int, _PendingRequest] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._tools: list[ToolInfo] = []
        self.server_info: JSONObject = {}

    @property
    def tools(self) -> list[ToolInfo]:
        return list(self._tools)

    @property
    def is_connected(self) -> bool:
        return self._process is not None and self._process.is_running

    def connect(self) -> None:
        """Start the server process, perform the handshake and list tools."""
        process = ServerProcess(
            [self.spec.command, *self.spec.args],
            workdir=Path(self.spec.cwd) if self.spec.cwd else None,
            env=self.spec.env,
            stderr_path=self.stderr_path,
        )
        try:
            process.start()
        except OSError as e:
            msg = f'Failed to start tool server "{self.name}": {e}'
            raise ToolServerError(msg) from e

        self._process = process
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(process,),
            name=f"mcplab-reader-{self.name}",
            daemon=True,
        )
        self._reader.start()

        try:
            init = self._rpc(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": CLIENT_INFO,
                },
                HANDSHAKE_TIMEOUT,
            )
            server_info = init.get("serverInfo")
            if isinstance(server_info, dict):
                self.server_info = server_info
            self._notify("notifications/initialized")
            self._tools = self._list_tools()
        except (ToolServerError, ToolTimeoutError):
            self.close()
            raise
        logger.info('Connected to tool server "%s" (%d tools)', self.name, len(self._tools))

    def _list_tools(self) -> list[ToolInfo]:
        tools: list[ToolInfo] = []
        cursor: str | None = None
        while True:
            params: JSONObject = {"cursor": cursor} if cursor else {}
            result = self._rpc("tools/list", params, HANDSHAKE_TIMEOUT)
            raw_tools = result.get("tools")
            if isinstance(raw_tools, list):
                tools.extend(ToolInfo.model_validate(t) for t in raw_tools)
            next_cursor = result.get("nextCursor")
            if not isinstance(next_cursor, str) or not next_cursor:
                return tools
            cursor = next_cursor

    def request(self, tool_name: str, arguments: JSONObject, timeout: float) -> list[ContentBlock]:
        try:
            result = self._rpc("tools/call", {"name": tool_name, "arguments": arguments}, timeout)
        except ToolServerError as e:
            raise ToolExecutionError(f"{self.name}__{tool_name}", str(e)) from e
        raw_content = result.get("content")
        if not isinstance(raw_content, list):
            return []
        return [ContentBlock.model_validate(block) for block in raw_content]

    def restart(self) -> None:
        logger.warning('Restarting tool server "%s"', self.name)
        self.close()
        self.connect()

    def close(self) -> None:
        process = self._process
        self._process = None
        if process is not None:
            _ = process.kill(grace_period=self.kill_grace_period)
        self._fail_pending("server connection closed")
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=1.0)
        self._reader = None

    # JSON-RPC plumbing

    def _send(self, message: JSONObject) -> None:
        process = self._process
        if process is None:
            msg = f'Tool server "{self.name}" is not connected'
            raise ToolServerError(msg)
        data = (json.dumps(message) + "\n").encode()
        with self._write_lock:
            try:
                _ = process.stdin.write(data)
                process.stdin.flush()
            except (OSError, RuntimeError, ValueError) as e:
                msg = f'Tool server "{self.name}" is not accepting input: {e}'
                raise ToolServerError(msg) from e

    def _notify(self, method: str) -> None:
        self._send({"jsonrpc": "2.0", "method": method})

    def _rpc(self, method: str, params: JSONObject, timeout: float) -> JSONObject:
        request_id = next(self._ids)
        pending = _PendingRequest()
        with self._lock:
            self._pending[request_id] = pending
        try:
            self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            if not pending.done.wait(timeout):
                msg = f'Request "{method}" to "{self.name}" timed out after {timeout:g}s'
                raise ToolTimeoutError(msg)
        finally:
            with self._lock:
                _ = self._pending.pop(request_id, None)

        if pending.error is not None:
            raise ToolServerError(pending.error)
        response = pending.response or {}
        error = response.get("error")
        if isinstance(error, dict):
            msg = str(error.get("message", "unknown error"))
            raise ToolServerError(msg)
        result = response.get("result")
        return cast("JSONObject", result) if isinstance(result, dict) else {}

    def _read_loop(self, process: ServerProcess) -> None:
        try:
            for line in process.stdout:
                text = line.decode(errors="replace").strip()
                if not text:
                    continue
                try:
                    message = json.loads(text)
                except ValueError:
                    logger.debug('Ignoring non-JSON output from "%s": %s', self.name, text)
                    continue
                if not isinstance(message, dict):
                    continue
                request_id = message.get("id")
                if not isinstance(request_id, int) or "method" in message:
                    # Server-initiated requests and notifications are not handled
                    continue
                with self._lock:
                    pending = self._pending.get(request_id)
                if pending is not None:
                    pending.response = message
                    pending.done.set()
        except (OSError, ValueError, RuntimeError):
            logger.debug('Reader for "%s" stopped', self.name, exc_info=True)
        if self._process is process:
            self._fail_pending(f'Tool server "{self.name}" exited')

    def _fail_pending(self, reason: str) -> None:
        with self._lock:
            pending = list(self._pending.values())
        for request in pending:
            if not request.done.is_set():
                request.error = reason
                request.done.set()
