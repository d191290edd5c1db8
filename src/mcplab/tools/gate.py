# Copyright (c) Syntropy Systems
"""Tool-call execution with user abort and force-stop handling.

Each call runs its blocking server request on a worker thread while the
calling thread polls the abort signal. After an abort the call keeps
running; only once ``force_stop_after`` seconds have passed is the user
asked whether to force-stop it. At most one such prompt is on screen at a
time across the process (``PromptMutex``). Hook-triggered (internal) calls
are stopped without asking.

Per-call state machine::

    idle -> abort_detected -> counting -> prompt_shown -> stopped
                                  ^                         |
                                  +------ idle <-- declined-+
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol

from mcplab.errors import (
    ForceStoppedError,
    ToolExecutionError,
    ToolServerError,
    ToolTimeoutError,
)
from mcplab.models.tools import ContentBlock, ToolInfo, ToolResult

if TYPE_CHECKING:
    from mcplab.hooks.engine import HookEngine
    from mcplab.models.base import JSONObject
    from mcplab.tools.registry import ServerPool
    from mcplab.tools.server import ToolServer

logger = logging.getLogger(__name__)

ForceStopState = Literal["idle", "abort_detected", "counting", "prompt_shown", "stopped"]

DEFAULT_TIMEOUT_SECONDS = 60
UNLIMITED_TIMEOUT_SECONDS = 3600


class AbortSignal(Protocol):
    """Set by the user interface when the user asks to abort (threading.Event fits)."""

    def is_set(self) -> bool: ...


class ForceStopPrompt(Protocol):
    """Asks the user whether to force-stop a call; True means stop."""

    def __call__(self, tool_name: str, elapsed_seconds: float) -> bool: ...


class TimeoutPreferences(Protocol):
    """Source of the per-call timeout in seconds (-1 for unlimited)."""

    def get_tool_timeout(self) -> int: ...


class PromptMutex:
    """Process-wide guard allowing a single force-stop prompt at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holder: str | None = None

    def try_acquire(self, holder: str) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self._holder = holder
        return True

    def release(self) -> None:
        self._holder = None
        self._lock.release()

    @property
    def holder(self) -> str | None:
        return self._holder

    @property
    def locked(self) -> bool:
        return self._lock.locked()


def _never_aborted() -> threading.Event:
    return threading.Event()


@dataclass
class GateContext:
    """State shared by every gate in a process."""

    abort_signal: AbortSignal = field(default_factory=_never_aborted)
    prompt: ForceStopPrompt | None = None
    mutex: PromptMutex = field(default_factory=PromptMutex)
    poll_interval: float = 0.5
    force_stop_after: float = 15.0


class ForceStopMachine:
    """Abort/force-stop state of one pending call."""

    def __init__(self, context: GateContext, tool_name: str, internal: bool = False) -> None:
        self.context = context
        self.tool_name = tool_name
        self.internal = internal
        self.state: ForceStopState = "idle"
        self._counting_since: float | None = None

    @property
    def elapsed(self) -> float:
        """Seconds since the abort was first noticed in this cycle."""
        if self._counting_since is None:
            return 0.0
        return time.monotonic() - self._counting_since

    def reset(self) -> None:
        self.state = "idle"
        self._counting_since = None

    def poll(self) -> bool:
        """Advance one poll step; returns True when the call must be stopped."""
        if self.state == "idle":
            if not self.context.abort_signal.is_set():
                return False
            self.state = "abort_detected"
            logger.debug('Abort detected while "%s" is pending', self.tool_name)

        if self.state == "abort_detected":
            self.state = "counting"
            self._counting_since = time.monotonic()

        if self.state == "counting" and self.elapsed >= self.context.force_stop_after:
            return self._on_countdown_elapsed()

        return self.state == "stopped"

    def _on_countdown_elapsed(self) -> bool:
        mutex = self.context.mutex
        # Another call is prompting; keep counting and retry next poll
        if not mutex.try_acquire(self.tool_name):
            return False
        try:
            if self.internal:
                self.state = "stopped"
                return True
            prompt = self.context.prompt
            if prompt is None:
                return False
            self.state = "prompt_shown"
            try:
                confirmed = prompt(self.tool_name, self.elapsed)
            except Exception:
                logger.exception('Force-stop prompt failed for "%s"', self.tool_name)
                confirmed = False
            if confirmed:
                self.state = "stopped"
                return True
            self.reset()
            return False
        finally:
            mutex.release()


class _PendingCall:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.content: list[ContentBlock] | None = None
        self.error: BaseException | None = None


def resolve_timeout(preferences: TimeoutPreferences | None) -> float:
    """Per-call timeout in seconds; -1 maps to one hour."""
    seconds = preferences.get_tool_timeout() if preferences is not None else DEFAULT_TIMEOUT_SECONDS
    return float(UNLIMITED_TIMEOUT_SECONDS if seconds == -1 else seconds)


class ToolCallGate:
    """Routes tool calls to servers and supervises them until they finish."""

    def __init__(
        self,
        pool: ServerPool,
        context: GateContext | None = None,
        preferences: TimeoutPreferences | None = None,
        hooks: HookEngine | None = None,
    ) -> None:
        self.pool = pool
        self.context = context or GateContext()
        self.preferences = preferences
        self.hooks = hooks

    def list_tools(self) -> list[ToolInfo]:
        return self.pool.all_tools()

    def execute(self, tool_name: str, tool_input: JSONObject, internal: bool = False) -> ToolResult:
        """Run one tool call, firing hooks around it.

        A timeout is returned as a result with ``timed_out`` set.

        Raises:
            ToolNotFoundError: If no server exposes the tool.
            ToolExecutionError: If the server fails the call.
            ForceStoppedError: If the user force-stopped the call.
            HookExecutionError: If a before-hook fails.

        """
        if not internal:
            logger.info("Tool call %s %s", tool_name, json.dumps(tool_input))

        if self.hooks is not None:
            self.hooks.fire_before(tool_name, tool_input, self.execute_internal)

        result = self._call(tool_name, tool_input, internal)

        if self.hooks is not None and not result.timed_out:
            self.hooks.fire_after(tool_name, tool_input, result, self.execute_internal)
        return result

    def execute_internal(self, tool_name: str, tool_input: JSONObject) -> ToolResult:
        """Entry point for calls made by hooks and client directives."""
        return self.execute(tool_name, tool_input, internal=True)

    def _call(self, tool_name: str, tool_input: JSONObject, internal: bool) -> ToolResult:
        server, actual_name = self.pool.resolve(tool_name)
        timeout = resolve_timeout(self.preferences)
        pending = _PendingCall()

        def _worker() -> None:
            try:
                pending.content = server.request(actual_name, tool_input, timeout)
            except BaseException as e:  # noqa: BLE001
                pending.error = e
            finally:
                pending.done.set()

        worker = threading.Thread(target=_worker, name=f"mcplab-call-{tool_name}", daemon=True)
        worker.start()

        machine = ForceStopMachine(self.context, tool_name, internal=internal)
        while not pending.done.wait(self.context.poll_interval):
            if machine.poll() and not pending.done.is_set():
                self._force_stop(server, tool_name, machine.elapsed)

        return self._to_result(tool_name, pending)

    def _force_stop(self, server: ToolServer, tool_name: str, elapsed: float) -> None:
        logger.warning('Force-stopping "%s" after %.1fs', tool_name, elapsed)
        try:
            server.restart()
        except (ToolServerError, ToolTimeoutError):
            logger.exception('Restart of tool server "%s" failed', server.name)
        raise ForceStoppedError(tool_name, elapsed)

    def _to_result(self, tool_name: str, pending: _PendingCall) -> ToolResult:
        error = pending.error
        if error is None:
            return ToolResult.from_content(tool_name, pending.content or [])

        if isinstance(error, ToolTimeoutError):
            details = str(ToolExecutionError(tool_name, str(error)))
            logger.warning("%s", details)
            return ToolResult.timeout(tool_name, details)
        if isinstance(error, ToolExecutionError):
            raise error
        if isinstance(error, Exception):
            raise ToolExecutionError(tool_name, str(error)) from error
        raise error
