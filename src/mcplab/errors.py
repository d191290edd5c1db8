# Copyright (c) Syntropy Systems
"""Exception hierarchy for mcplab."""

from __future__ import annotations


class MCPLabError(Exception):
    """Base class for all mcplab errors."""


class InvalidDefinitionError(MCPLabError):
    """Raised when an ablation definition fails validation."""


class ToolServerError(MCPLabError):
    """Raised when a tool server connection cannot be used."""


class ToolNotFoundError(MCPLabError):
    """Raised when no connected server exposes the requested tool."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f'Tool "{tool_name}" not found in any server')


class ToolExecutionError(MCPLabError):
    """Raised when a tool call fails for a reason other than a timeout."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(f'Error executing tool "{tool_name}": {message}')


class ToolTimeoutError(MCPLabError):
    """Raised by a server connection when a request exceeds its timeout.

    The gate converts this into a non-fatal result for the caller.
    """


class ForceStoppedError(MCPLabError):
    """Raised when the user force-stops a stuck tool call.

    Fatal for the current turn: the agent loop must stop.
    """

    def __init__(self, tool_name: str, elapsed_seconds: float) -> None:
        self.tool_name = tool_name
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            f'Tool "{tool_name}" force stopped by user after '
            f"{int(elapsed_seconds)} seconds"
        )


class HookExecutionError(MCPLabError):
    """Raised when a before-hook fails and aborts the triggering call."""

    def __init__(self, trigger_tool: str, hook_run: str, cause: Exception) -> None:
        self.trigger_tool = trigger_tool
        self.hook_run = hook_run
        self.cause = cause
        super().__init__(
            f'Before-hook "{hook_run}" for "{trigger_tool}" failed: {cause}'
        )


class SnapshotIOError(MCPLabError):
    """Raised when the outputs directory cannot be stashed or captured."""


class SessionStateError(MCPLabError):
    """Raised on an invalid chat session state transition."""


class AgentTurnError(MCPLabError):
    """Raised when the agent loop reports a failed conversational turn."""
