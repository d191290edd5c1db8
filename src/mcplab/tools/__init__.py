# Copyright (c) Syntropy Systems
"""Tool servers and the gate every tool call passes through."""

from .gate import GateContext, PromptMutex, ToolCallGate
from .registry import ServerPool
from .server import StdioToolServer, ToolServer

__all__ = [
    "GateContext",
    "PromptMutex",
    "ServerPool",
    "StdioToolServer",
    "ToolCallGate",
    "ToolServer",
]
