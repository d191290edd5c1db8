# Copyright (c) Syntropy Systems
"""Pydantic schemas for mcplab."""

from .ablation import (
    AblationArgument,
    AblationDefinition,
    AblationHook,
    AblationModel,
    AblationPhase,
    AblationSettings,
)
from .run import AblationRun, HookProvenance, ProgressEvent, RunResult, ToolExecLogEntry
from .session import ChatMessage, ChatMetadata, ChatSession
from .tools import ContentBlock, ServerSpec, ToolInfo, ToolResult

__all__ = [
    "AblationArgument",
    "AblationDefinition",
    "AblationHook",
    "AblationModel",
    "AblationPhase",
    "AblationRun",
    "AblationSettings",
    "ChatMessage",
    "ChatMetadata",
    "ChatSession",
    "ContentBlock",
    "HookProvenance",
    "ProgressEvent",
    "RunResult",
    "ServerSpec",
    "ToolExecLogEntry",
    "ToolInfo",
    "ToolResult",
]
