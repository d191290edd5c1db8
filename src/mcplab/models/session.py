# Copyright (c) Syntropy Systems
"""Pydantic models for chat sessions."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from .base import JSONObject, LabBaseModel

MessageRole = Literal["user", "assistant", "tool", "client"]


class ChatMessage(LabBaseModel):
    """One entry of a conversation log."""

    timestamp: str
    role: MessageRole
    content: str
    content_blocks: list[JSONObject] | None = None
    tool_use_id: str | None = None
    attachments: list[str] | None = None
    tool_name: str | None = None
    tool_input: JSONObject | None = None
    tool_output: str | None = None
    tool_input_time: str | None = None
    tool_output_time: str | None = None
    # Tool calls made by the client itself (hooks, directives) rather than the model
    is_internal: bool = False

    @property
    def is_agent_tool_call(self) -> bool:
        return self.role == "tool" and not self.is_internal


class TokenUsage(LabBaseModel):
    """Token accounting for one model round-trip."""

    timestamp: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class SessionMetadata(LabBaseModel):
    """Counters derived from the message log."""

    message_count: int = 0
    tool_use_count: int = 0
    ipc_call_count: int = 0
    cumulative_tokens: int = 0


class ChatSession(LabBaseModel):
    """A conversation with one model."""

    session_id: str
    start_time: str
    end_time: str | None = None
    model: str
    servers: list[str] = Field(default_factory=list)
    tools: list[JSONObject] = Field(default_factory=list)
    messages: list[ChatMessage] = Field(default_factory=list)
    token_usage: list[TokenUsage] = Field(default_factory=list)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)


class ChatMetadata(LabBaseModel):
    """Index entry describing a saved chat."""

    session_id: str
    start_time: str
    end_time: str
    duration: int  # milliseconds
    message_count: int
    tool_use_count: int
    ipc_call_count: int
    cumulative_tokens: int
    model: str
    servers: list[str] = Field(default_factory=list)
    summary: str | None = None
    file_path: str
