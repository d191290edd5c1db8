# Copyright (c) Syntropy Systems
"""Pydantic models for tool servers and tool results."""

from __future__ import annotations

import json

from pydantic import Field

from .base import ExtraAllowModel, JSONObject, JSONValue, LabBaseModel


class ToolInfo(LabBaseModel):
    """A tool advertised by a server."""

    name: str
    description: str = ""
    input_schema: JSONObject = Field(default_factory=dict)


class ContentBlock(ExtraAllowModel):
    """One block of tool output (text, image, resource...)."""

    type: str
    text: str | None = None


class ServerSpec(LabBaseModel):
    """How to launch one stdio tool server."""

    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None


class ToolResult(LabBaseModel):
    """Result of one tool call as seen by the caller."""

    tool_name: str
    text: str
    content: list[ContentBlock] = Field(default_factory=list)
    parsed: JSONValue = None
    timed_out: bool = False
    is_error: bool = False

    @classmethod
    def from_content(cls, tool_name: str, content: list[ContentBlock], *, is_error: bool = False) -> ToolResult:
        """Build a result from raw content blocks.

        Text blocks are joined. JSON text is kept parsed and pretty-printed;
        anything else is wrapped in a one-element JSON array.
        """
        text_content = "".join(block.text or "" for block in content if block.type == "text")
        try:
            parsed: JSONValue = json.loads(text_content)
        except ValueError:
            return cls(
                tool_name=tool_name,
                text=json.dumps([text_content], indent=2),
                content=content,
                is_error=is_error,
            )
        return cls(
            tool_name=tool_name,
            text=json.dumps(parsed, indent=2),
            content=content,
            parsed=parsed,
            is_error=is_error,
        )

    @classmethod
    def timeout(cls, tool_name: str, details: str) -> ToolResult:
        """Structured non-fatal result reported when a call times out."""
        payload: list[JSONValue] = [
            {
                "error": "timeout",
                "message": (
                    f'Tool execution timed out. The tool "{tool_name}" did not '
                    "complete within the configured timeout period. Previous tool "
                    "results are still available. You can try again with different "
                    "parameters or continue with other tasks."
                ),
                "details": details,
            }
        ]
        return cls(
            tool_name=tool_name,
            text=json.dumps(payload, indent=2),
            parsed=payload,
            timed_out=True,
            is_error=True,
        )
