# Copyright (c) Syntropy Systems
"""Parsing of phase commands and hook directives.

A command is either a directive handled by the client itself or free text
sent to the model:

- ``@tool:server__tool {"arg": "value"}`` calls a tool and feeds the result
  back into the conversation.
- ``@tool-exec:server__tool(arg='value', n=2)`` calls a tool without
  injecting the result.
- ``@abort`` stops the remaining phases for the current model.
- ``@complete-phase`` or ``@complete-phase:<name>`` ends a phase early.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Literal, cast

from mcplab.models.base import JSONObject, JSONValue

TOOL_PREFIX = "@tool:"
TOOL_EXEC_PREFIX = "@tool-exec:"
ABORT_COMMAND = "@abort"
COMPLETE_PHASE_COMMAND = "@complete-phase"

_TOOL_NAME = r"[a-zA-Z0-9_-]+__[a-zA-Z0-9_]+"
_PYTHON_CALL = re.compile(rf"^({_TOOL_NAME})\s*\((.*)\)\s*$", re.DOTALL)
_JSON_CALL = re.compile(rf"^({_TOOL_NAME})\s*(\{{.*\}})?\s*$", re.DOTALL)
_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

CommandKind = Literal["tool", "abort", "complete-phase", "query"]


@dataclass
class DirectToolCall:
    """A parsed ``@tool:`` or ``@tool-exec:`` directive."""

    tool_name: str
    args: JSONObject = field(default_factory=dict)
    # @tool: feeds the result to the model, @tool-exec: does not
    inject_result: bool = True


@dataclass
class ParsedCommand:
    """One classified phase command."""

    kind: CommandKind
    text: str
    tool_call: DirectToolCall | None = None
    # Target of @complete-phase:<name>; None completes the current phase
    phase_name: str | None = None


def _coerce_bare_value(raw: str) -> JSONValue:
    if raw in ("true", "True"):
        return True
    if raw in ("false", "False"):
        return False
    if raw in ("null", "None"):
        return None
    if _NUMBER.match(raw):
        number = float(raw)
        if number.is_integer() and "." not in raw and "e" not in raw.lower():
            return int(raw)
        return number
    return raw


def parse_python_args(args_str: str) -> JSONObject:
    """Parse Python-style keyword arguments: ``a='x', n=42, flag=True``.

    Quoted values are strings (backslash escapes honored); bare values are
    booleans, None/null, numbers, or otherwise unquoted strings. Parsing
    stops at the first malformed key.
    """
    args: JSONObject = {}
    i = 0
    length = len(args_str)
    while i < length:
        while i < length and args_str[i] in " ,\t\n":
            i += 1
        if i >= length:
            break

        key_start = i
        while i < length and args_str[i] not in "= ":
            i += 1
        key = args_str[key_start:i].strip()
        if not key:
            break

        while i < length and args_str[i] == " ":
            i += 1
        if i >= length or args_str[i] != "=":
            break
        i += 1
        while i < length and args_str[i] == " ":
            i += 1

        if i < length and args_str[i] in "'\"":
            quote = args_str[i]
            i += 1
            chars: list[str] = []
            while i < length and args_str[i] != quote:
                if args_str[i] == "\\" and i + 1 < length:
                    i += 1
                chars.append(args_str[i])
                i += 1
            i += 1  # closing quote
            args[key] = "".join(chars)
        else:
            value_start = i
            while i < length and args_str[i] not in ",)":
                i += 1
            args[key] = _coerce_bare_value(args_str[value_start:i].strip())

    return args


def parse_direct_tool_call(command: str) -> DirectToolCall | None:
    """Parse a ``@tool:``/``@tool-exec:`` directive.

    Accepts JSON arguments, Python-call arguments or no arguments. Returns
    None when the command is not a well-formed directive.
    """
    text = command.strip()
    if text.startswith(TOOL_EXEC_PREFIX):
        inject_result = False
        rest = text[len(TOOL_EXEC_PREFIX) :].strip()
    elif text.startswith(TOOL_PREFIX):
        inject_result = True
        rest = text[len(TOOL_PREFIX) :].strip()
    else:
        return None

    python_match = _PYTHON_CALL.match(rest)
    if python_match:
        args_str = python_match.group(2).strip()
        args = parse_python_args(args_str) if args_str else {}
        return DirectToolCall(python_match.group(1), args, inject_result)

    json_match = _JSON_CALL.match(rest)
    if json_match:
        try:
            loaded = json.loads(json_match.group(2) or "{}")
        except ValueError:
            return None
        if not isinstance(loaded, dict):
            return None
        return DirectToolCall(json_match.group(1), cast("JSONObject", loaded), inject_result)

    return None


def is_directive(command: str) -> bool:
    """Whether a command is handled by the client rather than the model."""
    return command.strip().startswith("@")


def parse_command(command: str) -> ParsedCommand:
    """Classify a phase command.

    Raises:
        ValueError: If the command looks like a directive but cannot be parsed.

    """
    text = command.strip()
    if text == ABORT_COMMAND:
        return ParsedCommand(kind="abort", text=text)
    if text == COMPLETE_PHASE_COMMAND or text.startswith(COMPLETE_PHASE_COMMAND + ":"):
        _, _, name = text.partition(":")
        return ParsedCommand(kind="complete-phase", text=text, phase_name=name.strip() or None)
    if text.startswith((TOOL_PREFIX, TOOL_EXEC_PREFIX)):
        tool_call = parse_direct_tool_call(text)
        if tool_call is None:
            msg = f"Invalid tool directive: {text}"
            raise ValueError(msg)
        return ParsedCommand(kind="tool", text=text, tool_call=tool_call)
    return ParsedCommand(kind="query", text=command)
