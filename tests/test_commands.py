# Copyright (c) Syntropy Systems
"""Tests for phase command parsing."""

import pytest

from mcplab.commands import (
    is_directive,
    parse_command,
    parse_direct_tool_call,
    parse_python_args,
)


class TestPythonArgs:
    """Tests for Python-style keyword argument parsing."""

    def test_mixed_values(self) -> None:
        """Quoted strings, numbers, booleans and None are typed."""
        args = parse_python_args("path='a b.txt', count=42, ratio=0.5, flag=True, off=false, x=None")
        assert args == {
            "path": "a b.txt",
            "count": 42,
            "ratio": 0.5,
            "flag": True,
            "off": False,
            "x": None,
        }

    def test_escaped_quote(self) -> None:
        """Backslash escapes inside quoted strings are honored."""
        assert parse_python_args(r'msg="say \"hi\""') == {"msg": 'say "hi"'}

    def test_bare_string(self) -> None:
        """Unquoted non-literal values stay strings."""
        assert parse_python_args("mode=fast") == {"mode": "fast"}

    def test_stops_at_malformed_key(self) -> None:
        """Parsing stops at the first key without a value."""
        assert parse_python_args("a=1, broken") == {"a": 1}


class TestDirectToolCall:
    """Tests for @tool / @tool-exec directives."""

    def test_python_syntax(self) -> None:
        """Python-call syntax yields a tool call that injects its result."""
        call = parse_direct_tool_call('@tool:fs__write(path="out.txt", content="x")')
        assert call is not None
        assert call.tool_name == "fs__write"
        assert call.args == {"path": "out.txt", "content": "x"}
        assert call.inject_result is True

    def test_json_syntax(self) -> None:
        """JSON arguments are accepted after the tool name."""
        call = parse_direct_tool_call('@tool-exec:fs__read {"path": "a.txt"}')
        assert call is not None
        assert call.args == {"path": "a.txt"}
        assert call.inject_result is False

    def test_no_arguments(self) -> None:
        """Both bare names and empty parentheses mean no arguments."""
        assert parse_direct_tool_call("@tool:fs__list").args == {}
        assert parse_direct_tool_call("@tool:fs__list()").args == {}

    def test_invalid(self) -> None:
        """Malformed directives return None."""
        assert parse_direct_tool_call("@tool:no_separator(a=1)") is None
        assert parse_direct_tool_call("@tool:fs__read [1, 2]") is None
        assert parse_direct_tool_call("@tool:fs__read {not json}") is None
        assert parse_direct_tool_call("fs__read()") is None


class TestParseCommand:
    """Tests for command classification."""

    def test_abort(self) -> None:
        assert parse_command("  @abort ").kind == "abort"

    def test_complete_phase(self) -> None:
        """@complete-phase optionally names its target phase."""
        assert parse_command("@complete-phase").phase_name is None
        parsed = parse_command("@complete-phase:setup")
        assert parsed.kind == "complete-phase"
        assert parsed.phase_name == "setup"

    def test_query(self) -> None:
        """Anything that is not a directive goes to the model verbatim."""
        parsed = parse_command("Summarize the file")
        assert parsed.kind == "query"
        assert parsed.text == "Summarize the file"
        assert not is_directive("Summarize the file")

    def test_invalid_tool_directive_raises(self) -> None:
        """A broken @tool directive is an error, not a query."""
        with pytest.raises(ValueError, match="Invalid tool directive"):
            _ = parse_command("@tool:broken")
