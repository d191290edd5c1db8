# Copyright (c) Syntropy Systems
"""Tests for mcplab data models."""

import json

import pytest

from mcplab.errors import InvalidDefinitionError
from mcplab.models import AblationDefinition, AblationHook, ChatMessage, ContentBlock, ToolResult
from mcplab.models.ablation import AblationModel, sanitize_name


class TestAblationDefinition:
    """Tests for definition validation and persistence order."""

    def test_camel_case_document(self) -> None:
        """Documents use camelCase keys; Python fields are snake_case."""
        definition = AblationDefinition.from_document(
            {
                "name": "My Study!",
                "dryRun": True,
                "settings": {"maxIterations": 5, "keepContext": True},
                "phases": [{"name": "p1", "commands": ["hi"], "onStart": ["@tool:fs__read()"]}],
            }
        )
        assert definition.name == "my-study"
        assert definition.dry_run is True
        assert definition.settings.max_iterations == 5
        assert definition.settings.keep_context is True
        assert definition.phases[0].on_start == ["@tool:fs__read()"]
        assert definition.runs == 1

    def test_null_runs_defaults_to_one(self) -> None:
        definition = AblationDefinition.from_document({"name": "x", "runs": None})
        assert definition.runs == 1

    @pytest.mark.parametrize(
        "document",
        [
            {"name": "x", "phases": [{"name": "a"}, {"name": "a"}]},
            {"name": "x", "models": [{"provider": "p", "model": "m"}, {"provider": "p", "model": "m"}]},
            {"name": "x", "arguments": [{"name": "a"}, {"name": "a"}]},
            {"name": "x", "runs": 0},
            {"name": "!!!"},
        ],
    )
    def test_invalid_documents(self, document: dict) -> None:
        with pytest.raises(InvalidDefinitionError):
            _ = AblationDefinition.from_document(document)

    def test_check_runnable(self) -> None:
        """No phases, or no models outside dry run, cannot be scheduled."""
        with pytest.raises(InvalidDefinitionError, match="no phases"):
            AblationDefinition(name="x").check_runnable()
        with pytest.raises(InvalidDefinitionError, match="no models"):
            AblationDefinition.from_document({"name": "x", "phases": [{"name": "a"}]}).check_runnable()
        AblationDefinition.from_document({"name": "x", "dryRun": True, "phases": [{"name": "a"}]}).check_runnable()

    def test_ordered_document_omits_defaults(self) -> None:
        """Optional keys are dropped at their defaults and the rest keep a fixed order."""
        definition = AblationDefinition.from_document(
            {
                "phases": [{"name": "a", "commands": ["x"]}],
                "name": "x",
                "models": [{"provider": "anthropic", "model": "claude-sonnet-4"}],
                "created": "2024-01-01T00:00:00+00:00",
            }
        )
        document = definition.to_ordered_document()
        assert list(document) == ["name", "description", "created", "models", "settings", "phases"]

        with_extras = definition.model_copy(update={"dry_run": True, "runs": 3})
        assert list(with_extras.to_ordered_document())[:7] == [
            "name",
            "description",
            "created",
            "models",
            "dryRun",
            "runs",
            "settings",
        ]


class TestAblationHook:
    """Tests for hook trigger validation."""

    def test_exactly_one_trigger(self) -> None:
        with pytest.raises(ValueError):
            _ = AblationHook(run="@abort")
        with pytest.raises(ValueError):
            _ = AblationHook(before="a", after="b", run="@abort")

    def test_kind_and_trigger(self) -> None:
        hook = AblationHook.model_validate({"after": "fs__write", "run": "@abort", "whenOutput": {"status": "x"}})
        assert hook.kind == "after"
        assert hook.trigger_tool == "fs__write"
        assert hook.when_output == {"status": "x"}


class TestToolResult:
    """Tests for tool result normalization."""

    def test_json_text_is_parsed(self) -> None:
        result = ToolResult.from_content("fs__read", [ContentBlock(type="text", text='{"a": 1}')])
        assert result.parsed == {"a": 1}
        assert json.loads(result.text) == {"a": 1}

    def test_plain_text_is_wrapped(self) -> None:
        """Non-JSON text becomes a one-element JSON array."""
        blocks = [ContentBlock(type="text", text="hello "), ContentBlock(type="image"), ContentBlock(type="text", text="world")]
        result = ToolResult.from_content("fs__read", blocks)
        assert json.loads(result.text) == ["hello world"]
        assert result.parsed is None

    def test_timeout_payload(self) -> None:
        result = ToolResult.timeout("fs__slow", "details here")
        payload = json.loads(result.text)
        assert result.timed_out is True
        assert payload[0]["error"] == "timeout"
        assert '"fs__slow"' in payload[0]["message"]
        assert payload[0]["details"] == "details here"


class TestMisc:
    """Tests for small helpers."""

    def test_sanitize_name(self) -> None:
        assert sanitize_name("  Hello,  World -- 2 ") == "hello-world-2"

    def test_model_short_name(self) -> None:
        assert AblationModel(provider="anthropic", model="claude-3-5-sonnet-latest").short_name == "sonnet"
        assert AblationModel(provider="openai", model="gpt-4o-mini").short_name == "gpt-4o-mini"

    def test_model_slug_includes_provider(self) -> None:
        assert AblationModel(provider="openai", model="gpt-4o").slug == "openai-gpt-4o"
        assert AblationModel(provider="azure", model="gpt-4o").slug != AblationModel(provider="openai", model="gpt-4o").slug

    def test_agent_tool_call(self) -> None:
        message = ChatMessage(timestamp="t", role="tool", content="x")
        internal = ChatMessage(timestamp="t", role="tool", content="x", is_internal=True)
        assert message.is_agent_tool_call
        assert not internal.is_agent_tool_call
