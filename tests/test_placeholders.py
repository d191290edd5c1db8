# Copyright (c) Syntropy Systems
"""Tests for {{placeholder}} handling."""

from mcplab.models.ablation import AblationDefinition
from mcplab.placeholders import (
    apply_arguments,
    extract_placeholders,
    find_placeholders,
    resolve_arguments,
    substitute,
    validate_arguments,
)


def make_definition() -> AblationDefinition:
    return AblationDefinition.from_document(
        {
            "name": "study",
            "dryRun": True,
            "arguments": [
                {"name": "doc", "type": "attachment"},
                {"name": "tone", "required": False, "default": "formal"},
                {"name": "unused", "required": False},
            ],
            "phases": [
                {
                    "name": "p1",
                    "commands": ["Summarize {{ doc }} in a {{tone}} tone", "@tool:fs__read(path='{{doc}}')"],
                    "onEnd": ["Mention {{ extra }}"],
                    "hooks": [{"after": "fs__read", "run": "@tool:fs__write(path='{{doc}}.log')"}],
                }
            ],
            "hooks": [{"before": "fs__write", "run": "@tool:fs__status(status='{{tone}}')"}],
        }
    )


class TestPlaceholders:
    """Tests for extraction, validation and substitution."""

    def test_find_placeholders_tolerates_spaces(self) -> None:
        assert find_placeholders("{{a}} and {{  b  }} and {{a}}") == ["a", "b"]

    def test_extract_covers_commands_and_hooks(self) -> None:
        """Placeholders from every command list and hook are found once each."""
        assert sorted(extract_placeholders(make_definition())) == ["doc", "extra", "tone"]

    def test_validate_reports_both_directions(self) -> None:
        """Undeclared placeholders and unused arguments produce warnings."""
        warnings = validate_arguments(make_definition())
        assert any('"{{extra}}"' in w for w in warnings)
        assert any('"unused"' in w for w in warnings)
        assert len(warnings) == 2

    def test_resolve_uses_defaults_and_reports_missing(self) -> None:
        values, missing = resolve_arguments(make_definition(), {})
        assert values == {"tone": "formal"}
        assert missing == ["doc"]

    def test_unknown_placeholder_left_verbatim(self) -> None:
        assert substitute("{{ known }} {{unknown}}", {"known": "x"}) == "x {{unknown}}"

    def test_apply_arguments(self) -> None:
        """Substitution reaches commands, onEnd and both hook levels."""
        resolved = apply_arguments(make_definition(), {"doc": "a.txt", "tone": "casual"})
        phase = resolved.phases[0]
        assert phase.commands == ["Summarize a.txt in a casual tone", "@tool:fs__read(path='a.txt')"]
        assert phase.on_end == ["Mention {{ extra }}"]
        assert phase.hooks is not None
        assert phase.hooks[0].run == "@tool:fs__write(path='a.txt.log')"
        assert resolved.hooks[0].run == "@tool:fs__status(status='casual')"

    def test_apply_without_values_is_identity(self) -> None:
        """With no values the definition's text is unchanged."""
        definition = make_definition()
        resolved = apply_arguments(definition, {})
        assert resolved.phases[0].commands == definition.phases[0].commands
        assert resolved.hooks[0].run == definition.hooks[0].run
