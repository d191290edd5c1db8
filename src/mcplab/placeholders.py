# Copyright (c) Syntropy Systems
"""{{placeholder}} extraction, validation and substitution for ablations."""
from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from mcplab.models.ablation import AblationDefinition, AblationHook

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_-]*)\s*\}\}")


def find_placeholders(text: str) -> list[str]:
    """Return placeholder names in order of first appearance."""
    names: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(text):
        name = match.group(1)
        if name not in names:
            names.append(name)
    return names


def _iter_hook_strings(hooks: list[AblationHook] | None) -> Iterator[str]:
    for hook in hooks or []:
        yield hook.run


def iter_definition_strings(definition: AblationDefinition) -> Iterator[str]:
    """Yield every string of a definition that may carry placeholders."""
    yield from _iter_hook_strings(definition.hooks)
    for phase in definition.phases:
        yield from phase.commands
        yield from phase.on_start or []
        yield from phase.on_end or []
        yield from _iter_hook_strings(phase.hooks)


def extract_placeholders(definition: AblationDefinition) -> list[str]:
    """All placeholder names used anywhere in a definition."""
    names: list[str] = []
    for text in iter_definition_strings(definition):
        for name in find_placeholders(text):
            if name not in names:
                names.append(name)
    return names


def validate_arguments(definition: AblationDefinition) -> list[str]:
    """Cross-check placeholders against argument definitions.

    Returns human-readable warnings; mismatches never block a run.
    """
    used = extract_placeholders(definition)
    declared = [arg.name for arg in definition.arguments]
    warnings = [
        f'Placeholder "{{{{{name}}}}}" has no matching argument definition'
        for name in used
        if name not in declared
    ]
    warnings.extend(
        f'Argument "{name}" is never used by any command or hook'
        for name in declared
        if name not in used
    )
    return warnings


def resolve_arguments(
    definition: AblationDefinition,
    provided: Mapping[str, str],
) -> tuple[dict[str, str], list[str]]:
    """Merge provided values with argument defaults.

    Returns the resolved mapping and the names of required arguments that
    have neither a value nor a default.
    """
    resolved: dict[str, str] = {}
    missing: list[str] = []
    for argument in definition.arguments:
        if argument.name in provided:
            resolved[argument.name] = provided[argument.name]
        elif argument.default is not None:
            resolved[argument.name] = argument.default
        elif argument.required:
            missing.append(argument.name)
    for name, value in provided.items():
        _ = resolved.setdefault(name, value)
    return resolved, missing


def substitute(text: str, values: Mapping[str, str]) -> str:
    """Replace known placeholders; unknown ones are left verbatim."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def _substitute_hooks(hooks: list[AblationHook] | None, values: Mapping[str, str]) -> list[AblationHook] | None:
    if hooks is None:
        return None
    return [hook.model_copy(update={"run": substitute(hook.run, values)}) for hook in hooks]


def apply_arguments(definition: AblationDefinition, values: Mapping[str, str]) -> AblationDefinition:
    """Return a copy of the definition with argument values substituted."""
    phases = [
        phase.model_copy(
            update={
                "commands": [substitute(c, values) for c in phase.commands],
                "on_start": [substitute(c, values) for c in phase.on_start]
                if phase.on_start is not None
                else None,
                "on_end": [substitute(c, values) for c in phase.on_end]
                if phase.on_end is not None
                else None,
                "hooks": _substitute_hooks(phase.hooks, values),
            }
        )
        for phase in definition.phases
    ]
    return definition.model_copy(
        update={
            "phases": phases,
            "hooks": _substitute_hooks(definition.hooks, values) or [],
        }
    )
