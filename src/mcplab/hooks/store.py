# Copyright (c) Syntropy Systems
"""Persistent client hooks (``hooks.yaml``)."""
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, cast

import yaml
from pydantic import ValidationError

from mcplab.models.ablation import AblationHook

if TYPE_CHECKING:
    from pathlib import Path

    from mcplab.models.base import JSONObject

logger = logging.getLogger(__name__)


def generate_hook_id() -> str:
    """Generate a short random hook ID."""
    return uuid.uuid4().hex[:8]


class HookStore:
    """Client hooks that fire during every chat session.

    Hooks are addressed by id or by any unambiguous-enough id prefix; the
    first match wins.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._hooks: list[AblationHook] = []
        self.load()

    def load(self) -> None:
        """Reload hooks from disk; a missing or broken file yields no hooks."""
        if not self.path.exists():
            self._hooks = []
            return

        try:
            with self.path.open() as f:
                data = cast("dict[str, object]", yaml.safe_load(f) or {})
        except yaml.YAMLError:
            logger.warning("Failed to parse %s, starting with no hooks", self.path, exc_info=True)
            self._hooks = []
            return

        raw_hooks = data.get("hooks")
        hooks: list[AblationHook] = []
        for raw in raw_hooks if isinstance(raw_hooks, list) else []:
            try:
                hook = AblationHook.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping invalid hook entry in %s: %r", self.path, raw)
                continue
            if hook.id is None:
                hook.id = generate_hook_id()
            hooks.append(hook)
        self._hooks = hooks

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {"hooks": [hook.to_document() for hook in self._hooks]}
        with self.path.open("w") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    def list_hooks(self) -> list[AblationHook]:
        return list(self._hooks)

    def get(self, hook_id: str) -> AblationHook | None:
        return next(
            (h for h in self._hooks if h.id is not None and (h.id == hook_id or h.id.startswith(hook_id))),
            None,
        )

    def add(
        self,
        run: str,
        before: str | None = None,
        after: str | None = None,
        when_input: JSONObject | None = None,
        when_output: JSONObject | None = None,
        description: str | None = None,
        enabled: bool = True,
    ) -> AblationHook:
        """Create, persist and return a new hook.

        Raises:
            ValueError: If not exactly one of before/after is given.

        """
        try:
            hook = AblationHook(
                id=generate_hook_id(),
                before=before,
                after=after,
                when_input=when_input,
                when_output=when_output,
                run=run,
                enabled=enabled,
                description=description,
            )
        except ValidationError as e:
            raise ValueError(str(e)) from e
        self._hooks.append(hook)
        self.save()
        return hook

    def remove(self, hook_id: str) -> bool:
        hook = self.get(hook_id)
        if hook is None:
            return False
        self._hooks.remove(hook)
        self.save()
        return True

    def set_enabled(self, hook_id: str, enabled: bool) -> bool:
        hook = self.get(hook_id)
        if hook is None:
            return False
        hook.enabled = enabled
        self.save()
        return True

    def enable(self, hook_id: str) -> bool:
        return self.set_enabled(hook_id, True)

    def disable(self, hook_id: str) -> bool:
        return self.set_enabled(hook_id, False)
