# Copyright (c) Syntropy Systems
"""Before/after tool hooks.

Hooks come from three places, checked in this order: client hooks from the
HookStore (skipped while suspended, e.g. during ablation runs), the
top-level hooks of the running ablation, then the hooks of the current
phase. Every enabled hook whose trigger matches fires, in order.
"""
from __future__ import annotations

import contextlib
import logging
import time
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Literal, Protocol

from mcplab.commands import parse_command
from mcplab.errors import HookExecutionError, MCPLabError
from mcplab.models.ablation import utcnow_iso
from mcplab.models.run import HookProvenance

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mcplab.hooks.store import HookStore
    from mcplab.models.ablation import AblationHook
    from mcplab.models.base import JSONObject, JSONValue
    from mcplab.models.tools import ToolResult

logger = logging.getLogger(__name__)

InternalInvoker = Callable[[str, "JSONObject"], "ToolResult"]

# True while a hook-triggered call is running in the current call chain
_in_hook_chain: ContextVar[bool] = ContextVar("mcplab_in_hook_chain", default=False)


def matches_partial(expected: JSONValue, actual: JSONValue) -> bool:
    """Whether ``actual`` contains everything in ``expected``.

    Dicts match when every expected key is present and matches recursively;
    any other value must be equal.
    """
    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            return False
        return all(key in actual and matches_partial(value, actual[key]) for key, value in expected.items())
    return expected == actual


def hook_matches(
    hook: AblationHook,
    kind: Literal["before", "after"],
    tool_name: str,
    tool_input: JSONObject,
    result: ToolResult | None = None,
) -> bool:
    if not hook.enabled or hook.kind != kind or hook.trigger_tool != tool_name:
        return False
    if hook.when_input is not None and not matches_partial(hook.when_input, tool_input):
        return False
    if hook.when_output is not None:
        # Non-JSON output never satisfies an output predicate
        if result is None or not isinstance(result.parsed, dict):
            return False
        if not matches_partial(hook.when_output, result.parsed):
            return False
    return True


@dataclass
class HookInvocation:
    """A tool call made on behalf of a hook."""

    provenance: HookProvenance
    tool_name: str
    args: JSONObject
    started_at: str
    duration_ms: int
    success: bool
    result: str | None = None
    error: str | None = None


class HookObserver(Protocol):
    def on_hook_invocation(self, invocation: HookInvocation) -> None: ...


class HookEngine:
    """Matches tool calls against hooks and runs their directives."""

    def __init__(self, store: HookStore | None = None, observer: HookObserver | None = None) -> None:
        self.store = store
        self.observer = observer
        self.suspended = False
        self.ablation_hooks: list[AblationHook] = []
        self.phase_hooks: list[AblationHook] = []
        self.current_phase: str | None = None
        self.abort_run_requested = False
        self.phase_complete_requested = False

    # Sources

    def suspend(self) -> None:
        self.suspended = True

    def resume(self) -> None:
        self.suspended = False

    def load_ablation_hooks(self, hooks: list[AblationHook]) -> None:
        self.ablation_hooks = list(hooks)

    def enter_phase(self, name: str, hooks: list[AblationHook] | None = None) -> None:
        """Make a phase current and reset its completion signal."""
        self.current_phase = name
        self.phase_hooks = list(hooks or [])
        self.phase_complete_requested = False

    def clear_ablation_hooks(self) -> None:
        self.ablation_hooks = []
        self.phase_hooks = []
        self.current_phase = None
        self.phase_complete_requested = False
        self.abort_run_requested = False

    def reset_abort(self) -> None:
        self.abort_run_requested = False

    def active_hooks(self) -> list[AblationHook]:
        hooks: list[AblationHook] = []
        if self.store is not None and not self.suspended:
            hooks.extend(self.store.list_hooks())
        hooks.extend(self.ablation_hooks)
        hooks.extend(self.phase_hooks)
        return hooks

    @property
    def in_hook_chain(self) -> bool:
        return _in_hook_chain.get()

    # Firing

    def fire_before(self, tool_name: str, tool_input: JSONObject, invoke: InternalInvoker) -> None:
        """Run before-hooks for a call that is about to start.

        Raises:
            HookExecutionError: If a hook's tool call fails; the triggering
                call must not run.

        """
        if self.in_hook_chain:
            return
        for hook in self.active_hooks():
            if not hook_matches(hook, "before", tool_name, tool_input):
                continue
            try:
                self.run_directive(hook, tool_name, invoke)
            except MCPLabError as e:
                raise HookExecutionError(tool_name, hook.run, e) from e

    def fire_after(
        self,
        tool_name: str,
        tool_input: JSONObject,
        result: ToolResult,
        invoke: InternalInvoker,
    ) -> None:
        """Run after-hooks for a completed call; failures are only logged."""
        if self.in_hook_chain:
            return
        for hook in self.active_hooks():
            if not hook_matches(hook, "after", tool_name, tool_input, result):
                continue
            try:
                self.run_directive(hook, tool_name, invoke)
            except MCPLabError:
                logger.exception('After-hook "%s" for "%s" failed', hook.run, tool_name)

    @contextlib.contextmanager
    def _hook_chain(self) -> Iterator[None]:
        token = _in_hook_chain.set(True)
        try:
            yield
        finally:
            _in_hook_chain.reset(token)

    def run_directive(self, hook: AblationHook, trigger_tool: str, invoke: InternalInvoker) -> None:
        """Execute one hook's ``run`` directive."""
        try:
            command = parse_command(hook.run)
        except ValueError:
            logger.warning('Skipping hook with unparseable directive: "%s"', hook.run)
            return

        if command.kind == "abort":
            logger.warning('Hook after "%s" requested abort of the remaining phases', trigger_tool)
            self.abort_run_requested = True
            return
        if command.kind == "complete-phase":
            if command.phase_name is not None and command.phase_name != self.current_phase:
                return
            logger.info('Hook after "%s" completed phase "%s"', trigger_tool, self.current_phase or "current")
            self.phase_complete_requested = True
            return
        if command.kind != "tool" or command.tool_call is None:
            logger.warning('Skipping hook whose directive is not a tool call: "%s"', hook.run)
            return

        call = command.tool_call
        provenance = HookProvenance(
            type=hook.kind,
            trigger_tool=trigger_tool,
            when_input=hook.when_input,
            when_output=hook.when_output,
        )
        started_at = utcnow_iso()
        start = time.monotonic()
        logger.info("Hook %s %s -> %s", hook.kind, trigger_tool, call.tool_name)
        try:
            with self._hook_chain():
                result = invoke(call.tool_name, call.args)
        except MCPLabError as e:
            self._notify(provenance, call.tool_name, call.args, started_at, start, error=str(e))
            raise
        self._notify(provenance, call.tool_name, call.args, started_at, start, result=result.text)

    def _notify(
        self,
        provenance: HookProvenance,
        tool_name: str,
        args: JSONObject,
        started_at: str,
        start: float,
        result: str | None = None,
        error: str | None = None,
    ) -> None:
        if self.observer is None:
            return
        self.observer.on_hook_invocation(
            HookInvocation(
                provenance=provenance,
                tool_name=tool_name,
                args=args,
                started_at=started_at,
                duration_ms=int((time.monotonic() - start) * 1000),
                success=error is None,
                result=result,
                error=error,
            )
        )
