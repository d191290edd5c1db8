# Copyright (c) Syntropy Systems
"""Tests for hook matching and firing."""

from __future__ import annotations

import pytest

from conftest import FakeToolServer
from mcplab.errors import HookExecutionError
from mcplab.hooks import HookEngine, HookInvocation, HookStore, matches_partial
from mcplab.models.ablation import AblationHook
from mcplab.tools.gate import GateContext, ToolCallGate
from mcplab.tools.registry import ServerPool


class Collector:
    def __init__(self) -> None:
        self.invocations: list[HookInvocation] = []

    def on_hook_invocation(self, invocation: HookInvocation) -> None:
        self.invocations.append(invocation)


def make_gate(pool: ServerPool, hooks: list[AblationHook]) -> tuple[ToolCallGate, HookEngine]:
    engine = HookEngine()
    engine.load_ablation_hooks(hooks)
    return ToolCallGate(pool, GateContext(poll_interval=0.01), hooks=engine), engine


class TestMatchesPartial:
    """Tests for recursive subset matching."""

    def test_nested_subset(self) -> None:
        assert matches_partial({"a": {"b": 1}}, {"a": {"b": 1, "c": 2}, "d": 3})

    def test_mismatch(self) -> None:
        assert not matches_partial({"a": {"b": 1}}, {"a": {"b": 2}})
        assert not matches_partial({"a": 1}, {"b": 1})
        assert not matches_partial({"a": {"b": 1}}, {"a": "b"})

    def test_lists_compare_exactly(self) -> None:
        assert matches_partial({"a": [1, 2]}, {"a": [1, 2]})
        assert not matches_partial({"a": [1]}, {"a": [1, 2]})


class TestHookFiring:
    """Tests for before/after hooks around gate calls."""

    def test_after_hook_fires_only_on_matching_output(
        self, pool: ServerPool, fake_server: FakeToolServer
    ) -> None:
        """whenOutput={"status": "success"} ignores other statuses."""
        hook = AblationHook(
            after="fs__status",
            when_output={"status": "success"},
            run='@tool:fs__write(path="log.txt", content="seen")',
        )
        gate, _ = make_gate(pool, [hook])

        _ = gate.execute("fs__status", {"status": "error"})
        assert fake_server.called("write") == 0

        _ = gate.execute("fs__status", {"status": "success"})
        assert fake_server.called("write") == 1

    def test_hooks_never_recurse(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        """A hook whose tool call would trigger itself runs once."""
        hook = AblationHook(
            after="fs__write",
            when_output={"status": "success"},
            run='@tool:fs__write(path="again.txt")',
        )
        gate, _ = make_gate(pool, [hook])
        _ = gate.execute("fs__write", {"path": "first.txt"})
        assert fake_server.called("write") == 2

    def test_when_input_filters(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        hook = AblationHook(before="fs__read", when_input={"path": "secret"}, run="@tool:fs__status()")
        gate, _ = make_gate(pool, [hook])
        _ = gate.execute("fs__read", {"path": "public"})
        _ = gate.execute("fs__read", {"path": "secret"})
        assert fake_server.called("status") == 1
        assert [name for name, _ in fake_server.calls][-2:] == ["status", "read"]

    def test_non_json_output_never_matches(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        hook = AblationHook(after="fs__read", when_output={}, run="@tool:fs__status()")
        gate, _ = make_gate(pool, [hook])
        _ = gate.execute("fs__read", {"path": "missing"})
        assert fake_server.called("status") == 0

    def test_failing_before_hook_blocks_call(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        hook = AblationHook(before="fs__read", run="@tool:nope__missing()")
        gate, _ = make_gate(pool, [hook])
        with pytest.raises(HookExecutionError):
            _ = gate.execute("fs__read", {"path": "a"})
        assert fake_server.called("read") == 0

    def test_failing_after_hook_is_logged_only(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        hook = AblationHook(after="fs__read", run="@tool:nope__missing()")
        gate, _ = make_gate(pool, [hook])
        result = gate.execute("fs__read", {"path": "a"})
        assert not result.is_error

    def test_abort_and_complete_phase_directives(self, pool: ServerPool) -> None:
        hooks = [
            AblationHook(after="fs__status", when_output={"status": "fail"}, run="@abort"),
            AblationHook(after="fs__read", run="@complete-phase:other"),
            AblationHook(after="fs__write", run="@complete-phase:main"),
        ]
        gate, engine = make_gate(pool, hooks)
        engine.enter_phase("main")

        _ = gate.execute("fs__read", {"path": "a"})
        assert not engine.phase_complete_requested
        _ = gate.execute("fs__write", {"path": "a"})
        assert engine.phase_complete_requested

        _ = gate.execute("fs__status", {"status": "ok"})
        assert not engine.abort_run_requested
        _ = gate.execute("fs__status", {"status": "fail"})
        assert engine.abort_run_requested

    def test_observer_sees_provenance(self, pool: ServerPool) -> None:
        hook = AblationHook(after="fs__read", run='@tool:fs__status(status="ok")')
        gate, engine = make_gate(pool, [hook])
        collector = Collector()
        engine.observer = collector
        _ = gate.execute("fs__read", {"path": "a"})

        assert len(collector.invocations) == 1
        invocation = collector.invocations[0]
        assert invocation.tool_name == "fs__status"
        assert invocation.args == {"status": "ok"}
        assert invocation.provenance.type == "after"
        assert invocation.provenance.trigger_tool == "fs__read"
        assert invocation.success

    def test_disabled_and_suspended_hooks(self, tmp_path, pool: ServerPool, fake_server: FakeToolServer) -> None:
        """Disabled hooks never fire; global hooks are silenced while suspended."""
        store = HookStore(tmp_path / "hooks.yaml")
        _ = store.add("@tool:fs__status()", after="fs__read")
        _ = store.add("@tool:fs__status()", after="fs__write", enabled=False)
        engine = HookEngine(store)
        gate = ToolCallGate(pool, GateContext(poll_interval=0.01), hooks=engine)

        _ = gate.execute("fs__write", {"path": "a"})
        assert fake_server.called("status") == 0
        _ = gate.execute("fs__read", {"path": "a"})
        assert fake_server.called("status") == 1

        engine.suspend()
        _ = gate.execute("fs__read", {"path": "a"})
        assert fake_server.called("status") == 1

    def test_all_matching_hooks_fire_in_source_order(
        self, tmp_path, pool: ServerPool, fake_server: FakeToolServer
    ) -> None:
        """Client hooks, then ablation hooks in definition order, then phase hooks."""
        store = HookStore(tmp_path / "hooks.yaml")
        _ = store.add('@tool:fs__status(status="client")', after="fs__read")
        engine = HookEngine(store)
        engine.load_ablation_hooks(
            [
                AblationHook(after="fs__read", run='@tool:fs__status(status="ablation-1")'),
                AblationHook(after="fs__write", run='@tool:fs__status(status="other-trigger")'),
                AblationHook(after="fs__read", run='@tool:fs__status(status="ablation-2")'),
            ]
        )
        engine.enter_phase("main", [AblationHook(after="fs__read", run='@tool:fs__status(status="phase")')])
        collector = Collector()
        engine.observer = collector
        gate = ToolCallGate(pool, GateContext(poll_interval=0.01), hooks=engine)

        _ = gate.execute("fs__read", {"path": "a"})

        assert [i.args["status"] for i in collector.invocations] == ["client", "ablation-1", "ablation-2", "phase"]
        assert fake_server.called("status") == 4
