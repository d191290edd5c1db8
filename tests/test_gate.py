# Copyright (c) Syntropy Systems
"""Tests for the tool-call gate, routing and force-stop handling."""

from __future__ import annotations

import threading
import time

import pytest

from conftest import FakeToolServer
from mcplab.errors import ForceStoppedError, ToolExecutionError, ToolNotFoundError
from mcplab.tools.gate import ForceStopMachine, GateContext, PromptMutex, ToolCallGate, resolve_timeout
from mcplab.tools.registry import ServerPool


class FixedTimeout:
    def __init__(self, seconds: int) -> None:
        self.seconds = seconds

    def get_tool_timeout(self) -> int:
        return self.seconds


def aborted_context(prompt=None, force_stop_after: float = 0.05) -> GateContext:
    abort = threading.Event()
    abort.set()
    return GateContext(abort_signal=abort, prompt=prompt, poll_interval=0.01, force_stop_after=force_stop_after)


class TestPromptMutex:
    """Tests for the single-holder prompt mutex."""

    def test_single_holder(self) -> None:
        mutex = PromptMutex()
        assert mutex.try_acquire("a")
        assert not mutex.try_acquire("b")
        assert mutex.holder == "a"
        mutex.release()
        assert not mutex.locked
        assert mutex.try_acquire("b")
        assert mutex.holder == "b"

    def test_concurrent_acquirers(self) -> None:
        """Exactly one of many threads gets the mutex."""
        mutex = PromptMutex()
        barrier = threading.Barrier(8)
        wins: list[bool] = []
        lock = threading.Lock()

        def contend(i: int) -> None:
            barrier.wait()
            won = mutex.try_acquire(f"t{i}")
            with lock:
                wins.append(won)

        threads = [threading.Thread(target=contend, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert wins.count(True) == 1


class TestRouting:
    """Tests for server__tool routing."""

    def test_prefixed_and_bare_names(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        assert pool.resolve("fs__read") == (fake_server, "read")
        assert pool.resolve("read") == (fake_server, "read")

    def test_unknown_tool(self, pool: ServerPool) -> None:
        with pytest.raises(ToolNotFoundError):
            _ = pool.resolve("nope__read")

    def test_all_tools_are_prefixed(self, pool: ServerPool) -> None:
        assert sorted(t.name for t in pool.all_tools()) == ["fs__read", "fs__status", "fs__write"]

    def test_unlimited_timeout(self) -> None:
        assert resolve_timeout(FixedTimeout(-1)) == 3600
        assert resolve_timeout(None) == 60


class TestToolCallGate:
    """Tests for ToolCallGate.execute."""

    def test_execute_returns_parsed_result(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        gate = ToolCallGate(pool, GateContext(poll_interval=0.01))
        result = gate.execute("fs__write", {"path": "a.txt", "content": "x"})
        assert result.parsed == {"status": "success", "path": "a.txt"}
        assert fake_server.calls == [("write", {"path": "a.txt", "content": "x"})]

    def test_timeout_is_a_result(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        """A timed-out call returns a structured result instead of raising."""
        fake_server.block = threading.Event()
        gate = ToolCallGate(pool, GateContext(poll_interval=0.01), preferences=FixedTimeout(0))
        result = gate.execute("fs__read", {"path": "a"})
        assert result.timed_out
        assert result.parsed[0]["error"] == "timeout"

    def test_handler_error_becomes_execution_error(self, fake_server: FakeToolServer) -> None:
        def boom(args: dict) -> object:
            msg = "disk full"
            raise OSError(msg)

        fake_server.handlers["boom"] = boom
        gate = ToolCallGate(ServerPool([fake_server]), GateContext(poll_interval=0.01))
        with pytest.raises(ToolExecutionError, match="disk full"):
            _ = gate.execute("fs__boom", {})

    def test_internal_call_is_force_stopped_without_prompt(
        self, pool: ServerPool, fake_server: FakeToolServer
    ) -> None:
        """Internal calls stop once the countdown ends; the server is restarted."""
        fake_server.block = threading.Event()
        gate = ToolCallGate(pool, aborted_context())
        with pytest.raises(ForceStoppedError):
            _ = gate.execute_internal("fs__read", {"path": "a"})
        assert fake_server.restarts == 1

    def test_confirmed_prompt_force_stops(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        fake_server.block = threading.Event()
        prompts: list[str] = []

        def confirm(tool_name: str, elapsed: float) -> bool:
            prompts.append(tool_name)
            return True

        gate = ToolCallGate(pool, aborted_context(prompt=confirm))
        with pytest.raises(ForceStoppedError):
            _ = gate.execute("fs__read", {"path": "a"})
        assert prompts == ["fs__read"]
        assert fake_server.restarts == 1

    def test_declined_prompt_keeps_waiting(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        """Declining resets the countdown; the call finishes normally later."""
        fake_server.block = threading.Event()
        answers: list[float] = []

        def decline(tool_name: str, elapsed: float) -> bool:
            answers.append(elapsed)
            if len(answers) == 2:
                fake_server.block.set()
            return False

        gate = ToolCallGate(pool, aborted_context(prompt=decline))
        result = gate.execute("fs__read", {"path": "a"})
        assert not result.timed_out
        assert len(answers) >= 2
        assert fake_server.restarts == 0

    def test_no_prompt_never_stops_user_calls(self, pool: ServerPool, fake_server: FakeToolServer) -> None:
        fake_server.block = threading.Event()
        threading.Timer(0.2, fake_server.block.set).start()
        gate = ToolCallGate(pool, aborted_context())
        result = gate.execute("fs__read", {"path": "a"})
        assert result.text
        assert fake_server.restarts == 0


class TestForceStopMachine:
    """Tests for the abort/force-stop state machine."""

    def test_idle_without_abort(self) -> None:
        machine = ForceStopMachine(GateContext(), "fs__read")
        assert machine.poll() is False
        assert machine.state == "idle"

    def test_counting_then_waits_for_mutex(self) -> None:
        """While another call holds the prompt, the countdown just continues."""
        context = aborted_context(force_stop_after=0.0)
        machine = ForceStopMachine(context, "fs__read", internal=True)
        assert context.mutex.try_acquire("other")
        assert machine.poll() is False
        assert machine.state == "counting"
        context.mutex.release()
        assert machine.poll() is True
        assert machine.state == "stopped"

    def test_prompt_error_counts_as_decline(self) -> None:
        def broken(tool_name: str, elapsed: float) -> bool:
            msg = "no terminal"
            raise RuntimeError(msg)

        machine = ForceStopMachine(aborted_context(prompt=broken, force_stop_after=0.0), "fs__read")
        assert machine.poll() is False
        assert machine.state == "idle"

    def test_countdown_elapses(self) -> None:
        machine = ForceStopMachine(aborted_context(force_stop_after=0.05), "x", internal=True)
        assert machine.poll() is False
        time.sleep(0.06)
        assert machine.poll() is True
