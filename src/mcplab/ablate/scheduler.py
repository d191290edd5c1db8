# Copyright (c) Syntropy Systems
"""Execution of ablation definitions.

A run walks ``iteration x model x phase`` (a single model-less pass per
iteration for dry runs). Every scenario starts from an empty outputs
directory, runs the phase's onStart, commands and onEnd in order, captures
what was written, saves the chat and records exactly one RunResult.
"""
from __future__ import annotations

import importlib
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, cast

from mcplab.ablate import RUN_REPORT_FILE, chat_file_name
from mcplab.ablate.report import render_run_summary, write_tool_log
from mcplab.commands import parse_command
from mcplab.errors import AgentTurnError, InvalidDefinitionError, MCPLabError, SnapshotIOError
from mcplab.hooks.engine import HookEngine
from mcplab.models.ablation import sanitize_name, utcnow_iso
from mcplab.models.run import AblationRun, ProgressEvent, RunResult, ToolExecLogEntry
from mcplab.placeholders import apply_arguments, resolve_arguments, validate_arguments
from mcplab.session import SessionStateMachine, write_chat

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from mcplab.ablate import AblationStore
    from mcplab.ablate.snapshot import OutputSnapshotStore
    from mcplab.commands import DirectToolCall
    from mcplab.hooks.engine import HookInvocation, HookObserver
    from mcplab.models.ablation import AblationDefinition, AblationModel, AblationPhase
    from mcplab.session import StateBundle
    from mcplab.tools.gate import ToolCallGate

logger = logging.getLogger(__name__)

DRY_RUN_MODEL_LABEL = "dry-run"


def get_total_runs(definition: AblationDefinition) -> int:
    """Scenarios per iteration: phases x models (phases only for dry runs)."""
    return len(definition.phases) * (1 if definition.dry_run else len(definition.models))


def get_total_scenarios(definition: AblationDefinition) -> int:
    return get_total_runs(definition) * definition.runs


# Collaborators


class EventSink(Protocol):
    def emit(self, event: ProgressEvent) -> None: ...


class NullEventSink:
    def emit(self, event: ProgressEvent) -> None:
        pass


class CancelToken:
    """Cooperative cancellation flag checked at iteration/phase/command boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class TurnOutcome:
    """What the agent loop reports back for one conversational command."""

    response: str = ""
    error: str | None = None


class AgentLoop(Protocol):
    """Drives a model through one user query, calling tools via the gate.

    Implementations record assistant messages, tool executions and token
    usage on the session they are given.
    """

    def switch_model(self, model: AblationModel) -> None: ...

    def process_query(
        self,
        query: str,
        session: SessionStateMachine,
        gate: ToolCallGate,
        max_iterations: int,
        attachments: list[Path],
    ) -> TurnOutcome: ...


def load_agent_loop(path: str) -> AgentLoop:
    """Import an agent loop from ``package.module:attr``.

    Classes and zero-argument factories are called to get the instance.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        msg = f"Agent loop must be given as 'module:attr', got {path!r}"
        raise ValueError(msg)
    module = importlib.import_module(module_name)
    obj = getattr(module, attr)
    if isinstance(obj, type) or (callable(obj) and not hasattr(obj, "process_query")):
        obj = obj()
    return cast("AgentLoop", obj)


class _ToolLogRecorder:
    """Collects hook-triggered tool calls into the current tool log."""

    def __init__(self) -> None:
        self.entries: list[ToolExecLogEntry] = []
        self.command_index = 0

    def on_hook_invocation(self, invocation: HookInvocation) -> None:
        self.entries.append(
            ToolExecLogEntry(
                command_index=self.command_index,
                tool_name=invocation.tool_name,
                args=invocation.args,
                started_at=invocation.started_at,
                duration_ms=invocation.duration_ms,
                success=invocation.success,
                result=invocation.result,
                error=invocation.error,
                hook=invocation.provenance,
            )
        )


@dataclass
class _RunContext:
    definition: AblationDefinition
    run: AblationRun
    run_dir: Path
    events: EventSink
    cancel: CancelToken
    attachments: list[Path] = field(default_factory=list)
    isolated: bool = True


class _Cancelled(Exception):
    pass


class ExperimentScheduler:
    """Runs ablation definitions one scenario at a time."""

    def __init__(
        self,
        store: AblationStore,
        snapshots: OutputSnapshotStore,
        gate: ToolCallGate,
        agent_loop: AgentLoop | None = None,
        caller_session: SessionStateMachine | None = None,
    ) -> None:
        self.store = store
        self.snapshots = snapshots
        self.gate = gate
        if gate.hooks is None:
            gate.hooks = HookEngine()
        self.hooks: HookEngine = gate.hooks
        self.agent_loop = agent_loop
        self.caller_session = caller_session
        self._sessions: SessionStateMachine | None = None
        self._recorder = _ToolLogRecorder()

    # Entry point

    def run(
        self,
        definition: AblationDefinition,
        arguments: Mapping[str, str] | None = None,
        events: EventSink | None = None,
        cancel: CancelToken | None = None,
    ) -> AblationRun:
        """Execute every scenario of a definition and return the run record.

        Raises:
            InvalidDefinitionError: If the definition cannot be scheduled.

        """
        events = events or NullEventSink()
        cancel = cancel or CancelToken()

        for warning in validate_arguments(definition):
            logger.warning("%s", warning)
            events.emit(ProgressEvent(type="progress", message=f"Warning: {warning}"))
        values, missing = resolve_arguments(definition, arguments or {})
        for name in missing:
            message = f'Required argument "{name}" has no value; its placeholder is left as-is'
            logger.warning("%s", message)
            events.emit(ProgressEvent(type="progress", message=f"Warning: {message}"))

        resolved = apply_arguments(definition, values)
        resolved.check_runnable()
        if not resolved.dry_run and self.agent_loop is None:
            msg = f'Ablation "{resolved.name}" needs an agent loop (or dryRun: true)'
            raise InvalidDefinitionError(msg)

        run_dir = self.store.create_run_dir(resolved.name)
        run = AblationRun(
            ablation_name=resolved.name,
            started_at=utcnow_iso(),
            run_dir=str(run_dir),
            arguments=values,
        )
        ctx = _RunContext(
            definition=resolved,
            run=run,
            run_dir=run_dir,
            events=events,
            cancel=cancel,
            attachments=self.store.copy_attachments(run_dir, resolved, values),
        )
        start = time.monotonic()
        logger.info(
            'Running ablation "%s": %d scenario(s) in %s',
            resolved.name,
            get_total_scenarios(resolved),
            run_dir,
        )

        ctx.isolated = self._stash(run_dir)
        bundle = self._pause_caller()
        was_suspended = self.hooks.suspended
        previous_observer = self.hooks.observer
        self.hooks.suspend()
        self.hooks.load_ablation_hooks(resolved.hooks)
        self.hooks.observer = self._recorder
        try:
            self._execute(ctx)
        finally:
            try:
                run.finalize(utcnow_iso(), int((time.monotonic() - start) * 1000))
                self._persist(ctx)
            finally:
                self._restore(ctx, bundle, was_suspended, previous_observer)

        events.emit(
            ProgressEvent(
                type="progress",
                status="aborted" if run.aborted else "completed",
                duration=run.total_duration,
                message=f"Ablation {'aborted' if run.aborted else 'complete'}: {run_dir}",
            )
        )
        return run

    # Setup and teardown

    def _stash(self, run_dir: Path) -> bool:
        try:
            _ = self.snapshots.stash(run_dir)
        except SnapshotIOError:
            logger.exception("Outputs could not be stashed; scenarios will not be isolated")
            return False
        return True

    def _pause_caller(self) -> StateBundle | None:
        if self.caller_session is None or not self.caller_session.is_active:
            return None
        return self.caller_session.pause()

    def _restore(
        self,
        ctx: _RunContext,
        bundle: StateBundle | None,
        was_suspended: bool,
        previous_observer: HookObserver | None,
    ) -> None:
        if self._sessions is not None and self._sessions.is_active:
            self._sessions.discard()
        self._sessions = None
        if ctx.isolated:
            try:
                self.snapshots.unstash(ctx.run_dir)
            except SnapshotIOError:
                logger.exception("Outputs could not be restored from %s", ctx.run_dir)
        self.hooks.clear_ablation_hooks()
        self.hooks.observer = previous_observer
        if not was_suspended:
            self.hooks.resume()
        if bundle is not None and self.caller_session is not None:
            self.caller_session.resume(bundle)

    def _persist(self, ctx: _RunContext) -> None:
        _ = self.store.save_run(ctx.run_dir, ctx.run)
        _ = (ctx.run_dir / RUN_REPORT_FILE).write_text(render_run_summary(ctx.run, ctx.definition))

    def _record(self, ctx: _RunContext, result: RunResult) -> None:
        ctx.run.results.append(result)
        ctx.events.emit(
            ProgressEvent(
                type="result",
                phase=result.phase,
                model=result.model.label if result.model else None,
                run=result.run,
                status=result.status,
                duration=result.duration,
                result=result,
            )
        )
        _ = self.store.save_run(ctx.run_dir, ctx.run)

    # Scheduling

    def _execute(self, ctx: _RunContext) -> None:
        definition = ctx.definition
        models: list[AblationModel | None] = [None] if definition.dry_run else list(definition.models)
        try:
            for iteration in range(1, definition.runs + 1):
                run_number = iteration if definition.runs > 1 else None
                for model in models:
                    self._run_model(ctx, model, run_number)
        except _Cancelled:
            ctx.run.aborted = True
            logger.warning('Ablation "%s" cancelled', definition.name)

    def _run_model(self, ctx: _RunContext, model: AblationModel | None, run_number: int | None) -> None:
        definition = ctx.definition
        if ctx.cancel.cancelled:
            raise _Cancelled

        if model is not None and self.agent_loop is not None:
            try:
                self.agent_loop.switch_model(model)
            except Exception as e:
                logger.exception("Could not switch to %s", model.label)
                for phase in definition.phases:
                    self._record(
                        ctx,
                        RunResult(
                            phase=phase.name,
                            model=model,
                            run=run_number,
                            status="failed",
                            error=f"Model switch failed: {e}",
                        ),
                    )
                return

        self._sessions = SessionStateMachine(ctx.run_dir / "chats")
        self.hooks.reset_abort()
        abort_requested = False
        for index, phase in enumerate(definition.phases):
            if ctx.cancel.cancelled:
                raise _Cancelled
            if abort_requested:
                self._record(ctx, RunResult(phase=phase.name, model=model, run=run_number, status="skipped"))
                continue

            result = self._run_phase(ctx, phase, model, run_number, is_last=index == len(definition.phases) - 1)
            self._record(ctx, result)
            if result.status == "aborted":
                raise _Cancelled
            if self.hooks.abort_run_requested:
                abort_requested = True
                self.hooks.reset_abort()

        if self._sessions.is_active:
            self._sessions.discard()

    def _run_phase(
        self,
        ctx: _RunContext,
        phase: AblationPhase,
        model: AblationModel | None,
        run_number: int | None,
        is_last: bool,
    ) -> RunResult:
        definition = ctx.definition
        sessions = self._sessions
        if sessions is None:
            msg = "Scenario started without a session machine"
            raise RuntimeError(msg)
        label = model.label if model else None
        result = RunResult(phase=phase.name, model=model, run=run_number, status="running")
        ctx.events.emit(
            ProgressEvent(type="progress", phase=phase.name, model=label, run=run_number, status="running")
        )
        started = time.monotonic()

        self.hooks.enter_phase(phase.name, phase.hooks)
        self._recorder.entries = []
        if ctx.isolated:
            try:
                self.snapshots.clear()
            except SnapshotIOError:
                logger.exception("Could not clear outputs before %s", phase.name)

        if not sessions.is_active:
            _ = sessions.start(
                label or DRY_RUN_MODEL_LABEL,
                self.gate.pool.names,
                [tool.to_document() for tool in self.gate.list_tools()],
            )
        sessions.add_client_message(f"Phase: {phase.name}")
        tokens_before = sessions.session.metadata.cumulative_tokens

        self._run_commands(ctx, phase, result)

        if ctx.isolated:
            try:
                result.outputs_captured = self.snapshots.capture(
                    ctx.run_dir, phase.name, model.slug if model else None, run_number
                )
            except SnapshotIOError:
                logger.exception("Could not capture outputs of %s", phase.name)

        result.tokens = sessions.session.metadata.cumulative_tokens - tokens_before
        scenario_dir = ctx.run_dir / "chats" / sanitize_name(phase.name)
        if run_number is not None:
            scenario_dir = scenario_dir / f"run-{run_number}"

        if model is not None:
            chat_path = scenario_dir / chat_file_name(model)
            ends_session = (
                not definition.settings.keep_context
                or is_last
                or result.status == "aborted"
                or self.hooks.abort_run_requested
            )
            if ends_session:
                if sessions.end(path=chat_path) is not None:
                    result.chat_file = str(chat_path.relative_to(ctx.run_dir))
            elif sessions.session.token_usage:
                write_chat(sessions.session, chat_path)
                result.chat_file = str(chat_path.relative_to(ctx.run_dir))
        else:
            sessions.discard()
            log_path = write_tool_log(scenario_dir, self._recorder.entries, phase.name, run_number)
            result.tool_log_file = str(log_path.relative_to(ctx.run_dir))

        result.duration = int((time.monotonic() - started) * 1000)
        return result

    def _run_commands(self, ctx: _RunContext, phase: AblationPhase, result: RunResult) -> None:
        """Run onStart, commands and onEnd, setting the result's status."""
        segments = (
            ("onStart", phase.on_start or []),
            ("commands", phase.commands),
            ("onEnd", phase.on_end or []),
        )
        command_index = 0
        for segment, commands in segments:
            for command in commands:
                if ctx.cancel.cancelled:
                    result.status = "aborted"
                    result.error = "Cancelled"
                    return
                if segment == "commands" and self.hooks.phase_complete_requested:
                    break

                self._recorder.command_index = command_index
                ctx.events.emit(
                    ProgressEvent(
                        type="progress",
                        phase=phase.name,
                        model=result.model.label if result.model else None,
                        run=result.run,
                        command_index=command_index,
                        status="running",
                        message=command,
                    )
                )
                try:
                    self._run_command(ctx, command, command_index)
                except Exception as e:
                    if isinstance(e, MCPLabError):
                        logger.error("Command %d of %s failed: %s", command_index, phase.name, e)
                    else:
                        logger.exception("Command %d of %s failed", command_index, phase.name)
                    result.status = "failed"
                    result.error = str(e)
                    ctx.events.emit(
                        ProgressEvent(
                            type="error",
                            phase=phase.name,
                            model=result.model.label if result.model else None,
                            run=result.run,
                            command_index=command_index,
                            status="failed",
                            message=str(e),
                        )
                    )
                    return
                command_index += 1

                if self.hooks.abort_run_requested:
                    result.status = "failed"
                    result.error = "Aborted by @abort"
                    return

        result.status = "completed"

    def _run_command(self, ctx: _RunContext, command: str, command_index: int) -> None:
        sessions = self._sessions
        if sessions is None:
            msg = "Command issued without a session machine"
            raise RuntimeError(msg)
        parsed = parse_command(command)

        if parsed.kind == "abort":
            sessions.add_client_message(parsed.text)
            self.hooks.abort_run_requested = True
        elif parsed.kind == "complete-phase":
            if parsed.phase_name is None or parsed.phase_name == self.hooks.current_phase:
                sessions.add_client_message(parsed.text)
                self.hooks.phase_complete_requested = True
        elif parsed.kind == "tool" and parsed.tool_call is not None:
            self._run_directive(parsed.text, parsed.tool_call, command_index)
        elif ctx.definition.dry_run:
            logger.info("Dry run: skipping conversational command %r", command)
            sessions.add_client_message(f"Skipped in dry run: {command}")
        else:
            self._run_query(ctx, command)

    def _run_directive(self, text: str, call: DirectToolCall, command_index: int) -> None:
        sessions = self._sessions
        if sessions is None:
            msg = "Directive issued without a session machine"
            raise RuntimeError(msg)
        started_at = utcnow_iso()
        start = time.monotonic()
        entry = ToolExecLogEntry(
            command_index=command_index,
            command=text,
            tool_name=call.tool_name,
            args=call.args,
            started_at=started_at,
        )
        try:
            result = self.gate.execute(call.tool_name, call.args)
        except MCPLabError as e:
            entry.duration_ms = int((time.monotonic() - start) * 1000)
            entry.success = False
            entry.error = str(e)
            self._recorder.entries.append(entry)
            raise

        entry.duration_ms = int((time.monotonic() - start) * 1000)
        entry.result = result.text
        entry.success = not result.timed_out
        if result.timed_out:
            entry.error = "timed out"
            logger.warning("Directive %s timed out; continuing the phase", call.tool_name)
        self._recorder.entries.append(entry)
        if call.inject_result:
            sessions.add_tool_execution(
                call.tool_name,
                call.args,
                result.text,
                internal=True,
                input_time=started_at,
            )

    def _run_query(self, ctx: _RunContext, command: str) -> None:
        sessions = self._sessions
        agent_loop = self.agent_loop
        if sessions is None or agent_loop is None:
            msg = "Conversational command issued without an agent loop"
            raise RuntimeError(msg)

        attachments = [path for path in ctx.attachments if path.name in command]
        start_index = len(sessions.session.messages)
        sessions.add_user_message(command, attachments=[path.name for path in attachments] or None)
        try:
            outcome = agent_loop.process_query(
                command,
                sessions,
                self.gate,
                ctx.definition.settings.max_iterations,
                attachments,
            )
        except Exception:
            self._rewind_failed_turn(ctx, start_index)
            raise
        if outcome.error is not None:
            self._rewind_failed_turn(ctx, start_index)
            raise AgentTurnError(outcome.error)

    def _rewind_failed_turn(self, ctx: _RunContext, start_index: int) -> None:
        # Only continued conversations are rewound; fresh ones are saved as-is
        sessions = self._sessions
        if ctx.definition.settings.keep_context and sessions is not None and sessions.is_active:
            sessions.rewind_to_index(start_index)
