# Copyright (c) Syntropy Systems
"""Wiring of one lab's components from its .mcplab directory."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mcplab.ablate import AblationStore
from mcplab.ablate.scheduler import ExperimentScheduler, load_agent_loop
from mcplab.ablate.snapshot import OutputSnapshotStore
from mcplab.config import LabPaths, load_config
from mcplab.hooks.engine import HookEngine
from mcplab.hooks.store import HookStore
from mcplab.tools.gate import GateContext, ToolCallGate
from mcplab.tools.registry import ServerPool

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from typing_extensions import Self

    from mcplab.ablate.scheduler import AgentLoop
    from mcplab.config import LabConfig
    from mcplab.models.ablation import AblationDefinition
    from mcplab.session import SessionStateMachine

logger = logging.getLogger(__name__)


class Lab:
    """Config, stores and (lazily) connected tool servers of one lab."""

    def __init__(self, lab_dir: Path, context: GateContext | None = None) -> None:
        self.paths = LabPaths(lab_dir)
        self.paths.ensure()
        self.config: LabConfig = load_config(lab_dir)
        self.context = context or GateContext(
            poll_interval=self.config.abort_poll_interval,
            force_stop_after=self.config.force_stop_after,
        )
        self.ablations = AblationStore(self.paths)
        self.hook_store = HookStore(self.paths.hooks_file)
        self.hooks = HookEngine(self.hook_store)
        self.snapshots = OutputSnapshotStore(self.paths.outputs_dir)
        self._pool: ServerPool | None = None
        self._pool_config: Path | None = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def connect(self, mcp_config: str | None = None) -> ServerPool:
        """Connect the servers of the MCP config (once per config path)."""
        config_path = self.paths.resolve_mcp_config(self.config, mcp_config)
        if self._pool is not None and self._pool_config == config_path:
            return self._pool
        self.close()
        if config_path is None:
            logger.warning("No MCP config set; running without tool servers")
            self._pool = ServerPool()
        else:
            self._pool = ServerPool.connect(
                config_path,
                kill_grace_period=self.config.kill_grace_period,
                log_dir=self.paths.lab_dir / "logs",
            )
        self._pool_config = config_path
        return self._pool

    def gate(self, mcp_config: str | None = None) -> ToolCallGate:
        return ToolCallGate(
            self.connect(mcp_config),
            context=self.context,
            preferences=self.config,
            hooks=self.hooks,
        )

    def scheduler(
        self,
        definition: AblationDefinition,
        agent_loop: AgentLoop | str | None = None,
        caller_session: SessionStateMachine | None = None,
    ) -> ExperimentScheduler:
        """Build a scheduler connected to the definition's tool servers."""
        if isinstance(agent_loop, str):
            agent_loop = load_agent_loop(agent_loop)
        return ExperimentScheduler(
            self.ablations,
            self.snapshots,
            self.gate(definition.settings.mcp_config_path),
            agent_loop=agent_loop,
            caller_session=caller_session,
        )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close_all()
        self._pool = None
        self._pool_config = None
