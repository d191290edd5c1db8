# Copyright (c) Syntropy Systems
"""Configuration management for mcplab."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import cast

import yaml

LAB_DIR_NAME = ".mcplab"


@dataclass
class LabConfig:
    """Configuration for mcplab."""

    # Per-call tool timeout in seconds (-1 means effectively unlimited)
    tool_timeout: int = 60

    # Max agent iterations per conversational command
    max_iterations: int = 100

    # How often a pending tool call checks for a user abort (seconds)
    abort_poll_interval: float = 0.5

    # Seconds after an abort before offering to force-stop the call
    force_stop_after: float = 15.0

    # Grace period before SIGKILL after SIGTERM for tool servers (seconds)
    kill_grace_period: float = 5.0

    # MCP server configuration file (relative to the project root)
    mcp_config: str | None = None

    def get_tool_timeout(self) -> int:
        """Return the configured per-call tool timeout in seconds."""
        return self.tool_timeout


def find_lab_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .mcplab directory by walking up from start_path.

    Returns None if no .mcplab directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        lab_dir = current / LAB_DIR_NAME
        if lab_dir.is_dir():
            return lab_dir
        current = current.parent

    # Check root
    lab_dir = current / LAB_DIR_NAME
    if lab_dir.is_dir():
        return lab_dir

    return None


def get_global_config_dir() -> Path:
    """Get the global mcplab config directory (~/.mcplab)."""
    return Path.home() / LAB_DIR_NAME


def _config_path_for(lab_dir: Path | None) -> Path | None:
    if lab_dir is not None:
        return lab_dir / "config.yaml"

    found_dir = find_lab_dir()
    if found_dir is not None:
        return found_dir / "config.yaml"

    global_config = get_global_config_dir() / "config.yaml"
    if global_config.exists():
        return global_config
    return None


def load_config(lab_dir: Path | None = None) -> LabConfig:
    """Load configuration from .mcplab/config.yaml or defaults.

    Looks for config in:
    1. Provided lab_dir
    2. Nearest .mcplab directory walking up
    3. ~/.mcplab/config.yaml
    4. Defaults
    """
    config = LabConfig()
    config_path = _config_path_for(lab_dir)

    if config_path is not None and config_path.exists():
        with config_path.open() as f:
            data = cast("dict[str, object]", yaml.safe_load(f) or {})

        tool_timeout = data.get("tool_timeout")
        if isinstance(tool_timeout, (int, float)):
            config.tool_timeout = int(tool_timeout)
        max_iterations = data.get("max_iterations")
        if isinstance(max_iterations, (int, float)):
            config.max_iterations = int(max_iterations)
        abort_poll_interval = data.get("abort_poll_interval")
        if isinstance(abort_poll_interval, (int, float)):
            config.abort_poll_interval = float(abort_poll_interval)
        force_stop_after = data.get("force_stop_after")
        if isinstance(force_stop_after, (int, float)):
            config.force_stop_after = float(force_stop_after)
        kill_grace_period = data.get("kill_grace_period")
        if isinstance(kill_grace_period, (int, float)):
            config.kill_grace_period = float(kill_grace_period)
        mcp_config = data.get("mcp_config")
        if isinstance(mcp_config, str):
            config.mcp_config = mcp_config

    return config


def save_config(config: LabConfig, lab_dir: Path) -> Path:
    """Write configuration to lab_dir/config.yaml."""
    config_path = lab_dir / "config.yaml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as f:
        yaml.safe_dump(asdict(config), f, sort_keys=False)
    return config_path


def require_lab_dir() -> Path:
    """Get the lab directory or raise an error if not found."""
    lab_dir = find_lab_dir()
    if lab_dir is None:
        msg = "No .mcplab directory found. Run 'mcplab init' first."
        raise RuntimeError(msg)
    return lab_dir


@dataclass(frozen=True)
class LabPaths:
    """All data directories of one lab, resolved from its .mcplab directory."""

    lab_dir: Path

    @property
    def project_root(self) -> Path:
        return self.lab_dir.parent

    @property
    def ablations_dir(self) -> Path:
        return self.lab_dir / "ablations"

    @property
    def runs_dir(self) -> Path:
        return self.ablations_dir / "runs"

    @property
    def outputs_dir(self) -> Path:
        return self.lab_dir / "outputs"

    @property
    def attachments_dir(self) -> Path:
        return self.lab_dir / "attachments"

    @property
    def chats_dir(self) -> Path:
        return self.lab_dir / "chats"

    @property
    def hooks_file(self) -> Path:
        return self.lab_dir / "hooks.yaml"

    def ensure(self) -> None:
        """Create every data directory that does not exist yet."""
        for path in (
            self.ablations_dir,
            self.runs_dir,
            self.outputs_dir,
            self.attachments_dir,
            self.chats_dir,
        ):
            path.mkdir(parents=True, exist_ok=True)

    def resolve_mcp_config(self, config: LabConfig, override: str | None = None) -> Path | None:
        """Resolve the MCP server config path relative to the project root."""
        raw = override or config.mcp_config
        if raw is None:
            return None
        path = Path(raw)
        return path if path.is_absolute() else self.project_root / path
