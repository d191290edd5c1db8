# Copyright (c) Syntropy Systems
"""Tool server process management with orphan prevention."""
from __future__ import annotations

import contextlib
import ctypes
import logging
import os
import signal
import subprocess
import sys
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def setup_pdeathsig() -> None:
    """Set PDEATHSIG so the server dies when the client dies.

    Only works on Linux.
    """
    if sys.platform != "linux":
        return
    try:
        libc = ctypes.CDLL("libc.so.6", use_errno=True)
        pr_set_pdeathsig = 1
        libc.prctl(pr_set_pdeathsig, signal.SIGKILL)
    except (AttributeError, OSError):
        return


class ServerProcess:
    """A long-lived stdio tool server process.

    Features:
    - Own process group (start_new_session=True) so the whole tree can be killed
    - PDEATHSIG on Linux
    - stdin/stdout pipes for the protocol, stderr appended to a log file
    - Graceful SIGTERM then SIGKILL termination
    """

    command_argv: list[str]
    workdir: Path | None
    stderr_path: Path | None
    env: dict[str, str]
    _process: subprocess.Popen[bytes] | None
    _exit_code: int | None
    _stderr_file: IO[bytes] | None

    def __init__(
        self,
        command_argv: list[str],
        workdir: Path | None = None,
        env: dict[str, str] | None = None,
        stderr_path: Path | None = None,
    ) -> None:
        """Initialize a server process.

        Args:
            command_argv: Command as list of argv tokens (no shell)
            workdir: Working directory, or the current one when None
            env: Additional environment variables
            stderr_path: File that receives the server's stderr; discarded when None

        """
        self.command_argv = command_argv
        self.workdir = workdir
        self.stderr_path = stderr_path

        self.env = os.environ.copy()
        if env:
            self.env.update(env)

        self._process = None
        self._exit_code = None
        self._stderr_file = None

    def start(self) -> None:
        """Start the server process.

        Raises:
            OSError: If the command cannot be executed.

        """
        if self.stderr_path is not None:
            self.stderr_path.parent.mkdir(parents=True, exist_ok=True)
            self._stderr_file = self.stderr_path.open("ab")

        self._exit_code = None
        try:
            self._process = subprocess.Popen(  # noqa: S603
                self.command_argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=self._stderr_file if self._stderr_file is not None else subprocess.DEVNULL,
                env=self.env,
                cwd=str(self.workdir) if self.workdir is not None else None,
                start_new_session=True,
                preexec_fn=setup_pdeathsig if sys.platform == "linux" else None,  # noqa: PLW1509
            )
        except OSError:
            self._cleanup()
            raise
        logger.debug("Started tool server pid=%s: %s", self._process.pid, self.command_argv)

    @property
    def stdin(self) -> IO[bytes]:
        if self._process is None or self._process.stdin is None:
            msg = "Server process is not running"
            raise RuntimeError(msg)
        return self._process.stdin

    @property
    def stdout(self) -> IO[bytes]:
        if self._process is None or self._process.stdout is None:
            msg = "Server process is not running"
            raise RuntimeError(msg)
        return self._process.stdout

    def kill(self, grace_period: float = 5.0) -> int:
        """Stop the server and everything it spawned.

        The process group gets SIGTERM, then SIGKILL if the server is still
        alive after grace_period seconds.

        Returns:
            Exit code (negative signal number if killed)

        """
        process = self._process
        if process is None:
            return self._exit_code or 0
        if process.poll() is not None:
            return self._finish(process.returncode or 0)

        try:
            pgid = os.getpgid(process.pid)
        except (OSError, ProcessLookupError):
            return self._finish(self._exit_code or -signal.SIGKILL)

        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGTERM)
        try:
            return self._finish(process.wait(timeout=grace_period) or 0)
        except subprocess.TimeoutExpired:
            logger.warning("Tool server pid=%s ignored SIGTERM, sending SIGKILL", process.pid)

        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGKILL)
        with contextlib.suppress(subprocess.TimeoutExpired):
            _ = process.wait(timeout=5.0)
        return self._finish(process.returncode or -signal.SIGKILL)

    def _finish(self, exit_code: int) -> int:
        self._exit_code = exit_code
        self._cleanup()
        return exit_code

    def _cleanup(self) -> None:
        """Close pipes and the stderr log."""
        if self._process is not None:
            for stream in (self._process.stdin, self._process.stdout):
                if stream is not None:
                    with contextlib.suppress(OSError):
                        stream.close()
            self._process = None
        if self._stderr_file:
            with contextlib.suppress(OSError):
                self._stderr_file.close()
            self._stderr_file = None

    @property
    def is_running(self) -> bool:
        if self._process is None:
            return False
        return self._process.poll() is None
