# Copyright (c) Syntropy Systems
"""Isolation of the shared outputs directory across ablation scenarios.

The user's outputs are moved aside once per run (``stash``), the directory
is emptied before every scenario (``clear``), whatever a scenario leaves
behind is copied into the run folder (``capture``), and the user's files are
put back at the end (``unstash``).
"""
from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING

from mcplab.errors import SnapshotIOError
from mcplab.models.ablation import sanitize_name

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

STASH_DIR_NAME = "_stash"
DRY_RUN_DIR_NAME = "dry-run"


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def count_files(path: Path) -> int:
    if not path.exists():
        return 0
    return sum(1 for p in path.rglob("*") if p.is_file())


def prune_empty_dirs(root: Path) -> None:
    """Remove empty directories below root (root itself is kept)."""
    if not root.is_dir():
        return
    for path in sorted(root.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if path.is_dir() and not any(path.iterdir()):
            path.rmdir()


class OutputSnapshotStore:
    """Stash-and-clear management of one outputs directory."""

    def __init__(self, outputs_dir: Path) -> None:
        self.outputs_dir = outputs_dir

    @staticmethod
    def stash_dir(run_dir: Path) -> Path:
        return run_dir / "outputs" / STASH_DIR_NAME

    @staticmethod
    def capture_dir(run_dir: Path, phase: str, model: str | None, iteration: int | None = None) -> Path:
        target = run_dir / "outputs" / sanitize_name(phase) / (sanitize_name(model) if model else DRY_RUN_DIR_NAME)
        if iteration is not None:
            target = target / f"run-{iteration}"
        return target

    def stash(self, run_dir: Path) -> bool:
        """Move the current outputs into the run's stash.

        On failure every item already moved is put back and no stash is
        left behind, so a later ``unstash`` leaves the outputs untouched.

        Returns:
            True if anything was stashed.

        Raises:
            SnapshotIOError: If the outputs cannot be moved.

        """
        stash_dir = self.stash_dir(run_dir)
        moved: list[str] = []
        try:
            self.outputs_dir.mkdir(parents=True, exist_ok=True)
            stash_dir.mkdir(parents=True, exist_ok=True)
            for item in list(self.outputs_dir.iterdir()):
                _ = shutil.move(str(item), str(stash_dir / item.name))
                moved.append(item.name)
        except OSError as e:
            self._roll_back(stash_dir, moved)
            msg = f"Cannot stash {self.outputs_dir}: {e}"
            raise SnapshotIOError(msg) from e
        if moved:
            logger.info("Stashed %d output item(s) to %s", len(moved), stash_dir)
        return bool(moved)

    def _roll_back(self, stash_dir: Path, moved: list[str]) -> None:
        for name in moved:
            try:
                _ = shutil.move(str(stash_dir / name), str(self.outputs_dir / name))
            except OSError:
                logger.exception("Could not move %s back from %s", name, stash_dir)
        try:
            if stash_dir.is_dir() and not any(stash_dir.iterdir()):
                stash_dir.rmdir()
                if stash_dir.parent.is_dir() and not any(stash_dir.parent.iterdir()):
                    stash_dir.parent.rmdir()
        except OSError:
            logger.exception("Could not remove %s", stash_dir)

    def clear(self) -> None:
        """Empty the outputs directory.

        Raises:
            SnapshotIOError: If something cannot be removed.

        """
        try:
            self.outputs_dir.mkdir(parents=True, exist_ok=True)
            for item in self.outputs_dir.iterdir():
                _remove(item)
        except OSError as e:
            msg = f"Cannot clear {self.outputs_dir}: {e}"
            raise SnapshotIOError(msg) from e

    def capture(self, run_dir: Path, phase: str, model: str | None, iteration: int | None = None) -> int:
        """Copy everything in the outputs directory into the run folder.

        Returns:
            Number of files captured.

        Raises:
            SnapshotIOError: If copying fails.

        """
        if not self.outputs_dir.is_dir() or not any(self.outputs_dir.iterdir()):
            return 0
        target = self.capture_dir(run_dir, phase, model, iteration)
        try:
            _ = shutil.copytree(self.outputs_dir, target, dirs_exist_ok=True)
        except (OSError, shutil.Error) as e:
            msg = f"Cannot capture outputs into {target}: {e}"
            raise SnapshotIOError(msg) from e
        return count_files(target)

    def unstash(self, run_dir: Path) -> None:
        """Restore the stashed outputs and drop the stash.

        Does nothing when no stash was taken for this run.

        Raises:
            SnapshotIOError: If the outputs cannot be restored; the stash is
                left in place so nothing is lost.

        """
        stash_dir = self.stash_dir(run_dir)
        if not stash_dir.is_dir():
            return
        try:
            self.clear()
            for item in list(stash_dir.iterdir()):
                _ = shutil.move(str(item), str(self.outputs_dir / item.name))
            stash_dir.rmdir()
            prune_empty_dirs(run_dir / "outputs")
            outputs_root = run_dir / "outputs"
            if outputs_root.is_dir() and not any(outputs_root.iterdir()):
                outputs_root.rmdir()
        except OSError as e:
            msg = f"Cannot restore outputs from {stash_dir}: {e}"
            raise SnapshotIOError(msg) from e
