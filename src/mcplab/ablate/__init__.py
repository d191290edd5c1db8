# Copyright (c) Syntropy Systems
"""Ablation definition and run persistence."""
from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from pydantic import ValidationError

from mcplab.errors import InvalidDefinitionError
from mcplab.models.ablation import AblationDefinition, AblationModel, AblationPhase, sanitize_name, utcnow_iso
from mcplab.models.run import AblationRun

if TYPE_CHECKING:
    from collections.abc import Mapping

    from mcplab.config import LabPaths

logger = logging.getLogger(__name__)

RUN_SUMMARY_FILE = "summary.json"
RUN_REPORT_FILE = "summary.md"


def format_run_timestamp(now: datetime | None = None) -> str:
    """Run folder name: local ``YYYY-MM-DD-HHMMSS``."""
    return f"{now or datetime.now():%Y-%m-%d-%H%M%S}"


def chat_file_name(model: AblationModel) -> str:
    return f"{model.slug}.json"


class AblationStore:
    """Definitions as YAML under ``ablations/``, runs under ``ablations/runs/``."""

    def __init__(self, paths: LabPaths) -> None:
        self.paths = paths
        self.paths.ablations_dir.mkdir(parents=True, exist_ok=True)
        self.paths.runs_dir.mkdir(parents=True, exist_ok=True)

    def definition_path(self, name: str) -> Path:
        return self.paths.ablations_dir / f"{sanitize_name(name)}.yaml"

    def exists(self, name: str) -> bool:
        return self.definition_path(name).exists()

    # Definitions

    def create(self, definition: AblationDefinition) -> AblationDefinition:
        """Persist a new definition stamped with its creation time.

        Raises:
            ValueError: If a definition with that name already exists.

        """
        if self.exists(definition.name):
            msg = f'Ablation "{definition.name}" already exists'
            raise ValueError(msg)
        created = definition.model_copy(update={"created": utcnow_iso(), "updated": None})
        self.save(created)
        return created

    def save(self, definition: AblationDefinition) -> Path:
        path = self.definition_path(definition.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            yaml.safe_dump(definition.to_ordered_document(), f, sort_keys=False, allow_unicode=True)
        return path

    def load(self, name: str) -> AblationDefinition:
        """Load a definition by name.

        Raises:
            FileNotFoundError: If no such definition exists.
            InvalidDefinitionError: If the file does not parse or validate.

        """
        path = self.definition_path(name)
        if not path.exists():
            msg = f"Ablation '{name}' not found"
            raise FileNotFoundError(msg)
        try:
            with path.open() as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            msg = f"Cannot parse {path}: {e}"
            raise InvalidDefinitionError(msg) from e
        return AblationDefinition.from_document(data)

    def list_definitions(self) -> list[AblationDefinition]:
        """All loadable definitions, newest first; broken files are logged and skipped."""
        definitions: list[AblationDefinition] = []
        for path in sorted(self.paths.ablations_dir.glob("*.yaml")):
            try:
                definitions.append(self.load(path.stem))
            except InvalidDefinitionError:
                logger.warning("Skipping invalid ablation file %s", path, exc_info=True)
        definitions.sort(key=lambda d: d.created, reverse=True)
        return definitions

    def update(self, name: str, updates: Mapping[str, object]) -> AblationDefinition:
        """Apply field updates; name and creation time never change."""
        current = self.load(name)
        data = current.model_dump()
        data.update(updates)
        data["name"] = current.name
        data["created"] = current.created
        data["updated"] = utcnow_iso()
        try:
            updated = AblationDefinition.model_validate(data)
        except ValidationError as e:
            raise InvalidDefinitionError(str(e)) from e
        self.save(updated)
        return updated

    def delete(self, name: str) -> bool:
        path = self.definition_path(name)
        if not path.exists():
            return False
        path.unlink()
        return True

    def add_phase(self, name: str, phase: AblationPhase) -> AblationDefinition:
        current = self.load(name)
        if current.get_phase(phase.name) is not None:
            msg = f'Phase "{phase.name}" already exists in "{name}"'
            raise InvalidDefinitionError(msg)
        return self.update(name, {"phases": [*current.phases, phase]})

    def remove_phase(self, name: str, phase_name: str) -> AblationDefinition:
        current = self.load(name)
        if current.get_phase(phase_name) is None:
            msg = f'Phase "{phase_name}" not found in "{name}"'
            raise InvalidDefinitionError(msg)
        return self.update(name, {"phases": [p for p in current.phases if p.name != phase_name]})

    def update_phase(self, name: str, phase_name: str, updates: Mapping[str, object]) -> AblationDefinition:
        current = self.load(name)
        phase = current.get_phase(phase_name)
        if phase is None:
            msg = f'Phase "{phase_name}" not found in "{name}"'
            raise InvalidDefinitionError(msg)
        replaced = phase.model_copy(update=dict(updates))
        return self.update(
            name, {"phases": [replaced if p.name == phase_name else p for p in current.phases]}
        )

    def add_models(self, name: str, models: list[AblationModel]) -> AblationDefinition:
        """Add models, ignoring ones already present."""
        current = self.load(name)
        merged = list(current.models)
        for model in models:
            if all((m.provider, m.model) != (model.provider, model.model) for m in merged):
                merged.append(model)
        return self.update(name, {"models": merged})

    def remove_models(self, name: str, models: list[AblationModel]) -> AblationDefinition:
        current = self.load(name)
        drop = {(m.provider, m.model) for m in models}
        return self.update(name, {"models": [m for m in current.models if (m.provider, m.model) not in drop]})

    # Runs

    def ablation_runs_dir(self, name: str) -> Path:
        return self.paths.runs_dir / sanitize_name(name)

    def create_run_dir(self, name: str, now: datetime | None = None) -> Path:
        """Create ``runs/<name>/<timestamp>`` with its ``chats/`` subfolder."""
        base = self.ablation_runs_dir(name)
        run_dir = base / format_run_timestamp(now)
        # Two runs started in the same second get a numeric suffix
        suffix = 1
        while run_dir.exists():
            suffix += 1
            run_dir = base / f"{format_run_timestamp(now)}-{suffix}"
        (run_dir / "chats").mkdir(parents=True)
        return run_dir

    def save_run(self, run_dir: Path, run: AblationRun) -> Path:
        path = run_dir / RUN_SUMMARY_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            json.dump(run.to_document(), f, indent=2)
        return path

    def load_run(self, run_dir: Path) -> AblationRun | None:
        path = run_dir / RUN_SUMMARY_FILE
        if not path.exists():
            return None
        try:
            with path.open() as f:
                return AblationRun.model_validate(json.load(f))
        except (ValueError, ValidationError):
            logger.warning("Cannot read run summary %s", path, exc_info=True)
            return None

    def list_runs(self, name: str) -> list[tuple[str, AblationRun]]:
        """(timestamp, run) pairs, newest first."""
        base = self.ablation_runs_dir(name)
        if not base.is_dir():
            return []
        runs: list[tuple[str, AblationRun]] = []
        for folder in base.iterdir():
            if not folder.is_dir():
                continue
            run = self.load_run(folder)
            if run is not None:
                runs.append((folder.name, run))
        runs.sort(key=lambda item: item[0], reverse=True)
        return runs

    def copy_attachments(self, run_dir: Path, definition: AblationDefinition, values: Mapping[str, str]) -> list[Path]:
        """Copy files named by attachment arguments into ``run_dir/attachments``.

        Returns the copied paths; missing files are logged and skipped.
        """
        copied: list[Path] = []
        for argument in definition.arguments:
            if argument.type != "attachment":
                continue
            file_name = values.get(argument.name)
            if not file_name:
                continue
            source = Path(file_name)
            if not source.is_absolute():
                source = self.paths.attachments_dir / file_name
            if not source.is_file():
                logger.warning('Attachment "%s" for argument "%s" not found', file_name, argument.name)
                continue
            target = run_dir / "attachments" / source.name
            target.parent.mkdir(parents=True, exist_ok=True)
            _ = shutil.copy2(source, target)
            copied.append(target)
        return copied

