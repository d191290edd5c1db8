# Copyright (c) Syntropy Systems
"""FastAPI application for the mcplab server."""

from __future__ import annotations

import logging
import queue
import threading
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, cast

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse

from mcplab import __version__
from mcplab.ablate.scheduler import CancelToken
from mcplab.errors import InvalidDefinitionError
from mcplab.lab import Lab
from mcplab.models.ablation import AblationDefinition
from mcplab.models.base import JSONValue
from mcplab.models.run import ProgressEvent

from .models import (
    AblationCreate,
    AblationSummary,
    HealthResponse,
    MessageResponse,
    RunListItem,
    RunRequest,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from mcplab.ablate.scheduler import AgentLoop

logger = logging.getLogger(__name__)

_END = object()


class QueueEventSink:
    """Hands scheduler events to the streaming response."""

    def __init__(self) -> None:
        self.queue: queue.Queue[object] = queue.Queue()

    def emit(self, event: ProgressEvent) -> None:
        self.queue.put(event)

    def close(self) -> None:
        self.queue.put(_END)


def _summary(definition: AblationDefinition) -> AblationSummary:
    return AblationSummary(
        name=definition.name,
        description=definition.description,
        created=definition.created,
        updated=definition.updated,
        models=[m.label for m in definition.models],
        phases=[p.name for p in definition.phases],
        dry_run=definition.dry_run,
        runs=definition.runs,
    )


def create_app(lab_dir: Path, agent_loop: AgentLoop | str | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        lab_dir: The .mcplab directory to serve
        agent_loop: Agent loop (or ``module:attr`` path) for non-dry-run ablations

    Returns:
        Configured FastAPI application
    """
    lab = Lab(lab_dir)
    run_lock = threading.Lock()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        lab.close()

    app = FastAPI(
        title="mcplab server",
        description="Manage and run MCP tool ablations",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.lab = lab

    def _load(name: str) -> AblationDefinition:
        try:
            return lab.ablations.load(name)
        except FileNotFoundError as e:
            raise HTTPException(status_code=404, detail=f"Ablation '{name}' not found") from e
        except InvalidDefinitionError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    # --- Ablation Endpoints ---

    @app.get("/api/v1/ablations", response_model=list[AblationSummary])
    def list_ablations() -> list[AblationSummary]:
        """List ablation definitions, newest first."""
        return [_summary(d) for d in lab.ablations.list_definitions()]

    @app.post("/api/v1/ablations", response_model=AblationSummary, status_code=201)
    def create_ablation(request: AblationCreate) -> AblationSummary:
        """Create an ablation definition."""
        try:
            definition = AblationDefinition.from_document(request.definition)
        except InvalidDefinitionError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        try:
            created = lab.ablations.create(definition)
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return _summary(created)

    @app.get("/api/v1/ablations/{name}")
    def get_ablation(name: str) -> dict[str, JSONValue]:
        """Get a definition document as stored on disk."""
        return _load(name).to_ordered_document()

    @app.delete("/api/v1/ablations/{name}", response_model=MessageResponse)
    def delete_ablation(name: str) -> MessageResponse:
        """Delete an ablation definition (runs are kept)."""
        if not lab.ablations.delete(name):
            raise HTTPException(status_code=404, detail=f"Ablation '{name}' not found")
        return MessageResponse(message=f"Ablation '{name}' deleted")

    @app.get("/api/v1/ablations/{name}/runs", response_model=list[RunListItem])
    def list_runs(name: str) -> list[RunListItem]:
        """List past runs of an ablation, newest first."""
        return [
            RunListItem(
                timestamp=timestamp,
                started_at=run.started_at,
                completed_at=run.completed_at,
                aborted=run.aborted,
                total_tokens=run.total_tokens,
                total_duration=run.total_duration,
                completed=run.count("completed"),
                failed=run.count("failed"),
                skipped=run.count("skipped"),
            )
            for timestamp, run in lab.ablations.list_runs(name)
        ]

    @app.post("/api/v1/ablations/{name}/run")
    def run_ablation(name: str, request: RunRequest) -> StreamingResponse:
        """Run an ablation, streaming progress events as NDJSON.

        The last line is a ``result`` event whose ``data`` holds the run
        summary, or an ``error`` event if the run could not start.
        """
        definition = _load(name)
        if not run_lock.acquire(blocking=False):
            raise HTTPException(status_code=409, detail="Another ablation is already running")

        sink = QueueEventSink()
        cancel = CancelToken()

        def _worker() -> None:
            try:
                scheduler = lab.scheduler(definition, agent_loop=agent_loop)
                run = scheduler.run(definition, request.arguments, events=sink, cancel=cancel)
                sink.emit(ProgressEvent(type="result", message="summary", data=run.to_document()))
            except Exception as e:
                logger.exception('Ablation "%s" failed', name)
                sink.emit(ProgressEvent(type="error", message=str(e)))
            finally:
                run_lock.release()
                sink.close()

        thread = threading.Thread(target=_worker, name=f"mcplab-run-{name}", daemon=True)
        thread.start()

        def _stream() -> Iterator[str]:
            try:
                while True:
                    item = sink.queue.get()
                    if item is _END:
                        return
                    event = cast("ProgressEvent", item)
                    yield event.model_dump_json(by_alias=True, exclude_none=True) + "\n"
            finally:
                # Client went away before the run finished
                if thread.is_alive():
                    cancel.cancel()

        return StreamingResponse(_stream(), media_type="application/x-ndjson")

    # --- Health Check ---

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse()

    return app
