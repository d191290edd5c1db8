# Copyright (c) Syntropy Systems
"""mcplab HTTP API for managing and running ablations."""

from .app import create_app
from .models import (
    AblationCreate,
    AblationSummary,
    HealthResponse,
    MessageResponse,
    RunListItem,
    RunRequest,
)

__all__ = [
    "AblationCreate",
    "AblationSummary",
    "HealthResponse",
    "MessageResponse",
    "RunListItem",
    "RunRequest",
    "create_app",
]
