# Copyright (c) Syntropy Systems
"""Tool hooks: matching, directive execution and persistence."""
from __future__ import annotations

from mcplab.hooks.engine import HookEngine, HookInvocation, HookObserver, matches_partial
from mcplab.hooks.store import HookStore

__all__ = ["HookEngine", "HookInvocation", "HookObserver", "HookStore", "matches_partial"]
