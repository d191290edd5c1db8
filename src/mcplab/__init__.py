"""
mcplab - Ablation runner for MCP tool servers.

Script phases of prompts and tool calls, run them across models,
compare the results.
"""

from mcplab.lab import Lab

__version__ = "0.1.0"
__all__ = ["Lab", "__version__"]
