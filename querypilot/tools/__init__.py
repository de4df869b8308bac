"""Tool system entrypoint."""

from __future__ import annotations

from pathlib import Path

from querypilot.tools.base import ToolCategory, ToolContext, ToolDefinition, tool
from querypilot.tools.executor import ToolExecutor
from querypilot.tools.policy import PolicyEngine, ToolPolicyError
from querypilot.tools.registry import ToolRegistry


def initialize_tools(policy_path: str | Path | None = None) -> None:
    # Register built-in tools
    from querypilot.tools.builtin import planning, presentation, query, schema  # noqa: F401

    if policy_path:
        ToolRegistry.load_policy_config(policy_path)


__all__ = [
    "PolicyEngine",
    "ToolCategory",
    "ToolContext",
    "ToolDefinition",
    "ToolExecutor",
    "ToolPolicyError",
    "ToolRegistry",
    "initialize_tools",
    "tool",
]
