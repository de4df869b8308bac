"""Policy enforcement for tool execution."""

from __future__ import annotations

from querypilot.tools.base import ToolDefinition


class ToolPolicyError(Exception):
    pass


class PolicyEngine:
    def enforce(self, definition: ToolDefinition) -> None:
        if not definition.policy.enabled:
            raise ToolPolicyError(f"Tool '{definition.name}' is disabled by policy.")
