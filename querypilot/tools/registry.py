"""Tool registry for the QueryPilot agent."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

import yaml

from querypilot.tools.base import ToolDefinition

logger = logging.getLogger(__name__)


class ToolRegistry:
    _definitions: dict[str, ToolDefinition] = {}
    _handlers: dict[str, Callable[..., Any]] = {}

    @classmethod
    def register(cls, definition: ToolDefinition, handler: Callable[..., Any]) -> None:
        cls._definitions[definition.name] = definition
        cls._handlers[definition.name] = handler
        logger.debug(f"Registered tool: {definition.name}")

    @classmethod
    def get_definition(cls, name: str) -> ToolDefinition | None:
        return cls._definitions.get(name)

    @classmethod
    def get_handler(cls, name: str) -> Callable[..., Any] | None:
        return cls._handlers.get(name)

    @classmethod
    def list_definitions(cls, enabled_only: bool = False) -> list[ToolDefinition]:
        definitions = list(cls._definitions.values())
        if enabled_only:
            return [definition for definition in definitions if definition.policy.enabled]
        return definitions

    @classmethod
    def load_policy_config(cls, path: str | Path) -> None:
        policy_path = Path(path)
        if not policy_path.exists():
            logger.warning(f"Tool policy file not found: {policy_path}")
            return

        data = yaml.safe_load(policy_path.read_text()) or {}
        for tool_policy in data.get("tools", []):
            name = tool_policy.get("name")
            if not name or name not in cls._definitions:
                continue
            definition = cls._definitions[name]
            policy = definition.policy.model_copy(
                update={
                    "enabled": tool_policy.get("enabled", definition.policy.enabled),
                    "max_execution_time_seconds": tool_policy.get(
                        "max_execution_time_seconds",
                        definition.policy.max_execution_time_seconds,
                    ),
                }
            )
            cls._definitions[name] = definition.model_copy(update={"policy": policy})
            logger.info(f"Loaded policy for tool: {name}")
