"""Tool execution engine.

Every call resolves to a plain dict the model can read. Unknown tools,
policy rejections, bad arguments, timeouts and unexpected exceptions are
converted into ``{"error": ..., "suggestion": ...}`` records instead of
propagating, so one failing tool never ends an agent run.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from querypilot.models.tools import ToolFailure
from querypilot.tools.base import ToolContext
from querypilot.tools.policy import PolicyEngine, ToolPolicyError
from querypilot.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def _failure(error: str, suggestion: str | None = None) -> dict[str, Any]:
    return ToolFailure(error=error, suggestion=suggestion).to_wire()


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for detail in exc.errors():
        location = ".".join(str(item) for item in detail.get("loc", ()) if item != "ctx")
        parts.append(f"{location or 'arguments'}: {detail.get('msg')}")
    return "; ".join(parts)


def _to_record(result: Any) -> dict[str, Any]:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json", by_alias=True)
    if isinstance(result, dict):
        return result
    return {"result": result}


class ToolExecutor:
    def __init__(self, policy_engine: PolicyEngine | None = None) -> None:
        self.policy_engine = policy_engine or PolicyEngine()

    async def execute(self, name: str, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        definition = ToolRegistry.get_definition(name)
        handler = ToolRegistry.get_handler(name)
        if not definition or not handler:
            available = ", ".join(d.name for d in ToolRegistry.list_definitions(enabled_only=True))
            return _failure(f"Unknown tool: {name}", f"Use one of: {available}")

        try:
            self.policy_engine.enforce(definition)
        except ToolPolicyError as exc:
            return _failure(str(exc))

        ctx.log_action("tool_invoked", {"tool": name, "args": list(args.keys())})
        timeout = definition.policy.max_execution_time_seconds

        try:
            if "ctx" in inspect.signature(handler).parameters:
                result = handler(**args, ctx=ctx)
            else:
                result = handler(**args)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=timeout)
        except ValidationError as exc:
            return _failure(
                f"Invalid arguments for {name}: {_format_validation_error(exc)}",
                "Check the tool's parameter schema and call it again.",
            )
        except asyncio.TimeoutError:
            logger.warning(f"Tool timed out: {name} after {timeout}s")
            return _failure(f"Tool '{name}' timed out after {timeout}s")
        except Exception as exc:
            logger.error(f"Tool execution failed: {name} - {exc}", exc_info=True)
            return _failure(str(exc) or exc.__class__.__name__)

        ctx.log_action("tool_completed", {"tool": name})
        return _to_record(result)
