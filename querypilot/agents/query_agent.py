"""
Query Agent

Multi-step, tool-using SQL agent. One run turns a natural language goal into
a final read-only query by letting the model inspect the schema, test SQL
and present the result, narrating each step as an ``AgentStreamEvent``.

The run ends when the model calls ``update_query_ui`` (goal completed), when
the step budget is exhausted, when the provider fails, or when the caller
sets the cancellation event. Every run ends with exactly one ``complete``
event carrying the final ``AgentState``.

Usage:
    config = AgentRunConfig(connection_string=dsn, schema_snapshot=tables)
    provider = LLMProviderFactory.create_default_provider(settings.llm)

    async for event in stream_query_agent("Top customers by revenue", config, provider):
        print(event.to_wire())
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing

from querypilot.config import Settings, get_settings
from querypilot.llm.base import BaseLLMProvider
from querypilot.llm.models import LLMMessage, ToolSpec, has_tool_call, step_count_is
from querypilot.models.agent import AgentRunConfig, AgentState, ToolCallRecord
from querypilot.models.errors import LLMAuthError, LLMRateLimitError, RunAbortedError
from querypilot.models.events import (
    AgentStreamEvent,
    CompleteEvent,
    ErrorEvent,
    StepEvent,
    TextEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)
from querypilot.models.tools import TERMINAL_TOOL, ToolName
from querypilot.prompts.loader import PromptLoader
from querypilot.tools.base import ToolContext
from querypilot.tools.executor import ToolExecutor
from querypilot.tools.registry import ToolRegistry
from querypilot.utils.sql_guard import format_sql

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "agents/query_agent.md"

_PROVIDER_LABELS = {"anthropic": "Claude", "openai": "OpenAI"}


def build_system_prompt(
    goal: str,
    is_follow_up: bool,
    previous_context: str | None,
    max_steps: int,
    prompts: PromptLoader | None = None,
) -> str:
    """Render the agent system prompt for one run."""
    loader = prompts or PromptLoader()
    return loader.render(
        SYSTEM_PROMPT,
        goal=goal,
        is_follow_up=is_follow_up,
        previous_context=previous_context,
        max_steps=max_steps,
    )


def build_user_message(goal: str, previous_sql: str | None) -> str:
    """Seed user turn: the goal, prefixed with the current SQL on follow-ups."""
    if previous_sql:
        return f"Current SQL query:\n```sql\n{previous_sql}\n```\n\nUser request: {goal}"
    return goal


def build_tool_specs(ctx: ToolContext, executor: ToolExecutor | None = None) -> list[ToolSpec]:
    """Expose every enabled registered tool to the model, bound to ``ctx``."""
    executor = executor or ToolExecutor()
    specs = []
    for definition in ToolRegistry.list_definitions(enabled_only=True):

        async def run(args, _name=definition.name):
            return await executor.execute(_name, args, ctx)

        specs.append(
            ToolSpec(
                name=definition.name,
                description=definition.description,
                input_schema=definition.parameters_schema,
                execute=run,
            )
        )
    return specs


def describe_provider_error(error: BaseException | str | None, fallback: str = "Unknown error") -> str:
    """Turn a provider failure into the message shown to the user."""
    if isinstance(error, LLMAuthError):
        label = _PROVIDER_LABELS.get(error.agent, error.agent)
        return f"Invalid API key. Please check your {label} API key."
    if isinstance(error, LLMRateLimitError):
        if "overloaded" in error.message.lower():
            label = _PROVIDER_LABELS.get(error.agent, error.agent)
            return f"{label} is currently overloaded. Please try again in a moment."
        return "Rate limit exceeded. Please try again later."

    if isinstance(error, BaseException):
        message = getattr(error, "message", None) or str(error)
    else:
        message = error or ""
    if not message:
        return fallback

    lowered = message.lower()
    if "invalid_api_key" in lowered or "authentication" in lowered:
        return "Invalid API key. Please check your Claude API key."
    if "rate_limit" in lowered:
        return "Rate limit exceeded. Please try again later."
    if "overloaded" in lowered:
        return "Claude is currently overloaded. Please try again in a moment."
    return message


def _is_abort_noise(error: BaseException | None, cancel_event: asyncio.Event | None) -> bool:
    """Errors raised after the run was cancelled are fallout, not failures."""
    if isinstance(error, RunAbortedError):
        return True
    return cancel_event is not None and cancel_event.is_set()


async def stream_query_agent(
    goal: str,
    config: AgentRunConfig,
    provider: BaseLLMProvider,
    cancel_event: asyncio.Event | None = None,
    tool_executor: ToolExecutor | None = None,
    settings: Settings | None = None,
) -> AsyncIterator[AgentStreamEvent]:
    """
    Run the query agent, yielding stream events in order.

    Args:
        goal: The user's request for this run
        config: Connection, schema snapshot, follow-up context and step budget
        provider: Model provider driving the tool loop
        cancel_event: Set by the caller to stop the run
        tool_executor: Executor used for tool calls (default: new ToolExecutor)
        settings: Settings supplying database timeouts and tool limits

    Yields:
        step, text, tool_call_start, tool_call_result and error events,
        always followed by exactly one complete event.
    """
    settings = settings or get_settings()
    state = AgentState(
        goal=goal,
        max_steps=config.max_steps,
        current_sql=config.previous_sql or None,
        previous_sql=config.previous_sql or None,
    )
    ctx = ToolContext(
        connection_string=config.connection_string,
        schema_snapshot=config.schema_snapshot,
        correlation_id=uuid.uuid4().hex,
        database=settings.database,
        limits=settings.agent,
    )
    is_follow_up = bool(config.previous_sql)

    logger.info(
        f"Starting query agent run {ctx.correlation_id}",
        extra={
            "correlation_id": ctx.correlation_id,
            "goal": goal[:100],
            "follow_up": is_follow_up,
            "max_steps": config.max_steps,
        },
    )

    pending: dict[str, ToolCallRecord] = {}

    try:
        system = build_system_prompt(goal, is_follow_up, config.previous_context, config.max_steps)
        parts = provider.stream_with_tools(
            system=system,
            messages=[LLMMessage(role="user", content=build_user_message(goal, config.previous_sql))],
            tools=build_tool_specs(ctx, tool_executor),
            stop_when=[has_tool_call(TERMINAL_TOOL), step_count_is(config.max_steps)],
            cancel_event=cancel_event,
        )
        async with aclosing(parts) as stream:
            async for part in stream:
                if cancel_event is not None and cancel_event.is_set():
                    break

                match part.type:
                    case "step-start":
                        state.current_step += 1
                        yield StepEvent(step=state.current_step, max_steps=state.max_steps)

                    case "text-delta":
                        yield TextEvent(delta=part.text)

                    case "tool-call":
                        record = ToolCallRecord(id=part.id, tool_name=part.name, args=part.args)
                        pending[part.id] = record
                        yield ToolCallStartEvent(id=part.id, tool_name=part.name, args=record.args)

                        if part.name == TERMINAL_TOOL:
                            sql = part.args.get("sql")
                            if isinstance(sql, str) and sql.strip():
                                state.current_sql = format_sql(sql)
                                state.has_completed_goal = True

                    case "tool-result":
                        record = pending.pop(part.id, None)
                        if record is None:
                            logger.debug(f"Dropping result for unknown tool call {part.id}")
                            continue
                        record.result = part.output
                        state.tool_calls.append(record)
                        yield ToolCallResultEvent(tool_call=record)

                        if record.tool_name == ToolName.EXECUTE_QUERY:
                            error = part.output.get("error")
                            if part.output.get("success") is False and error:
                                state.last_error = error
                            else:
                                state.last_error = None

                    case "error":
                        if _is_abort_noise(part.exception, cancel_event):
                            continue
                        message = describe_provider_error(part.exception or part.error)
                        state.last_error = message
                        yield ErrorEvent(message=message)

                    case "finish":
                        if state.current_step >= state.max_steps and not state.has_completed_goal:
                            state.reached_step_limit = True

    except RunAbortedError:
        logger.info(f"Query agent run {ctx.correlation_id} aborted at step {state.current_step}")
    except Exception as e:
        message = describe_provider_error(e)
        state.last_error = message
        if not _is_abort_noise(e, cancel_event):
            logger.error(
                f"Query agent run {ctx.correlation_id} failed: {e}",
                extra={"correlation_id": ctx.correlation_id, "step": state.current_step},
                exc_info=True,
            )
            yield ErrorEvent(message=message)

    logger.info(
        f"Query agent run {ctx.correlation_id} finished",
        extra={
            "correlation_id": ctx.correlation_id,
            "steps": state.current_step,
            "completed": state.has_completed_goal,
            "reached_step_limit": state.reached_step_limit,
            "tool_calls": len(state.tool_calls),
        },
    )
    yield CompleteEvent(state=state)


async def run_query_agent(
    goal: str,
    config: AgentRunConfig,
    provider: BaseLLMProvider,
    on_tool_call: Callable[[ToolCallRecord], None] | None = None,
    on_state_update: Callable[[dict], None] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> AgentState:
    """Run the agent to completion and return its final state."""
    final_state: AgentState | None = None
    async with aclosing(stream_query_agent(goal, config, provider, cancel_event)) as events:
        async for event in events:
            match event:
                case StepEvent(step=step):
                    if on_state_update:
                        on_state_update({"current_step": step})
                case ToolCallResultEvent(tool_call=record):
                    if on_tool_call:
                        on_tool_call(record)
                case CompleteEvent(state=state):
                    final_state = state
    if final_state is None:  # pragma: no cover - the stream always completes
        raise RuntimeError("Query agent stream ended without a complete event")
    return final_state
