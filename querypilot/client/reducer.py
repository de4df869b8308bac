"""
Client Reducer

Folds an agent event stream into ``AgentProgress`` and a transcript. The
reducer is the only consumer of the stream on the client side and the only
writer of the progress it exposes.

Tool results are dispatched on ``ToolName``; every member has an arm in
``_apply_tool_result`` so a new tool cannot be added to the registry without
deciding what the client does with its results.
"""

import logging
from typing import Any

from querypilot.client.models import (
    AgentProgress,
    AgentTodoItem,
    QueryPreview,
    ToolCallInfo,
    TranscriptEntry,
)
from querypilot.config import MAX_AGENT_STEPS
from querypilot.models.agent import AgentState, ToolCallRecord
from querypilot.models.base import now_ms
from querypilot.models.events import (
    AgentStreamEvent,
    CompleteEvent,
    ErrorEvent,
    StepEvent,
    TextEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)
from querypilot.models.tools import ToolName

logger = logging.getLogger(__name__)

SAMPLE_ROWS = 3


class AgentReducer:
    """
    Rebuilds client state from stream events.

    Attributes:
        progress: Progress of the current (or last) run, None before any run
        transcript: Conversation entries, kept across runs
        current_sql: SQL shown to the user (the editor contents)
        is_ai_generated: Whether ``current_sql`` came from the agent
        final_sql: SQL captured for the current run, if any
        final_state: The ``AgentState`` carried by the last complete event

    Usage:
        reducer = AgentReducer()
        reducer.start_run("Orders per customer")
        for event in events:
            reducer.apply(event)
        print(reducer.final_sql, reducer.progress.can_continue)
    """

    def __init__(self, current_sql: str | None = None):
        self.progress: AgentProgress | None = None
        self.transcript: list[TranscriptEntry] = []
        self.current_sql = current_sql
        self.is_ai_generated = False
        self.final_sql: str | None = None
        self.final_explanation: str | None = None
        self.final_state: AgentState | None = None

    # ========================================================================
    # Run lifecycle
    # ========================================================================

    def start_run(self, goal: str, max_steps: int = MAX_AGENT_STEPS) -> AgentProgress:
        """Replace the progress with a fresh one for a new run."""
        self.progress = AgentProgress(goal=goal, max_steps=max_steps)
        self.final_sql = None
        self.final_explanation = None
        self.final_state = None
        self.add_entry("user", goal)
        return self.progress

    def stop(self, message: str | None = "Agent stopped.") -> None:
        """Mark the run stopped by the user; it cannot be continued."""
        if self.progress is None:
            return
        self.progress.is_running = False
        self.progress.can_continue = False
        for call in self.progress.tool_calls:
            if call.status == "running":
                call.status = "error"
        if message:
            self.add_entry("system", message)

    def fail(self, message: str) -> None:
        """Record a transport failure that ended the run before ``complete``."""
        self.add_entry("assistant", message, kind="error")
        self.stop(message=None)

    def add_entry(self, role: str, content: str, **fields: Any) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, content=content, **fields)
        self.transcript.append(entry)
        return entry

    # ========================================================================
    # Events
    # ========================================================================

    def apply(self, event: AgentStreamEvent) -> None:
        """Fold one event into the current progress."""
        if self.progress is None:
            raise RuntimeError("start_run() must be called before applying events")
        progress = self.progress

        match event:
            case StepEvent(step=step, max_steps=max_steps):
                progress.current_step = step
                progress.max_steps = max_steps
                progress.is_running = True

            case TextEvent(delta=delta):
                progress.streaming_text += delta

            case ToolCallStartEvent(id=call_id, tool_name=tool_name, args=args):
                progress.tool_calls.append(
                    ToolCallInfo(id=call_id, tool_name=tool_name, args=args, status="running")
                )

            case ToolCallResultEvent(tool_call=record):
                self._finish_tool_call(record)
                self._apply_tool_result(record)

            case ErrorEvent(message=message):
                self.add_entry("system", f"Error: {message}", kind="error")

            case CompleteEvent(state=state):
                self._complete(state)

    def _finish_tool_call(self, record: ToolCallRecord) -> None:
        calls = self.progress.tool_calls
        call = next((c for c in calls if c.id == record.id), None)
        if call is None:
            # Oldest running call of the same tool
            call = next(
                (c for c in calls if c.status == "running" and c.tool_name == record.tool_name),
                None,
            )
        if call is None:
            logger.debug(f"Result for untracked tool call {record.id} ({record.tool_name})")
            call = ToolCallInfo(id=record.id, tool_name=record.tool_name, args=record.args)
            calls.append(call)

        call.result = record.result
        call.status = "error" if _result_error(record.result) else "success"

    def _apply_tool_result(self, record: ToolCallRecord) -> None:
        result = record.result if isinstance(record.result, dict) else {}
        tool = ToolName.parse(record.tool_name)

        match tool:
            case ToolName.UPDATE_QUERY_UI:
                self._apply_final_query(record.args, result)
            case ToolName.EXECUTE_QUERY:
                self._apply_query_result(record.args, result)
            case ToolName.GENERATE_CHART:
                self._apply_chart(result)
            case ToolName.MANAGE_TODO:
                self._apply_todo(result)
            case ToolName.GET_TABLE_SCHEMA | ToolName.GET_JSON_KEYS | ToolName.VALIDATE_QUERY:
                pass
            case None:
                logger.debug(f"Ignoring result of unknown tool {record.tool_name}")

    def _complete(self, state: AgentState) -> None:
        progress = self.progress
        self.final_state = state
        progress.is_running = False
        progress.can_continue = state.reached_step_limit
        for call in progress.tool_calls:
            if call.status == "running":
                call.status = "error"

        if self.final_sql is None and state.current_sql:
            self.final_sql = state.current_sql
            self.current_sql = state.current_sql
            self.is_ai_generated = True

        if state.reached_step_limit:
            self.add_entry(
                "system",
                f'Agent reached {progress.max_steps} step limit. Use "continue" to let it keep trying.',
            )

    # ========================================================================
    # Tool side effects
    # ========================================================================

    def _apply_final_query(self, args: dict[str, Any], result: dict[str, Any]) -> None:
        sql = args.get("sql") or result.get("sql")
        if not sql:
            return
        explanation = args.get("explanation") or result.get("explanation") or ""
        confidence = args.get("confidence") or result.get("confidence")
        self.add_entry(
            "assistant",
            explanation,
            sql=sql,
            previous_sql=self.current_sql,
            explanation=explanation,
            confidence=confidence if confidence in ("high", "medium", "low") else None,
            suggestions=list(args.get("suggestions") or result.get("suggestions") or []),
        )
        self.final_sql = sql
        self.final_explanation = explanation
        self.current_sql = sql
        self.is_ai_generated = True

    def _apply_query_result(self, args: dict[str, Any], result: dict[str, Any]) -> None:
        if result.get("success"):
            row_count = result.get("rowCount") or 0
            execution_time = result.get("executionTime") or 0
            warning = result.get("warning")
            content = f"Query executed: {row_count} rows in {execution_time}ms"
            if warning:
                content += f" - {warning}"
            self.add_entry(
                "system",
                content,
                kind="query_result",
                sql=args.get("sql"),
                title=result.get("title") or args.get("title"),
                description=result.get("description") or args.get("description"),
                query_result=QueryPreview(
                    row_count=row_count,
                    execution_time=execution_time,
                    sample_results=list(result.get("rows") or [])[:SAMPLE_ROWS],
                ),
            )
        elif result.get("error"):
            self.add_entry("system", f"Query error: {result['error']}", kind="error")

    def _apply_chart(self, result: dict[str, Any]) -> None:
        if not result.get("success"):
            return
        self.add_entry(
            "system",
            result.get("message") or "Chart generated",
            kind="chart",
            title=result.get("title"),
            description=result.get("description"),
            chart={
                "config": result.get("chartConfig"),
                "data": result.get("chartData") or [],
                "xAxisKey": result.get("xAxisKey"),
                "yAxisKeys": result.get("yAxisKeys") or [],
            },
        )

    def _apply_todo(self, result: dict[str, Any]) -> None:
        if not result.get("success"):
            return
        todos = self.progress.todos
        action = result.get("action")
        item_id = result.get("item_id") or result.get("itemId")

        if action == "create":
            todos.clear()
            for raw in result.get("items") or []:
                todos.append(AgentTodoItem(id=raw["id"], text=raw["text"], status="pending"))
            if todos:
                todos[0].status = "in_progress"

        elif action == "add":
            raw = result.get("item") or {}
            if raw.get("id") and raw.get("text"):
                todos.append(
                    AgentTodoItem(
                        id=raw["id"],
                        text=raw["text"],
                        status="pending",
                        added_during_execution=True,
                    )
                )

        elif action in ("set_current", "complete", "skip"):
            target = next((t for t in todos if t.id == item_id), None)
            if target is None:
                logger.debug(f"Todo transition for unknown item {item_id}")
                return
            if action == "set_current":
                for todo in todos:
                    if todo.status == "in_progress" and todo is not target:
                        todo.status = "pending"
                target.status = "in_progress"
            elif action == "complete":
                target.status = "completed"
                target.completed_at = now_ms()
            else:
                target.status = "skipped"
                target.completed_at = now_ms()


def _result_error(result: Any) -> bool:
    return isinstance(result, dict) and bool(result.get("error"))
