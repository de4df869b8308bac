"""
Continuation after a step-limit stop.

A continued run is a fresh run: new ``AgentState``, new step budget. What
carries over is text only, a digest of the previous run's tool calls that
goes into the system prompt so the model does not repeat failed attempts.
"""

from collections.abc import Sequence

from querypilot.client.models import ToolCallInfo
from querypilot.models.agent import ToolCallRecord
from querypilot.models.tools import ToolName

SQL_PREVIEW_CHARS = 150
ERROR_PREVIEW_CHARS = 200


def continuation_goal(goal: str) -> str:
    """Goal text for the run that continues ``goal``."""
    return f"Continue working on the goal: {goal}"


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else f"{text[:limit]}..."


def summarize_tool_call(call: ToolCallInfo | ToolCallRecord) -> str | None:
    """One digest line for a finished tool call, or None if it adds nothing."""
    result = call.result if isinstance(call.result, dict) else {}
    args = call.args or {}
    error = result.get("error")

    match ToolName.parse(call.tool_name):
        case ToolName.GET_TABLE_SCHEMA:
            if error:
                return f"- Schema lookup failed: {_truncate(str(error), ERROR_PREVIEW_CHARS)}"
            return f"- Inspected schema: {result.get('tableCount', 0)} tables"

        case ToolName.GET_JSON_KEYS:
            location = f"{args.get('table')}.{args.get('column')}"
            if args.get("nested_path"):
                location += f" -> {args['nested_path']}"
            if error:
                return f"- JSON keys in {location} failed: {_truncate(str(error), ERROR_PREVIEW_CHARS)}"
            keys = result.get("keys") or []
            if not keys:
                return f"- JSON keys in {location}: none found"
            shown = ", ".join(keys[:15])
            more = f" (+{len(keys) - 15} more)" if len(keys) > 15 else ""
            return f"- JSON keys in {location}: {shown}{more}"

        case ToolName.EXECUTE_QUERY:
            sql = _truncate(str(args.get("sql", "")), SQL_PREVIEW_CHARS)
            if result.get("success"):
                row_count = result.get("rowCount", 0)
                empty = result.get("emptyColumns") or []
                note = f"; all-NULL columns: {', '.join(empty)}" if empty else ""
                return f"- Query succeeded ({row_count} rows{note}): {sql}"
            message = _truncate(str(error or "unknown error"), ERROR_PREVIEW_CHARS)
            return f"- Query FAILED ({message}): {sql}"

        case ToolName.VALIDATE_QUERY:
            sql = _truncate(str(args.get("sql", "")), SQL_PREVIEW_CHARS)
            if result.get("isValid"):
                return f"- Validated OK: {sql}"
            message = _truncate(str(error or "invalid"), ERROR_PREVIEW_CHARS)
            return f"- Validation FAILED ({message}): {sql}"

        case ToolName.UPDATE_QUERY_UI | ToolName.GENERATE_CHART | ToolName.MANAGE_TODO | None:
            return None


def build_continuation_context(
    tool_calls: Sequence[ToolCallInfo | ToolCallRecord],
    last_sql: str | None = None,
) -> str:
    """
    Digest of a previous run for the next run's system prompt.

    Args:
        tool_calls: Tool calls of the run that hit the step limit
        last_sql: The query the user currently has, if any

    Returns:
        Plain text; empty when there is nothing worth carrying over
    """
    lines = [line for line in (summarize_tool_call(call) for call in tool_calls) if line]
    if not lines and not last_sql:
        return ""

    parts = ["The previous attempt ran out of steps. What it found:"]
    parts.extend(lines)
    if last_sql:
        parts.append(f"Latest SQL: {_truncate(last_sql, SQL_PREVIEW_CHARS * 2)}")
    parts.append("Do not repeat queries that already failed; build on what worked.")
    return "\n".join(parts)
