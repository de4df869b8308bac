"""
Client-side Progress Models

State rebuilt by the client reducer from an agent event stream. Nothing
here is trusted beyond what the stream said: the server never sends
``AgentProgress`` directly.
"""

from typing import Any, Literal

from pydantic import Field

from querypilot.models.base import CamelModel, now_ms
from querypilot.models.tools import TodoStatus

ToolCallStatus = Literal["running", "success", "error"]
EntryRole = Literal["user", "assistant", "system"]
EntryKind = Literal["message", "query_result", "chart", "error"]


class ToolCallInfo(CamelModel):
    """Client mirror of a tool call, tracked from start to result."""

    id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    timestamp: int = Field(default_factory=now_ms)
    status: ToolCallStatus = "running"


class AgentTodoItem(CamelModel):
    id: str
    text: str
    status: TodoStatus = "pending"
    created_at: int = Field(default_factory=now_ms)
    completed_at: int | None = None
    added_during_execution: bool = False


class AgentProgress(CamelModel):
    """Progress of the current run. Replaced wholesale when a new run starts."""

    goal: str
    current_step: int = 0
    max_steps: int
    is_running: bool = True
    can_continue: bool = False
    tool_calls: list[ToolCallInfo] = Field(default_factory=list)
    streaming_text: str = ""
    todos: list[AgentTodoItem] = Field(default_factory=list)


class QueryPreview(CamelModel):
    row_count: int = 0
    execution_time: int = 0
    sample_results: list[dict[str, Any]] = Field(default_factory=list)


class TranscriptEntry(CamelModel):
    """One line of the conversation as the user sees it."""

    role: EntryRole
    kind: EntryKind = "message"
    content: str = ""
    sql: str | None = None
    previous_sql: str | None = None
    explanation: str | None = None
    confidence: Literal["high", "medium", "low"] | None = None
    suggestions: list[str] = Field(default_factory=list)
    title: str | None = None
    description: str | None = None
    query_result: QueryPreview | None = None
    chart: dict[str, Any] | None = None
    timestamp: int = Field(default_factory=now_ms)
