"""
Agent I/O Models

Pydantic models for the agent run state and the chat-mode generator. The
run state travels to clients inside the final ``complete`` stream event,
so it serializes in camelCase.
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from querypilot.models.base import CamelModel, now_ms
from querypilot.models.errors import (  # noqa: F401
    AgentError,
    LLMError,
    RunAbortedError,
    SQLGenerationError,
)
from querypilot.models.schema import SchemaInfo, TableSample


class Message(BaseModel):
    """Single message in conversation history."""

    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(frozen=True)


class AgentMetadata(BaseModel):
    """Metadata about agent execution."""

    agent_name: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    duration_ms: float | None = None
    llm_calls: int = 0
    tokens_used: int | None = None
    error: str | None = None

    def mark_complete(self) -> None:
        """Mark execution as complete and calculate duration."""
        self.completed_at = datetime.now(UTC)
        delta = self.completed_at - self.started_at
        self.duration_ms = delta.total_seconds() * 1000


class AgentInput(BaseModel):
    """
    Base input model for single-shot agents.

    The conversation history and context are common across agents.
    """

    query: str = Field(..., description="User's natural language request")
    conversation_history: list[Message] = Field(
        default_factory=list, description="Previous messages in the conversation"
    )
    context: dict[str, Any] = Field(
        default_factory=dict, description="Additional context for the agent"
    )


class AgentOutput(BaseModel):
    """Base output model for single-shot agents."""

    success: bool = Field(..., description="Whether the agent executed successfully")
    data: dict[str, Any] = Field(default_factory=dict, description="Agent-specific output data")
    metadata: AgentMetadata = Field(..., description="Execution metadata")


# ============================================================================
# Agent Run State
# ============================================================================


class ToolCallRecord(CamelModel):
    """One tool invocation; ``result`` stays None while the call is pending."""

    id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    timestamp: int = Field(default_factory=now_ms)


class AgentState(CamelModel):
    """
    Mutable state of a single agent run.

    Owned by exactly one driver invocation. ``current_sql`` only changes when
    the terminal tool fires, ``has_completed_goal`` and ``reached_step_limit``
    are mutually exclusive, and ``tool_calls`` only ever grows.
    """

    goal: str
    current_step: int = 0
    max_steps: int
    has_completed_goal: bool = False
    current_sql: str | None = None
    previous_sql: str | None = None
    last_error: str | None = None
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    reached_step_limit: bool = False


class AgentRunConfig(BaseModel):
    """Per-run inputs threaded explicitly from the caller into the driver."""

    connection_string: str
    schema_snapshot: tuple[SchemaInfo, ...] = ()
    previous_sql: str | None = None
    previous_context: str | None = None
    max_steps: int = Field(default=25, ge=1)

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Chat-mode Generator Models
# ============================================================================


class DebugInfo(CamelModel):
    """Investigation request returned by the generator in debug mode."""

    needs_more_data: bool = False
    suggested_queries: list[str] = Field(default_factory=list)
    diagnosis: str | None = None


class ValidationInfo(CamelModel):
    """Result check returned by the generator in validate mode."""

    is_valid: bool = True
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class GeneratedQuery(CamelModel):
    """Parsed single-shot model reply."""

    sql: str = ""
    explanation: str = ""
    changes: list[str] = Field(default_factory=list)
    clarifying_questions: list[str] = Field(default_factory=list)
    goal_summary: str | None = None
    needs_clarification: bool = False
    debug_info: DebugInfo | None = None
    validation: ValidationInfo | None = None


GenerationStatus = Literal["ok", "clarification", "invalid", "mutation"]


class QueryResultInfo(CamelModel):
    """What the generator is told about the last execution of its SQL."""

    row_count: int = 0
    execution_time: int = 0
    sample_rows: list[dict[str, Any]] = Field(default_factory=list)
    empty_columns: list[str] = Field(default_factory=list)
    error: str | None = None


class SQLGeneratorInput(AgentInput):
    """Input for one single-shot generation call."""

    mode: Literal["generate", "debug", "validate"] = "generate"
    schema_snapshot: list[SchemaInfo] = Field(default_factory=list)
    current_sql: str | None = None
    query_result: QueryResultInfo | None = None
    diagnostic_context: str | None = None
    sample_data: list[TableSample] = Field(default_factory=list)
    is_debug: bool = False
    require_sql: bool = False


class SQLGeneratorOutput(AgentOutput):
    """Output of one single-shot generation call.

    ``result.sql`` has already passed the mutation gate. ``status`` tells the
    caller how to treat the reply:
        ok: plausible SQL, formatted for display
        clarification: the model asked questions instead of answering
        invalid: the reply was not plausible SQL (``invalid_reason`` says why)
        mutation: the model proposed a write; ``result.sql`` is the prior query
    """

    result: GeneratedQuery
    status: GenerationStatus = "ok"
    invalid_reason: str | None = None


RepairOutcome = Literal[
    "success",
    "error",
    "clarification",
    "repair_limit",
    "fallback",
    "invalid",
]


class RepairEntry(CamelModel):
    """Transcript entry produced while a chat turn is generated and repaired."""

    role: Literal["assistant", "system"]
    content: str
    sql: str | None = None
    explanation: str | None = None
    is_auto_fix: bool = False
    clarifying_questions: list[str] = Field(default_factory=list)
    timestamp: int = Field(default_factory=now_ms)


class RepairReport(CamelModel):
    """Final state of one chat turn after the repair loop stops."""

    outcome: RepairOutcome
    sql: str | None = None
    explanation: str | None = None
    attempts: int = 0
    row_count: int | None = None
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    validation: ValidationInfo | None = None
    clarifying_questions: list[str] = Field(default_factory=list)
    entries: list[RepairEntry] = Field(default_factory=list)
