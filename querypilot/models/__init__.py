"""
QueryPilot Models Module

Pydantic models for type-safe data validation throughout the application.

Available Models:
    Agent Models:
        - AgentState / ToolCallRecord: server-side run state
        - AgentRunConfig: per-run inputs threaded into the driver
        - QueryPilotError hierarchy (see models.errors)
        - GeneratedQuery, SQLGeneratorInput/Output: chat-mode generator I/O
        - RepairReport, RepairEntry: chat-mode repair results

    Event Models:
        - AgentStreamEvent: discriminated union of stream events
        - parse_event: frame payload parser

    Schema Models:
        - SchemaInfo, SchemaColumn

    Tool Models:
        - ToolName: closed set of agent tools
        - *Result: per-tool result records

Usage:
    from querypilot.models import AgentState, SchemaInfo, ToolName
"""

from querypilot.models.agent import (
    AgentError,
    AgentInput,
    AgentMetadata,
    AgentOutput,
    AgentRunConfig,
    AgentState,
    DebugInfo,
    GeneratedQuery,
    LLMError,
    Message,
    QueryResultInfo,
    RepairEntry,
    RepairOutcome,
    RepairReport,
    RunAbortedError,
    SQLGenerationError,
    SQLGeneratorInput,
    SQLGeneratorOutput,
    ToolCallRecord,
)
from querypilot.models.errors import LLMAuthError, LLMRateLimitError, QueryPilotError
from querypilot.models.events import (
    AgentStreamEvent,
    CompleteEvent,
    ErrorEvent,
    StepEvent,
    TextEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    parse_event,
)
from querypilot.models.schema import SchemaColumn, SchemaInfo
from querypilot.models.tools import TERMINAL_TOOL, ToolName

__all__ = [
    "AgentError",
    "AgentInput",
    "AgentMetadata",
    "AgentOutput",
    "AgentRunConfig",
    "AgentState",
    "AgentStreamEvent",
    "CompleteEvent",
    "DebugInfo",
    "ErrorEvent",
    "GeneratedQuery",
    "LLMError",
    "LLMAuthError",
    "LLMRateLimitError",
    "Message",
    "QueryResultInfo",
    "RepairEntry",
    "RepairOutcome",
    "RepairReport",
    "RunAbortedError",
    "SQLGenerationError",
    "SQLGeneratorInput",
    "SQLGeneratorOutput",
    "SchemaColumn",
    "SchemaInfo",
    "StepEvent",
    "TERMINAL_TOOL",
    "TextEvent",
    "ToolCallRecord",
    "ToolCallResultEvent",
    "ToolCallStartEvent",
    "ToolName",
    "parse_event",
    "QueryPilotError",
]
