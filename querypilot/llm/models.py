"""
LLM Request and Response Models

Pydantic models for LLM provider interactions.
Provider-agnostic models that work across OpenAI and Anthropic.

Two shapes live here: plain completions (``LLMRequest`` / ``LLMResponse``)
used by single-shot agents, and the tool-loop types consumed by
``BaseLLMProvider.stream_with_tools``: tool specs, the parts the loop yields,
and stop conditions evaluated after every step.
"""

from collections.abc import Awaitable, Callable, Sequence
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class LLMMessage(BaseModel):
    """Single message in an LLM conversation."""

    role: Literal["system", "user", "assistant"] = Field(
        ...,
        description="Message role"
    )
    content: str = Field(
        ...,
        description="Message content",
        min_length=1
    )


class LLMRequest(BaseModel):
    """Request to an LLM provider."""

    messages: List[LLMMessage] = Field(
        ...,
        description="Conversation messages",
        min_length=1
    )
    temperature: Optional[float] = Field(
        None,
        ge=0.0,
        le=2.0,
        description="Sampling temperature (overrides default)"
    )
    max_tokens: Optional[int] = Field(
        None,
        gt=0,
        description="Maximum tokens to generate (overrides default)"
    )
    model: Optional[str] = Field(
        None,
        description="Specific model to use (overrides default)"
    )


class LLMUsage(BaseModel):
    """Token usage information."""

    prompt_tokens: int = Field(
        ...,
        ge=0,
        description="Number of tokens in the prompt"
    )
    completion_tokens: int = Field(
        ...,
        ge=0,
        description="Number of tokens in the completion"
    )
    total_tokens: int = Field(
        ...,
        ge=0,
        description="Total tokens used"
    )


class LLMResponse(BaseModel):
    """Response from an LLM provider."""

    content: str = Field(
        ...,
        description="Generated text content"
    )
    model: str = Field(
        ...,
        description="Model that generated the response"
    )
    usage: LLMUsage = Field(
        ...,
        description="Token usage information"
    )
    finish_reason: Literal["stop", "length", "content_filter", "tool_calls", "error"] = Field(
        ...,
        description="Reason the generation stopped"
    )
    provider: str = Field(
        ...,
        description="Provider that handled the request (openai, anthropic)"
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional provider-specific response data"
    )


# ============================================================================
# Tool Loop
# ============================================================================


class ToolSpec(BaseModel):
    """A tool exposed to the model: its schema plus the coroutine that runs it."""

    name: str
    description: str
    input_schema: Dict[str, Any]
    execute: Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ToolInvocation(BaseModel):
    """One tool call requested by the model in a turn."""

    id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class TurnResult(BaseModel):
    """What a single model turn produced, filled in while it streams."""

    text: str = ""
    tool_calls: List[ToolInvocation] = Field(default_factory=list)
    finish_reason: Optional[str] = None


class StepResult(BaseModel):
    """A completed step, as seen by stop conditions."""

    step: int
    text: str = ""
    tool_calls: List[ToolInvocation] = Field(default_factory=list)


class StepStartPart(BaseModel):
    type: Literal["step-start"] = "step-start"
    step: int


class TextDeltaPart(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    text: str


class ToolCallPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    id: str
    name: str
    output: Dict[str, Any]


class ErrorPart(BaseModel):
    type: Literal["error"] = "error"
    error: str
    exception: Optional[BaseException] = Field(default=None, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class FinishPart(BaseModel):
    type: Literal["finish"] = "finish"
    reason: Literal["stop", "stop-condition", "error"]
    steps: int


AgentStreamPart = Annotated[
    Union[StepStartPart, TextDeltaPart, ToolCallPart, ToolResultPart, ErrorPart, FinishPart],
    Field(discriminator="type"),
]

StopCondition = Callable[[Sequence[StepResult]], bool]


def has_tool_call(tool_name: str) -> StopCondition:
    """Stop once the latest step called ``tool_name``."""

    def condition(steps: Sequence[StepResult]) -> bool:
        return bool(steps) and any(call.name == tool_name for call in steps[-1].tool_calls)

    return condition


def step_count_is(count: int) -> StopCondition:
    """Stop once ``count`` steps have run."""

    def condition(steps: Sequence[StepResult]) -> bool:
        return len(steps) >= count

    return condition
