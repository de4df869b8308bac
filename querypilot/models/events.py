"""
Agent Stream Events

The closed set of events an agent run emits, one value per wire frame.
Every run ends with exactly one ``complete`` event.
"""

from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from querypilot.models.agent import AgentState, ToolCallRecord
from querypilot.models.base import CamelModel


class StepEvent(CamelModel):
    type: Literal["step"] = "step"
    step: int
    max_steps: int


class TextEvent(CamelModel):
    type: Literal["text"] = "text"
    delta: str


class ToolCallStartEvent(CamelModel):
    type: Literal["tool_call_start"] = "tool_call_start"
    id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolCallResultEvent(CamelModel):
    type: Literal["tool_call_result"] = "tool_call_result"
    tool_call: ToolCallRecord


class ErrorEvent(CamelModel):
    type: Literal["error"] = "error"
    message: str


class CompleteEvent(CamelModel):
    type: Literal["complete"] = "complete"
    state: AgentState


AgentStreamEvent = Annotated[
    StepEvent | TextEvent | ToolCallStartEvent | ToolCallResultEvent | ErrorEvent | CompleteEvent,
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[AgentStreamEvent] = TypeAdapter(AgentStreamEvent)


def parse_event(payload: str | bytes | dict[str, Any]) -> AgentStreamEvent:
    """Parse one JSON frame payload into its event model.

    Raises:
        pydantic.ValidationError: If the payload is not a known event
    """
    if isinstance(payload, dict):
        return _EVENT_ADAPTER.validate_python(payload)
    return _EVENT_ADAPTER.validate_json(payload)
