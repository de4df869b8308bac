"""
Base LLM Provider

Abstract base class defining the interface for all LLM providers.
Ensures consistent API across OpenAI and Anthropic.

Besides plain completions, every provider runs the multi-step tool loop
(``stream_with_tools``): one model turn per step, tools executed one at a
time in the order the model asked for them, results fed back as the next
turn's input, until the model answers without tools or a stop condition
fires. Providers only implement the per-turn wire format.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any

from querypilot.llm.models import (
    AgentStreamPart,
    ErrorPart,
    FinishPart,
    LLMMessage,
    LLMRequest,
    LLMResponse,
    StepResult,
    StepStartPart,
    StopCondition,
    TextDeltaPart,
    ToolCallPart,
    ToolInvocation,
    ToolResultPart,
    ToolSpec,
    TurnResult,
)
from querypilot.models.errors import RunAbortedError

logger = logging.getLogger(__name__)

ToolOutputs = list[tuple[ToolInvocation, dict[str, Any]]]


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Attributes:
        provider_name: Unique identifier for this provider
        model: Default model name
        temperature: Default sampling temperature
        max_tokens: Default maximum tokens to generate
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        provider_name: str,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        timeout: int = 60,
    ):
        self.provider_name = provider_name
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        logger.info(
            f"Initialized {provider_name} provider",
            extra={
                "provider": provider_name,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        )

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Generate a completion from the LLM (no tools).

        Raises:
            LLMAuthError: If the provider rejects the API key
            LLMRateLimitError: If the provider throttles the request
            LLMError: On any other provider failure
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    def _stream_turn(
        self,
        system: str,
        conversation: list[dict[str, Any]],
        tools: Sequence[ToolSpec],
        turn: TurnResult,
    ) -> AsyncIterator[str]:
        """
        Run one model turn, yielding text deltas as they arrive.

        Tool calls requested in the turn are appended to ``turn.tool_calls``
        before the iterator finishes.
        """

    @abstractmethod
    def _to_conversation(self, messages: Sequence[LLMMessage]) -> list[dict[str, Any]]:
        """Convert seed messages to the provider's conversation format."""

    @abstractmethod
    def _append_turn(
        self,
        conversation: list[dict[str, Any]],
        turn: TurnResult,
        outputs: ToolOutputs,
    ) -> None:
        """Append the assistant turn and its tool results to ``conversation``."""

    async def stream_with_tools(
        self,
        system: str,
        messages: Sequence[LLMMessage],
        tools: Sequence[ToolSpec],
        stop_when: Sequence[StopCondition] = (),
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[AgentStreamPart]:
        """
        Drive the tool loop, yielding one part per observable event.

        Provider failures end the loop with an ``ErrorPart`` followed by a
        ``FinishPart``. Cancellation raises ``RunAbortedError`` at the next
        delta or tool boundary.
        """
        conversation = self._to_conversation(messages)
        tool_map = {tool.name: tool for tool in tools}
        steps: list[StepResult] = []

        while True:
            step = len(steps) + 1
            yield StepStartPart(step=step)

            turn = TurnResult()
            try:
                async for delta in self._stream_turn(system, conversation, tools, turn):
                    self._raise_if_aborted(cancel_event)
                    if delta:
                        turn.text += delta
                        yield TextDeltaPart(text=delta)
                self._raise_if_aborted(cancel_event)
            except RunAbortedError:
                raise
            except Exception as e:
                logger.error(
                    f"{self.provider_name} turn failed: {e}",
                    extra={"provider": self.provider_name, "step": step},
                )
                yield ErrorPart(error=str(e) or e.__class__.__name__, exception=e)
                yield FinishPart(reason="error", steps=step)
                return

            outputs: ToolOutputs = []
            for call in turn.tool_calls:
                yield ToolCallPart(id=call.id, name=call.name, args=call.args)
                tool = tool_map.get(call.name)
                if tool is None:
                    output = {"error": f"Unknown tool: {call.name}"}
                else:
                    output = await tool.execute(call.args)
                self._raise_if_aborted(cancel_event)
                yield ToolResultPart(id=call.id, name=call.name, output=output)
                outputs.append((call, output))

            steps.append(StepResult(step=step, text=turn.text, tool_calls=turn.tool_calls))
            logger.debug(
                f"Step {step} finished with {len(turn.tool_calls)} tool calls",
                extra={"provider": self.provider_name, "step": step},
            )

            if not turn.tool_calls:
                yield FinishPart(reason="stop", steps=step)
                return
            if any(condition(steps) for condition in stop_when):
                yield FinishPart(reason="stop-condition", steps=step)
                return

            self._append_turn(conversation, turn, outputs)

    @staticmethod
    def _raise_if_aborted(cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunAbortedError()

    def _apply_defaults(self, request: LLMRequest) -> LLMRequest:
        """Apply default values to request if not specified."""
        if request.temperature is None:
            request.temperature = self.temperature
        if request.max_tokens is None:
            request.max_tokens = self.max_tokens
        return request

    def _log_request(self, request: LLMRequest) -> None:
        """Log request details for debugging."""
        logger.debug(
            f"{self.provider_name} request",
            extra={
                "provider": self.provider_name,
                "message_count": len(request.messages),
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
            },
        )

    def _log_response(self, response: LLMResponse) -> None:
        """Log response details for debugging."""
        logger.debug(
            f"{self.provider_name} response",
            extra={
                "provider": self.provider_name,
                "model": response.model,
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
                "finish_reason": response.finish_reason,
            },
        )
