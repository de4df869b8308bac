"""
Anthropic LLM Provider

Implementation of BaseLLMProvider for Anthropic's Claude models, including
the streamed tool-use turn used by the agent loop.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from querypilot.llm.base import BaseLLMProvider, ToolOutputs
from querypilot.llm.models import (
    LLMMessage,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    ToolInvocation,
    ToolSpec,
    TurnResult,
)
from querypilot.models.errors import LLMAuthError, LLMError, LLMRateLimitError

logger = logging.getLogger(__name__)

OVERLOADED_STATUS = 529


def translate_error(exc: anthropic.APIError) -> LLMError:
    """Map an SDK error onto the QueryPilot LLM error hierarchy."""
    if isinstance(exc, anthropic.AuthenticationError):
        return LLMAuthError("anthropic", f"invalid x-api-key: {exc.message}")
    if isinstance(exc, anthropic.RateLimitError):
        return LLMRateLimitError("anthropic", f"rate_limit_error: {exc.message}")
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code == OVERLOADED_STATUS:
        return LLMRateLimitError("anthropic", f"overloaded_error: {exc.message}")
    return LLMError("anthropic", exc.message)


class AnthropicProvider(BaseLLMProvider):
    """
    Anthropic (Claude) LLM provider implementation.

    Uses the anthropic Python SDK. Tool turns request sequential tool use,
    so each turn carries at most one tool call.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5",
        temperature: float = 0.0,
        max_tokens: int = 4096,
        timeout: int = 60,
    ):
        super().__init__(
            provider_name="anthropic",
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        self.client = AsyncAnthropic(api_key=api_key, timeout=float(timeout))

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate completion using Anthropic API."""
        request = self._apply_defaults(request)
        self._log_request(request)

        # Anthropic requires the system message separately
        system_message = None
        messages = []
        for msg in request.messages:
            if msg.role == "system":
                system_message = msg.content
            else:
                messages.append({"role": msg.role, "content": msg.content})

        kwargs: dict[str, Any] = {}
        if system_message:
            kwargs["system"] = system_message

        try:
            response = await self.client.messages.create(
                model=request.model or self.model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                messages=messages,
                **kwargs,
            )
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise translate_error(e) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        llm_response = LLMResponse(
            content=text,
            model=response.model,
            usage=LLMUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
            finish_reason=self._map_finish_reason(response.stop_reason),
            provider="anthropic",
            metadata={"id": response.id},
        )

        self._log_response(llm_response)
        return llm_response

    async def _stream_turn(
        self,
        system: str,
        conversation: list[dict[str, Any]],
        tools: Sequence[ToolSpec],
        turn: TurnResult,
    ) -> AsyncIterator[str]:
        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.input_schema,
                }
                for tool in tools
            ]
            kwargs["tool_choice"] = {"type": "auto", "disable_parallel_tool_use": True}

        try:
            async with self.client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=conversation,
                **kwargs,
            ) as stream:
                async for event in stream:
                    if event.type == "text":
                        yield event.text
                final = await stream.get_final_message()
        except anthropic.APIError as e:
            raise translate_error(e) from e

        for block in final.content:
            if block.type == "tool_use":
                turn.tool_calls.append(
                    ToolInvocation(id=block.id, name=block.name, args=dict(block.input or {}))
                )
        turn.finish_reason = final.stop_reason

    def _to_conversation(self, messages: Sequence[LLMMessage]) -> list[dict[str, Any]]:
        return [
            {"role": msg.role, "content": msg.content}
            for msg in messages
            if msg.role != "system"
        ]

    def _append_turn(
        self,
        conversation: list[dict[str, Any]],
        turn: TurnResult,
        outputs: ToolOutputs,
    ) -> None:
        content: list[dict[str, Any]] = []
        if turn.text:
            content.append({"type": "text", "text": turn.text})
        content.extend(
            {"type": "tool_use", "id": call.id, "name": call.name, "input": call.args}
            for call in turn.tool_calls
        )
        conversation.append({"role": "assistant", "content": content})
        conversation.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": call.id,
                        "content": json.dumps(output, default=str),
                        "is_error": bool(output.get("error")),
                    }
                    for call, output in outputs
                ],
            }
        )

    def _map_finish_reason(self, reason: str | None) -> str:
        """Map Anthropic stop reason to standard format."""
        if reason == "max_tokens":
            return "length"
        if reason == "tool_use":
            return "tool_calls"
        return "stop"
