"""
OpenAI LLM Provider

Implementation of BaseLLMProvider for OpenAI's GPT models, including the
streamed function-calling turn used by the agent loop.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

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


def translate_error(exc: openai.APIError) -> LLMError:
    """Map an SDK error onto the QueryPilot LLM error hierarchy."""
    if isinstance(exc, openai.AuthenticationError):
        return LLMAuthError("openai", f"invalid_api_key: {exc.message}")
    if isinstance(exc, openai.RateLimitError):
        return LLMRateLimitError("openai", f"rate_limit: {exc.message}")
    return LLMError("openai", exc.message)


class OpenAIProvider(BaseLLMProvider):
    """
    OpenAI LLM provider implementation.

    Uses the official openai Python SDK with async support. Tool turns
    disable parallel tool calls.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.0,
        max_tokens: int = 4096,
        timeout: int = 60,
    ):
        super().__init__(
            provider_name="openai",
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        self.client = AsyncOpenAI(
            api_key=api_key,
            timeout=float(timeout),
        )

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Generate completion using OpenAI API.

        Raises:
            LLMAuthError: On a rejected API key
            LLMRateLimitError: On throttling
            LLMError: On other API errors
        """
        request = self._apply_defaults(request)
        self._log_request(request)

        try:
            messages = [{"role": msg.role, "content": msg.content} for msg in request.messages]
            response = await self.client.chat.completions.create(
                model=request.model or self.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise translate_error(e) from e

        usage = response.usage
        llm_response = LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            usage=LLMUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
            finish_reason=self._map_finish_reason(response.choices[0].finish_reason),
            provider="openai",
            metadata={"id": response.id, "created": response.created},
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
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    },
                }
                for tool in tools
            ]
            kwargs["parallel_tool_calls"] = False

        # Tool call fragments arrive keyed by index
        pending: dict[int, dict[str, str]] = {}
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system}, *conversation],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=True,
                **kwargs,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.delta.content:
                    yield choice.delta.content
                for fragment in choice.delta.tool_calls or []:
                    entry = pending.setdefault(
                        fragment.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if fragment.id:
                        entry["id"] = fragment.id
                    if fragment.function:
                        entry["name"] += fragment.function.name or ""
                        entry["arguments"] += fragment.function.arguments or ""
                if choice.finish_reason:
                    turn.finish_reason = choice.finish_reason
        except openai.APIError as e:
            raise translate_error(e) from e

        for index in sorted(pending):
            entry = pending[index]
            try:
                args = json.loads(entry["arguments"] or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Discarding malformed arguments for tool {entry['name']}")
                args = {}
            turn.tool_calls.append(
                ToolInvocation(
                    id=entry["id"] or f"call_{index}",
                    name=entry["name"],
                    args=args if isinstance(args, dict) else {},
                )
            )

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
        conversation.append(
            {
                "role": "assistant",
                "content": turn.text or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.args)},
                    }
                    for call in turn.tool_calls
                ],
            }
        )
        conversation.extend(
            {
                "role": "tool",
                "tool_call_id": call.id,
                "content": json.dumps(output, default=str),
            }
            for call, output in outputs
        )

    def _map_finish_reason(self, reason: str | None) -> str:
        """Map OpenAI finish reason to our standard format."""
        if reason in ("length", "content_filter", "tool_calls"):
            return reason
        return "stop"
