"""
LLM Provider Module

Multi-provider LLM abstraction layer supporting Anthropic and OpenAI, with a
shared multi-step tool loop.

Usage:
    from querypilot.llm import LLMProviderFactory, LLMRequest, LLMMessage
    from querypilot.config import get_settings

    provider = LLMProviderFactory.create_default_provider(get_settings().llm)

    response = await provider.generate(
        LLMRequest(messages=[LLMMessage(role="user", content="Hello!")])
    )
    print(response.content)
"""

from querypilot.llm.anthropic import AnthropicProvider
from querypilot.llm.base import BaseLLMProvider
from querypilot.llm.factory import LLMProviderFactory
from querypilot.llm.models import (
    AgentStreamPart,
    ErrorPart,
    FinishPart,
    LLMMessage,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    StepResult,
    StepStartPart,
    StopCondition,
    TextDeltaPart,
    ToolCallPart,
    ToolInvocation,
    ToolResultPart,
    ToolSpec,
    TurnResult,
    has_tool_call,
    step_count_is,
)
from querypilot.llm.openai import OpenAIProvider

__all__ = [
    # Base classes
    "BaseLLMProvider",
    # Models
    "LLMMessage",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    # Tool loop
    "AgentStreamPart",
    "ErrorPart",
    "FinishPart",
    "StepResult",
    "StepStartPart",
    "StopCondition",
    "TextDeltaPart",
    "ToolCallPart",
    "ToolInvocation",
    "ToolResultPart",
    "ToolSpec",
    "TurnResult",
    "has_tool_call",
    "step_count_is",
    # Factory
    "LLMProviderFactory",
    # Providers
    "OpenAIProvider",
    "AnthropicProvider",
]
