"""
LLM Provider Factory

Factory and registry for creating LLM provider instances based on configuration.
A per-request API key, when given, takes precedence over the configured one.
"""

import logging
from typing import Literal

from querypilot.config import LLMSettings
from querypilot.llm.anthropic import AnthropicProvider
from querypilot.llm.base import BaseLLMProvider
from querypilot.llm.openai import OpenAIProvider

logger = logging.getLogger(__name__)


class LLMProviderFactory:
    """
    Factory for creating LLM provider instances.

    Handles provider selection and API key resolution.
    """

    # Registry of available providers
    PROVIDERS = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
    }

    @staticmethod
    def create_provider(
        provider_type: Literal["openai", "anthropic"],
        config: LLMSettings,
        api_key: str | None = None,
    ) -> BaseLLMProvider:
        """
        Create an LLM provider instance.

        Args:
            provider_type: Type of provider to create
            config: LLM configuration settings
            api_key: Per-request key overriding the configured one

        Returns:
            Configured provider instance

        Raises:
            ValueError: If provider type is unknown or no API key is available
        """
        if provider_type not in LLMProviderFactory.PROVIDERS:
            raise ValueError(
                f"Unknown provider type: {provider_type}. "
                f"Available providers: {list(LLMProviderFactory.PROVIDERS.keys())}"
            )

        resolved_key = (api_key or "").strip() or config.api_key_for(provider_type)
        if not resolved_key:
            raise ValueError(f"{provider_type.capitalize()} API key is required but not configured")

        logger.info(
            f"Creating {provider_type} provider",
            extra={"provider": provider_type, "per_request_key": bool(api_key)},
        )

        if provider_type == "openai":
            return OpenAIProvider(
                api_key=resolved_key,
                model=config.openai_model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
            )
        return AnthropicProvider(
            api_key=resolved_key,
            model=config.anthropic_model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
        )

    @staticmethod
    def create_default_provider(
        config: LLMSettings,
        api_key: str | None = None,
    ) -> BaseLLMProvider:
        """Create provider using default_provider from config."""
        return LLMProviderFactory.create_provider(config.default_provider, config, api_key)
