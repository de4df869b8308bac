"""
Application Configuration

Pydantic-based settings management using environment variables.
Supports nested configuration, validation, and caching.

Usage:
    from querypilot.config import get_settings

    settings = get_settings()
    print(settings.agent.max_steps)
    print(settings.database.connect_timeout)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_AGENT_STEPS = 25


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    default_provider: Literal["anthropic", "openai"] = Field(
        default="anthropic", description="Provider used for agent runs and chat mode"
    )

    # Anthropic configuration
    anthropic_api_key: str | None = Field(
        None,
        description="Anthropic API key (a per-request key takes precedence)",
        validation_alias=AliasChoices(
            "LLM_ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "ANTHROPIC_API_KEY"
        ),
    )
    anthropic_model: str = Field(
        default="claude-haiku-4-5", description="Anthropic model for agent runs"
    )

    # OpenAI configuration
    openai_api_key: str | None = Field(None, description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI model for agent runs")

    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Temperature for LLM responses (0.0 = deterministic)",
    )
    max_tokens: int = Field(
        default=4096,
        gt=0,
        le=16000,
        description="Maximum tokens per model turn",
    )
    timeout: int = Field(
        default=60,
        gt=0,
        description="Request timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("anthropic_api_key", "openai_api_key", mode="before")
    @classmethod
    def normalize_key(cls, v: str | None) -> str | None:
        """Treat empty strings as missing."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def api_key_for(self, provider: str) -> str | None:
        """Return the configured key for a provider, if any."""
        if provider == "openai":
            return self.openai_api_key
        return self.anthropic_api_key


class DatabaseSettings(BaseSettings):
    """Target database connection behavior."""

    url: str | None = Field(
        None,
        description="Default connection string used by the CLI when --connection is omitted",
    )
    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds allowed for each connection attempt",
    )
    statement_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds allowed for each statement",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("url", mode="before")
    @classmethod
    def normalize_url(cls, v: str | None) -> str | None:
        """Treat empty strings as missing."""
        if v == "":
            return None
        return v


class AgentSettings(BaseSettings):
    """Agent loop and tool limits."""

    max_steps: int = Field(
        default=MAX_AGENT_STEPS,
        ge=1,
        le=100,
        description="Model turns allowed per run",
    )
    default_row_limit: int = Field(default=100, ge=1, description="LIMIT injected by execute_query")
    max_row_limit: int = Field(default=1000, ge=1, description="Upper bound for execute_query LIMIT")
    sample_rows: int = Field(default=5, ge=1, description="Rows returned to the model per query")
    json_key_limit: int = Field(default=50, ge=1, description="Maximum JSON keys discovered")
    json_sample_keys: int = Field(default=10, ge=0, description="Keys sampled for example values")
    json_samples_per_key: int = Field(default=3, ge=1, description="Example values per key")

    model_config = SettingsConfigDict(
        env_prefix="AGENT_",
        env_file=".env",
        extra="ignore",
    )


class RepairSettings(BaseSettings):
    """Chat-mode auto-repair limits."""

    max_attempts: int = Field(
        default=2,
        ge=1,
        le=3,
        description="Corrective generations allowed per user turn",
    )
    max_diagnostic_queries: int = Field(
        default=3,
        ge=0,
        le=3,
        description="Diagnostic queries run while investigating an empty result",
    )
    query_row_limit: int = Field(
        default=1000,
        ge=1,
        description="LIMIT injected into chat-mode queries without one",
    )
    validate_results: bool = Field(
        default=True,
        description="Ask the model to check successful results and fix what it finds",
    )
    sample_tables: int = Field(
        default=5,
        ge=0,
        le=10,
        description="Tables with JSON columns sampled into the prompt (0 disables)",
    )
    sample_size: int = Field(
        default=3,
        ge=1,
        le=5,
        description="Rows fetched per sampled table",
    )

    model_config = SettingsConfigDict(
        env_prefix="REPAIR_",
        env_file=".env",
        extra="ignore",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log timestamp format",
    )
    file: Path | None = Field(
        default=None,
        description="Optional log file path (None = stdout only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    def configure(self) -> None:
        """Configure Python logging with these settings."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.file:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.file))

        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            datefmt=self.date_format,
            handlers=handlers,
            force=True,
        )


class ToolsSettings(BaseSettings):
    """Tooling configuration."""

    policy_path: str = Field(
        default="config/tools.yaml",
        description="Path to tool policy configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="TOOLS_",
        env_file=".env",
        extra="ignore",
    )


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Settings are nested by domain (llm, database, agent, repair, logging, tools).

    Environment Variables:
        ENVIRONMENT: Deployment environment (development, staging, production)
        APP_NAME: Application name for logging
        DEBUG: Enable debug mode
        API_HOST: API server host
        API_PORT: API server port
        CORS_ORIGINS: Origins allowed to call the API
        LLM_*: LLM provider configuration (see LLMSettings)
        DATABASE_*: Connection timeouts (see DatabaseSettings)
        AGENT_*: Step budget and tool limits (see AgentSettings)
        REPAIR_*: Chat-mode repair limits (see RepairSettings)
        LOG_*: Logging configuration (see LoggingSettings)
        TOOLS_*: Tool policy file (see ToolsSettings)

    Example:
        >>> settings = get_settings()
        >>> settings.agent.max_steps
        25
        >>> settings.is_production
        False
    """

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    app_name: str = Field(
        default="QueryPilot",
        description="Application name",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host",
    )
    api_port: int = Field(
        default=8000,
        gt=0,
        le=65535,
        description="API server port",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed by the CORS middleware",
    )

    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    repair: RepairSettings = Field(default_factory=RepairSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    tools: ToolsSettings = Field(default_factory=ToolsSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def model_post_init(self, __context) -> None:
        """Configure logging and report the loaded configuration."""
        self.logging.configure()
        logger = logging.getLogger(__name__)
        logger.info(
            f"Settings loaded for {self.app_name} ({self.environment})",
            extra={
                "environment": self.environment,
                "debug": self.debug,
                "llm_provider": self.llm.default_provider,
                "max_steps": self.agent.max_steps,
            },
        )


_DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("QUERYPILOT_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Singleton settings instance
    """
    _apply_dotenv_precedence()
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
