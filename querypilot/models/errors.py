"""
Exception Hierarchy

Errors raised inside QueryPilot. Tool handlers never let these escape the
tool boundary; the agent driver turns provider errors into stream events;
the API maps the rest to HTTP responses.
"""

from typing import Any


class QueryPilotError(Exception):
    """Base class for QueryPilot errors."""


class AgentError(QueryPilotError):
    """
    Custom exception for agent execution errors.

    Attributes:
        agent: Name of the agent that raised the error
        message: Error description
        recoverable: Whether the caller can retry
        context: Additional context for debugging
    """

    def __init__(
        self,
        agent: str,
        message: str,
        recoverable: bool = True,
        context: dict[str, Any] | None = None,
    ):
        self.agent = agent
        self.message = message
        self.recoverable = recoverable
        self.context = context or {}
        super().__init__(f"[{agent}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/API responses."""
        return {
            "agent": self.agent,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
            "type": self.__class__.__name__,
        }


class LLMError(AgentError):
    """Error during an LLM API call (usually recoverable with retry)."""


class LLMAuthError(LLMError):
    """The provider rejected the API key."""

    def __init__(self, agent: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(agent, message, recoverable=False, context=context)


class LLMRateLimitError(LLMError):
    """The provider throttled the request or is overloaded."""


class SQLGenerationError(AgentError):
    """Model output that could not be turned into a usable answer."""

    def __init__(self, agent: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(agent, message, recoverable=False, context=context)


class RunAbortedError(AgentError):
    """Raised inside a run once its cancellation signal has been observed."""

    def __init__(self, agent: str = "QueryAgent", message: str = "This operation was aborted"):
        super().__init__(agent, message, recoverable=False)
