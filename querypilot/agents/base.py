"""
Base Agent Framework

Abstract base class for the single-shot agents (one completion per call).
Provides timing, logging, metadata tracking, and retry with exponential
backoff for recoverable errors such as provider throttling.

The multi-step query agent is a streaming driver rather than a BaseAgent;
see ``querypilot.agents.query_agent``.

Usage:
    class MyAgent(BaseAgent):
        def __init__(self):
            super().__init__(name="MyAgent")

        async def execute(self, input: AgentInput) -> AgentOutput:
            return AgentOutput(
                success=True,
                data={"result": "value"},
                metadata=self._create_metadata()
            )
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from querypilot.models.agent import AgentInput, AgentMetadata, AgentOutput
from querypilot.models.errors import AgentError

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """
    Abstract base class for single-shot agents.

    The ``__call__`` method wraps ``execute()`` with:
        - Performance timing
        - Retry with backoff when an ``AgentError`` is recoverable
        - Wrapping of unexpected exceptions into a non-recoverable AgentError

    Attributes:
        name: Unique identifier for this agent
        max_retries: Retries allowed after the first attempt
        backoff_base: Seconds waited before the first retry (doubled each time)
    """

    def __init__(self, name: str, max_retries: int = 2, backoff_base: float = 1.0):
        self.name = name
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._metadata = self._create_metadata()

    @abstractmethod
    async def execute(self, input: AgentInput) -> AgentOutput:
        """
        Execute the agent's core logic.

        Raises:
            AgentError: On execution failures (recoverable or not)
        """

    async def __call__(self, input: AgentInput) -> AgentOutput:
        """
        Execute the agent with timing, logging, and retries.

        Raises:
            AgentError: If the error is not recoverable or retries run out
        """
        start_time = time.perf_counter()
        attempt = 0

        logger.info(
            f"Starting {self.name}",
            extra={"agent": self.name, "query": input.query[:100]},
        )

        while True:
            try:
                self._metadata = self._create_metadata()
                output = await self.execute(input)

                duration_ms = (time.perf_counter() - start_time) * 1000
                self._metadata.mark_complete()
                self._metadata.duration_ms = duration_ms
                output.metadata = self._metadata

                logger.info(
                    f"Completed {self.name}",
                    extra={
                        "agent": self.name,
                        "success": output.success,
                        "duration_ms": duration_ms,
                        "attempt": attempt + 1,
                        "llm_calls": self._metadata.llm_calls,
                    },
                )
                return output

            except AgentError as e:
                attempt += 1
                logger.warning(
                    f"Agent error in {self.name}: {e}",
                    extra={
                        "agent": self.name,
                        "recoverable": e.recoverable,
                        "attempt": attempt,
                        "max_retries": self.max_retries,
                        "context": e.context,
                    },
                )

                if not e.recoverable or attempt > self.max_retries:
                    self._metadata.error = str(e)
                    logger.error(
                        f"Failed {self.name} after {attempt} attempts",
                        extra={
                            "agent": self.name,
                            "duration_ms": (time.perf_counter() - start_time) * 1000,
                        },
                    )
                    raise

                wait_time = self.backoff_base * 2 ** (attempt - 1)
                logger.info(
                    f"Retrying {self.name} in {wait_time}s",
                    extra={"agent": self.name, "wait_time": wait_time},
                )
                await self._sleep(wait_time)

            except Exception as e:
                self._metadata.error = str(e)
                logger.error(
                    f"Unexpected error in {self.name}",
                    extra={"agent": self.name, "error_type": type(e).__name__},
                    exc_info=True,
                )
                raise AgentError(
                    agent=self.name,
                    message=f"Unexpected error: {e}",
                    recoverable=False,
                    context={"error_type": type(e).__name__},
                ) from e

    def _create_metadata(self) -> AgentMetadata:
        return AgentMetadata(agent_name=self.name)

    def _track_llm_call(self, tokens: int | None = None) -> None:
        """Record one LLM request (and its token usage) in the run metadata."""
        self._metadata.llm_calls += 1
        if tokens:
            self._metadata.tokens_used = (self._metadata.tokens_used or 0) + tokens

        logger.debug(
            f"LLM call tracked for {self.name}",
            extra={
                "agent": self.name,
                "total_llm_calls": self._metadata.llm_calls,
                "tokens_this_call": tokens,
            },
        )

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
