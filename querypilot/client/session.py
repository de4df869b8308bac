"""
Agent Session

HTTP client for the QueryPilot API that drives agent runs through the
reducer. A session holds at most one run in flight: sending a new prompt,
continuing or stopping cancels the previous run's token before anything
else happens, and the cancelled run stops reading its stream at once, even
while it waits for the next frame.

Usage:
    async with AgentSession("http://localhost:8000", api_key=key, connection_string=dsn) as session:
        await session.refresh_schema()
        progress = await session.send("Top customers by revenue")
        if progress.can_continue:
            progress = await session.continue_run()
"""

import asyncio
import json
import logging
from collections.abc import Callable

import httpx

from querypilot.client.continuation import build_continuation_context, continuation_goal
from querypilot.client.frames import FrameBuffer
from querypilot.client.models import AgentProgress
from querypilot.client.reducer import AgentReducer
from querypilot.config import MAX_AGENT_STEPS
from querypilot.models.agent import RepairReport
from querypilot.models.api import (
    AgentRunRequest,
    ChatHistoryMessage,
    ChatTurnRequest,
    QueryResponse,
    SampleDataResponse,
    SchemaResponse,
)
from querypilot.models.events import AgentStreamEvent
from querypilot.models.schema import SchemaInfo, TableSample

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class AgentSessionError(Exception):
    """The API refused a request or the transport failed."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


def _error_from_response(response: httpx.Response, fallback: str) -> AgentSessionError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    return AgentSessionError(
        body.get("error") or fallback,
        status_code=response.status_code,
        code=body.get("code"),
    )


class AgentSession:
    """
    One user's conversation with the agent.

    Attributes:
        reducer: Client state rebuilt from the streams of this session
        schema: Schema snapshot sent with each run (refreshed between runs)
        history: Chat-mode messages sent with each chat turn
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        connection_string: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 300.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.connection_string = connection_string
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._owns_client = client is None
        self.reducer = AgentReducer()
        self.schema: list[SchemaInfo] = []
        self.history: list[ChatHistoryMessage] = []
        self.max_steps = MAX_AGENT_STEPS
        self._cancel_event: asyncio.Event | None = None
        self._root_goal: str | None = None

    async def __aenter__(self) -> "AgentSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self) -> None:
        self.stop(record=False)
        if self._owns_client:
            await self._client.aclose()

    @property
    def is_running(self) -> bool:
        return self._cancel_event is not None and not self._cancel_event.is_set()

    @property
    def progress(self) -> AgentProgress | None:
        return self.reducer.progress

    # ========================================================================
    # Agent runs
    # ========================================================================

    async def send(
        self,
        prompt: str,
        on_event: Callable[[AgentStreamEvent, AgentProgress], None] | None = None,
        previous_context: str | None = None,
    ) -> AgentProgress:
        """
        Start a run for ``prompt`` and consume its stream to the end.

        Any run already in flight is cancelled first.

        Raises:
            AgentSessionError: If the server rejects the run before streaming
        """
        if not prompt.strip():
            raise AgentSessionError("Prompt is empty")
        if not self.connection_string:
            raise AgentSessionError("No database connection. Connect to a database first.")

        if previous_context is None:
            self._root_goal = prompt.strip()
        token = self._new_token()

        body = AgentRunRequest(
            prompt=prompt.strip(),
            api_key=self.api_key,
            connection_string=self.connection_string,
            schema_snapshot=self.schema,
            previous_sql=self.reducer.current_sql,
            previous_context=previous_context,
        )
        progress = self.reducer.start_run(prompt.strip(), self.max_steps)

        try:
            async with self._client.stream(
                "POST",
                f"{API_PREFIX}/agent",
                json=body.model_dump(mode="json", by_alias=True, exclude_none=True),
            ) as response:
                if response.status_code != httpx.codes.OK:
                    await response.aread()
                    error = _error_from_response(response, "Failed to start agent")
                    self.reducer.fail(error.message)
                    raise error

                await self._read_until_cancelled(response, token, on_event)

        except httpx.HTTPError as e:
            if not token.is_set():
                logger.warning(f"Agent stream failed: {e}")
                self.reducer.fail(str(e) or "An error occurred")
                raise AgentSessionError(str(e)) from e

        finally:
            # A newer run or stop() has already replaced the token
            superseded = self._cancel_event is not token
            if not superseded:
                self._cancel_event = None
            token.set()

        if progress.is_running and superseded:
            progress.is_running = False
            progress.can_continue = False
        elif progress.is_running:
            self.reducer.stop(message="Agent stream ended unexpectedly.")
        return progress

    async def continue_run(
        self, on_event: Callable[[AgentStreamEvent, AgentProgress], None] | None = None
    ) -> AgentProgress:
        """Start a fresh run that picks up where a step-limited run stopped."""
        progress = self.reducer.progress
        if progress is None or not progress.can_continue:
            raise AgentSessionError("The last run cannot be continued")

        goal = self._root_goal or progress.goal
        context = build_continuation_context(progress.tool_calls, self.reducer.current_sql)
        return await self.send(continuation_goal(goal), on_event, previous_context=context)

    def stop(self, record: bool = True) -> None:
        """Cancel the run in flight, if any."""
        if self._cancel_event is not None:
            self._cancel_event.set()
            self._cancel_event = None
            if record:
                self.reducer.stop()

    def _new_token(self) -> asyncio.Event:
        if self._cancel_event is not None:
            logger.info("Cancelling the previous run")
            self._cancel_event.set()
        self._cancel_event = asyncio.Event()
        return self._cancel_event

    async def _read_until_cancelled(
        self,
        response: httpx.Response,
        token: asyncio.Event,
        on_event: Callable[[AgentStreamEvent, AgentProgress], None] | None,
    ) -> None:
        """Consume the stream until it ends or ``token`` fires, whichever comes first."""
        reader = asyncio.create_task(self._read_frames(response, token, on_event))
        cancelled = asyncio.create_task(token.wait())
        try:
            await asyncio.wait({reader, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            reader.cancel()
            cancelled.cancel()
            await asyncio.gather(reader, cancelled, return_exceptions=True)

        if not reader.cancelled() and reader.exception() is not None:
            raise reader.exception()

    async def _read_frames(
        self,
        response: httpx.Response,
        token: asyncio.Event,
        on_event: Callable[[AgentStreamEvent, AgentProgress], None] | None,
    ) -> None:
        buffer = FrameBuffer()
        async for chunk in response.aiter_bytes():
            if token.is_set():
                return
            for event in buffer.feed(chunk):
                self._dispatch(event, on_event)
        for event in buffer.close():
            self._dispatch(event, on_event)

    def _dispatch(
        self,
        event: AgentStreamEvent,
        on_event: Callable[[AgentStreamEvent, AgentProgress], None] | None,
    ) -> None:
        self.reducer.apply(event)
        if on_event is not None:
            on_event(event, self.reducer.progress)

    # ========================================================================
    # Other endpoints
    # ========================================================================

    async def fetch_max_steps(self) -> int:
        response = await self._client.get(f"{API_PREFIX}/agent")
        if response.status_code != httpx.codes.OK:
            raise _error_from_response(response, "Failed to fetch agent metadata")
        self.max_steps = int(response.json()["maxSteps"])
        return self.max_steps

    async def refresh_schema(self) -> list[SchemaInfo]:
        """Re-fetch the schema snapshot. Only call between runs."""
        response = await self._client.post(
            f"{API_PREFIX}/schema", json={"connectionString": self.connection_string}
        )
        if response.status_code != httpx.codes.OK:
            raise _error_from_response(response, "Failed to fetch schema")
        self.schema = SchemaResponse.model_validate(response.json()).tables
        return self.schema

    async def fetch_sample_data(self, tables: list[str], sample_size: int = 3) -> list[TableSample]:
        """Sample a few rows of ``tables`` (``table`` or ``schema.table`` references)."""
        response = await self._client.post(
            f"{API_PREFIX}/sample-data",
            json={
                "connectionString": self.connection_string,
                "tables": tables,
                "sampleSize": sample_size,
            },
        )
        if response.status_code != httpx.codes.OK:
            raise _error_from_response(response, "Failed to fetch sample data")
        return SampleDataResponse.model_validate(response.json()).samples

    async def execute(self, sql: str | None = None) -> QueryResponse:
        """Run ``sql`` (default: the current SQL) through the read-only query endpoint."""
        query = sql or self.reducer.current_sql
        if not query:
            raise AgentSessionError("No query to run")
        response = await self._client.post(
            f"{API_PREFIX}/query",
            json={"sql": query, "connectionString": self.connection_string},
        )
        if response.status_code != httpx.codes.OK:
            error = _error_from_response(response, "Query execution failed")
            self.reducer.add_entry("system", f"Query error: {error.message}", kind="error")
            raise error
        return QueryResponse.model_validate(response.json())

    async def chat(self, prompt: str) -> RepairReport:
        """Run one chat-mode turn and fold its SQL into the session."""
        body = ChatTurnRequest(
            prompt=prompt,
            api_key=self.api_key,
            connection_string=self.connection_string or "",
            schema_snapshot=self.schema,
            current_sql=self.reducer.current_sql,
            conversation_history=self.history,
        )
        response = await self._client.post(
            f"{API_PREFIX}/chat",
            json=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        if response.status_code != httpx.codes.OK:
            raise _error_from_response(response, "Chat request failed")

        report = RepairReport.model_validate(response.json()["report"])
        self.history.append(ChatHistoryMessage(role="user", content=prompt))
        if report.sql:
            self.history.append(
                ChatHistoryMessage(
                    role="assistant",
                    content=json.dumps({"sql": report.sql, "explanation": report.explanation}),
                )
            )
            self.reducer.current_sql = report.sql
            self.reducer.is_ai_generated = True
        return report
