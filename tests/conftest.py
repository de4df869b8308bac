"""
Pytest configuration and shared fixtures.

This module provides fixtures and configuration used across all tests:
a scripted LLM provider that drives the real tool loop, an in-memory
connector standing in for PostgreSQL, and environment isolation.
"""

import logging
from collections.abc import Callable
from typing import Any

import pytest

from querypilot.connectors.base import ConnectorError, QueryResult, ResultField
from querypilot.llm.base import BaseLLMProvider
from querypilot.llm.models import LLMRequest, LLMResponse, LLMUsage, ToolInvocation
from querypilot.models.schema import SchemaColumn, SchemaInfo

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires a PostgreSQL database and API keys)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (may require external services)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow (takes more than 1 second)")
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly enabled."""
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(
        reason="Integration tests disabled (use --run-integration to enable)."
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """Capture logs at DEBUG for every test."""
    caplog.set_level(logging.DEBUG)
    yield


# ============================================================================
# Environment and Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """
    Give each test a clean settings cache and a fake provider key.

    The repository .env file is never read during tests, so a developer's
    local configuration cannot leak into assertions.
    """
    from querypilot.config import clear_settings_cache

    monkeypatch.setenv("QUERYPILOT_ENV_SOURCE", "environment")
    for name in ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY", "LLM_OPENAI_API_KEY", "DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LLM_ANTHROPIC_API_KEY", "sk-ant-test-key-1234567890")
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True, scope="session")
def registered_tools():
    """Register the built-in agent tools once for the session."""
    from querypilot.tools import initialize_tools

    initialize_tools()


# ============================================================================
# Common Test Data
# ============================================================================


@pytest.fixture
def sample_schema() -> tuple[SchemaInfo, ...]:
    """Small shop schema: two tables, one view, one JSONB column."""
    return (
        SchemaInfo(
            name="customers",
            columns=(
                SchemaColumn(name="id", type="integer", is_primary_key=True),
                SchemaColumn(name="name", type="text"),
                SchemaColumn(name="profile", type="jsonb"),
            ),
        ),
        SchemaInfo(
            name="orders",
            schema_name="sales",
            columns=(
                SchemaColumn(name="id", type="integer", is_primary_key=True),
                SchemaColumn(name="customer_id", type="integer"),
                SchemaColumn(name="total", type="numeric"),
                SchemaColumn(name="created_at", type="timestamp with time zone"),
            ),
        ),
        SchemaInfo(
            name="order_totals",
            type="view",
            columns=(
                SchemaColumn(name="customer_id", type="integer"),
                SchemaColumn(name="revenue", type="numeric"),
            ),
        ),
    )


def make_result(rows: list[dict[str, Any]], fields: dict[str, int] | None = None) -> QueryResult:
    """Build a QueryResult; field OIDs default to text (25)."""
    if fields is None:
        names = list(rows[0].keys()) if rows else []
        fields = {name: 25 for name in names}
    return QueryResult(
        rows=rows,
        fields=[ResultField(name=name, data_type_id=oid) for name, oid in fields.items()],
        row_count=len(rows),
        execution_time_ms=12.4,
    )


@pytest.fixture
def query_result() -> Callable[..., QueryResult]:
    """Factory for QueryResult objects."""
    return make_result


# ============================================================================
# Mock Database Connector
# ============================================================================


class FakeConnector:
    """
    In-memory stand-in for a connector.

    ``responses`` maps a substring of the SQL to a QueryResult or a
    ConnectorError; the first matching entry wins. Unmatched statements
    return ``default``.
    """

    def __init__(self, default: QueryResult | ConnectorError | None = None):
        self.responses: list[tuple[str, QueryResult | ConnectorError]] = []
        self.default = default if default is not None else make_result([])
        self.schema: list[SchemaInfo] = []
        self.executed: list[str] = []
        self.opened = 0
        self.closed = 0

    def respond(self, fragment: str, outcome: QueryResult | ConnectorError) -> "FakeConnector":
        self.responses.append((fragment, outcome))
        return self

    async def __aenter__(self):
        self.opened += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed += 1
        return False

    async def execute(self, query: str) -> QueryResult:
        self.executed.append(query)
        outcome = next(
            (outcome for fragment, outcome in self.responses if fragment in query),
            self.default,
        )
        if isinstance(outcome, ConnectorError):
            raise outcome
        return outcome

    async def get_schema(self) -> list[SchemaInfo]:
        return self.schema


@pytest.fixture
def fake_connector(monkeypatch) -> FakeConnector:
    """
    Patch every ``create_connector`` call site with one FakeConnector.

    Usage:
        def test_query(fake_connector, query_result):
            fake_connector.respond("FROM orders", query_result([{"id": 1}]))
    """
    connector = FakeConnector()
    calls: list[str] = []

    def factory(connection_string: str, settings=None) -> FakeConnector:
        calls.append(connection_string)
        return connector

    for target in (
        "querypilot.tools.builtin.query.create_connector",
        "querypilot.tools.builtin.schema.create_connector",
        "querypilot.connectors.readonly.create_connector",
        "querypilot.connectors.sampling.create_connector",
        "querypilot.api.routes.schema.create_connector",
    ):
        monkeypatch.setattr(target, factory)
    connector.factory_calls = calls
    return connector


# ============================================================================
# Mock LLM Provider
# ============================================================================


def tool_turn(name: str, text: str = "", **args: Any) -> dict[str, Any]:
    """Script entry for a turn that calls one tool."""
    return {"text": text, "tool_calls": [(name, args)]}


def text_turn(text: str) -> dict[str, Any]:
    """Script entry for a turn that answers without tools."""
    return {"text": text, "tool_calls": []}


class ScriptedProvider(BaseLLMProvider):
    """
    Provider that replays scripted turns through the real tool loop.

    Each turn is a dict with ``text`` (streamed as one delta per word),
    ``tool_calls`` (list of ``(name, args)``) or ``error`` (an exception
    raised mid-turn). When the script runs out, ``default_turn`` is replayed.

    ``generate`` replies come from ``replies``: strings become completions,
    exceptions are raised.
    """

    def __init__(
        self,
        turns: list[dict[str, Any]] | None = None,
        replies: list[str | Exception] | None = None,
        default_turn: dict[str, Any] | None = None,
    ):
        super().__init__(provider_name="mock", model="mock-model")
        self.turns = list(turns or [])
        self.replies = list(replies or [])
        self.default_turn = default_turn or text_turn("Done.")
        self.systems: list[str] = []
        self.conversations: list[list[dict[str, Any]]] = []
        self.requests: list[LLMRequest] = []
        self.tool_names: list[str] = []
        self._call_counter = 0

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if not self.replies:
            raise AssertionError("ScriptedProvider ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(
            content=reply,
            model=self.model,
            usage=LLMUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            finish_reason="stop",
            provider=self.provider_name,
        )

    async def _stream_turn(self, system, conversation, tools, turn):
        self.systems.append(system)
        self.conversations.append(list(conversation))
        self.tool_names = [tool.name for tool in tools]
        script = self.turns.pop(0) if self.turns else self.default_turn

        for index, word in enumerate(script.get("text", "").split(" ")):
            if word:
                yield word if index == 0 else f" {word}"
        if script.get("error") is not None:
            raise script["error"]
        for name, args in script.get("tool_calls", []):
            self._call_counter += 1
            turn.tool_calls.append(
                ToolInvocation(id=f"call-{self._call_counter}", name=name, args=args)
            )

    def _to_conversation(self, messages):
        return [{"role": message.role, "content": message.content} for message in messages]

    def _append_turn(self, conversation, turn, outputs):
        conversation.append({"role": "assistant", "content": turn.text})
        for call, output in outputs:
            conversation.append({"role": "tool", "id": call.id, "content": output})


@pytest.fixture
def scripted_provider() -> Callable[..., ScriptedProvider]:
    """
    Factory for ScriptedProvider instances.

    Usage:
        def test_run(scripted_provider):
            provider = scripted_provider(turns=[tool_turn("get_table_schema")])
    """
    return ScriptedProvider
