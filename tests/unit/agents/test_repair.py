"""
Unit Tests for the bounded auto-repair controller

The generator is a real SQLGeneratorAgent over scripted replies; query
execution is replaced with a scripted runner so no connector is involved.
"""

import json
from unittest.mock import AsyncMock

import pytest
from conftest import make_result

from querypilot.agents.repair import (
    EMPTY_LIMIT_MESSAGE,
    ERROR_LIMIT_MESSAGE,
    RESULT_CHECK_PROMPT,
    RepairController,
    find_empty_columns,
)
from querypilot.agents.sql_generator import DEFAULT_CLARIFYING_QUESTIONS, SQLGeneratorAgent
from querypilot.config import RepairSettings
from querypilot.connectors.base import ConnectionError, QueryError
from querypilot.connectors.readonly import ReadOnlyResult
from querypilot.models.agent import Message
from querypilot.models.errors import LLMAuthError
from querypilot.models.schema import TableSample


def _sql(sql: str, explanation: str = "Updated the query.", **extra) -> str:
    return json.dumps({"sql": sql, "explanation": explanation, **extra})


class ScriptedRunner:
    """Replays query outcomes: a list of rows, or an exception to raise."""

    def __init__(self, *outcomes, default=None):
        self.outcomes = list(outcomes)
        self.default = default
        self.calls: list[str] = []

    async def __call__(self, sql: str) -> ReadOnlyResult:
        self.calls.append(sql)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return ReadOnlyResult(sql=sql, result=make_result(outcome or []), limit=1000)


@pytest.fixture
def make_controller(scripted_provider):
    def _make(replies, runner, sample_fetcher=None, **settings):
        settings.setdefault("validate_results", False)
        provider = scripted_provider(replies=list(replies))
        generator = SQLGeneratorAgent(llm_provider=provider)
        generator._sleep = AsyncMock()
        controller = RepairController(
            generator,
            settings=RepairSettings(**settings),
            query_runner=runner,
            sample_fetcher=sample_fetcher,
        )
        return controller, provider

    return _make


def _contents(report) -> list[str]:
    return [entry.content for entry in report.entries]


class TestSuccessfulTurns:
    @pytest.mark.asyncio
    async def test_first_query_works(self, make_controller):
        runner = ScriptedRunner([{"id": 1}, {"id": 2}])
        controller, provider = make_controller([_sql("SELECT id FROM customers")], runner)

        report = await controller.run_turn("all customer ids")

        assert report.outcome == "success"
        assert report.sql.startswith("SELECT id")
        assert report.row_count == 2
        assert report.columns == ["id"]
        assert report.attempts == 0
        assert "Query returned 2 rows." in _contents(report)
        assert len(provider.requests) == 1
        assert controller.attempts == 0

    @pytest.mark.asyncio
    async def test_error_then_fix(self, make_controller):
        runner = ScriptedRunner(
            QueryError('column "nme" does not exist', code="42703"),
            [{"name": "Alice"}],
        )
        controller, provider = make_controller(
            [_sql("SELECT nme FROM customers"), _sql("SELECT name FROM customers")], runner
        )

        report = await controller.run_turn("customer names")

        assert report.outcome == "success"
        assert report.attempts == 1
        assert "Query error: column \"nme\" does not exist" in _contents(report)
        assert "Query fixed! 1 rows returned." in _contents(report)
        fix_request = provider.requests[1].messages[-1].content
        assert fix_request.endswith(
            'User request: The query failed with this error: "column "nme" does not exist". '
            "Please fix the SQL query."
        )
        assert "ERROR: column \"nme\" does not exist" in fix_request
        assert report.entries[-1].is_auto_fix is True


class TestRepairLimit:
    @pytest.mark.asyncio
    async def test_two_corrections_then_stop(self, make_controller):
        runner = ScriptedRunner(default=QueryError('relation "nope" does not exist', code="42P01"))
        controller, provider = make_controller(
            [
                _sql("SELECT * FROM nope"),
                _sql("SELECT * FROM nope2"),
                _sql("SELECT * FROM nope3"),
            ],
            runner,
        )

        report = await controller.run_turn("show the nope table")

        assert report.outcome == "repair_limit"
        assert report.attempts == 2
        assert len(provider.requests) == 3
        assert len(runner.calls) == 3
        contents = _contents(report)
        assert contents[-1] == ERROR_LIMIT_MESSAGE
        assert sum(content.startswith("Query still has an error") for content in contents) == 2
        assert controller.attempts == 2

    @pytest.mark.asyncio
    async def test_limit_keeps_the_last_working_query(self, make_controller):
        runner = ScriptedRunner(default=QueryError('relation "nope" does not exist', code="42P01"))
        controller, _ = make_controller([_sql("SELECT * FROM nope")] * 3, runner)

        report = await controller.run_turn("x", current_sql="SELECT id FROM customers")

        assert report.outcome == "repair_limit"
        assert report.sql == "SELECT id FROM customers"
        assert report.error == 'relation "nope" does not exist'
        assert report.entries[-1].content == ERROR_LIMIT_MESSAGE
        assert report.entries[-1].sql == "SELECT id FROM customers"

    @pytest.mark.asyncio
    async def test_empty_results_hit_the_debug_limit(self, make_controller):
        runner = ScriptedRunner(default=[])
        controller, provider = make_controller(
            [
                _sql("SELECT * FROM customers WHERE name = 'x'"),
                _sql("SELECT * FROM customers WHERE name ILIKE 'x%'"),
                _sql("SELECT * FROM customers WHERE name ILIKE '%x%'"),
            ],
            runner,
        )

        report = await controller.run_turn("customers named x")

        assert report.outcome == "repair_limit"
        assert len(provider.requests) == 3
        assert _contents(report)[-1] == EMPTY_LIMIT_MESSAGE
        assert report.row_count == 0

    @pytest.mark.asyncio
    async def test_counter_resets_per_turn(self, make_controller):
        runner = ScriptedRunner(
            QueryError("boom"), QueryError("boom"), QueryError("boom"), [{"id": 1}]
        )
        controller, _ = make_controller(
            [_sql("SELECT id FROM a")] * 3 + [_sql("SELECT id FROM b")], runner
        )

        first = await controller.run_turn("first")
        second = await controller.run_turn("second")

        assert first.outcome == "repair_limit"
        assert second.outcome == "success"
        assert second.attempts == 0


class TestEmptyResultDiagnostics:
    @pytest.mark.asyncio
    async def test_diagnostics_feed_the_correction(self, make_controller):
        diagnostics = [f"SELECT count(*) FROM t{n}" for n in range(4)]
        runner = ScriptedRunner(
            [],
            [{"count": 0}],
            [{"count": 5}],
            QueryError("diagnostic failed"),
            [{"id": 7}],
        )
        controller, provider = make_controller(
            [
                _sql("SELECT id FROM customers WHERE city = 'berlin'"),
                _sql(
                    "SELECT id FROM customers WHERE city = 'berlin'",
                    "Investigating",
                    debugInfo={
                        "needsMoreData": True,
                        "suggestedQueries": diagnostics,
                        "diagnosis": "City values may be capitalized.",
                    },
                ),
                _sql("SELECT id FROM customers WHERE city = 'Berlin'"),
            ],
            runner,
        )

        report = await controller.run_turn("customers in berlin")

        assert report.outcome == "success"
        assert report.attempts == 1
        assert runner.calls[1:4] == diagnostics[:3]
        assert len(runner.calls) == 5
        contents = _contents(report)
        assert "Query executed but returned no rows." in contents
        assert "Running diagnostic queries to understand the data..." in contents
        correction = provider.requests[2].messages[-1].content
        assert "Diagnostic query results:" in correction
        assert "Query: SELECT count(*) FROM t1\nRows: 1" in correction
        assert "t2" not in correction

    @pytest.mark.asyncio
    async def test_debug_without_diagnostics_uses_the_new_query(self, make_controller):
        runner = ScriptedRunner([], [{"id": 1}])
        controller, provider = make_controller(
            [
                _sql("SELECT id FROM customers WHERE active"),
                _sql(
                    "SELECT id FROM customers",
                    "Dropped the filter",
                    debugInfo={"needsMoreData": False, "diagnosis": "No active customers."},
                ),
            ],
            runner,
        )

        report = await controller.run_turn("active customers")

        assert report.outcome == "success"
        assert len(provider.requests) == 2
        assert "No active customers." in _contents(report)


class TestInvalidOutput:
    @pytest.mark.asyncio
    async def test_falls_back_to_last_good_query(self, make_controller):
        runner = ScriptedRunner()
        controller, provider = make_controller(
            ["I need more details.", "Sorry, I cannot tell which table."], runner
        )

        report = await controller.run_turn("numbers please", current_sql="SELECT * FROM customers")

        assert report.outcome == "fallback"
        assert report.sql == "SELECT * FROM customers"
        assert len(provider.requests) == 2
        assert "Reply with a valid SELECT query" in provider.requests[1].messages[-1].content
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_structured_error_without_previous_query(self, make_controller):
        controller, _ = make_controller(["hello there", "still prose"], ScriptedRunner())

        report = await controller.run_turn("numbers please")

        assert report.outcome == "invalid"
        assert report.sql is None
        assert report.error == (
            "I couldn't generate a valid SQL query. SQL must start with SELECT or WITH"
        )
        assert report.clarifying_questions == DEFAULT_CLARIFYING_QUESTIONS

    @pytest.mark.asyncio
    async def test_retry_can_recover(self, make_controller):
        runner = ScriptedRunner([{"n": 1}])
        controller, _ = make_controller(["not sql", _sql("SELECT count(*) AS n FROM customers")], runner)

        report = await controller.run_turn("how many customers")

        assert report.outcome == "success"
        assert report.attempts == 1


class TestClarificationAndFailures:
    @pytest.mark.asyncio
    async def test_clarification_ends_the_turn(self, make_controller):
        runner = ScriptedRunner()
        controller, _ = make_controller(
            [
                _sql(
                    "",
                    "Which period?",
                    needsClarification=True,
                    clarifyingQuestions=["This year or last year?"],
                )
            ],
            runner,
        )

        report = await controller.run_turn("sales")

        assert report.outcome == "clarification"
        assert report.clarifying_questions == ["This year or last year?"]
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_first_generation_failure_propagates(self, make_controller):
        controller, _ = make_controller([LLMAuthError("anthropic", "invalid x-api-key")], ScriptedRunner())

        with pytest.raises(LLMAuthError):
            await controller.run_turn("anything")

    @pytest.mark.asyncio
    async def test_repair_failure_is_reported(self, make_controller):
        runner = ScriptedRunner(QueryError("boom"))
        controller, _ = make_controller(
            [_sql("SELECT id FROM customers"), LLMAuthError("anthropic", "invalid x-api-key")],
            runner,
        )

        report = await controller.run_turn("ids")

        assert report.outcome == "error"
        assert report.error == "Invalid API key. Please check your Claude API key."
        assert report.entries[-1].role == "assistant"

    @pytest.mark.asyncio
    async def test_history_is_forwarded(self, make_controller):
        runner = ScriptedRunner([{"id": 1}])
        controller, provider = make_controller([_sql("SELECT id FROM customers LIMIT 1")], runner)

        await controller.run_turn(
            "just one",
            current_sql="SELECT id FROM customers",
            history=[
                Message(role="user", content="all ids"),
                Message(role="assistant", content='{"sql": "SELECT id FROM customers"}'),
            ],
        )

        roles = [message.role for message in provider.requests[0].messages]
        assert roles == ["system", "user", "assistant", "user"]


class TestResultValidation:
    @pytest.mark.asyncio
    async def test_valid_results_are_summarized(self, make_controller):
        runner = ScriptedRunner([{"id": 1}, {"id": 2}])
        controller, provider = make_controller(
            [
                _sql("SELECT id FROM customers"),
                _sql("SELECT id FROM customers", "Two customers found.", validation={"isValid": True}),
            ],
            runner,
            validate_results=True,
        )

        report = await controller.run_turn("all customer ids")

        assert report.outcome == "success"
        assert report.validation.is_valid is True
        assert _contents(report)[-1] == "2 rows returned. Two customers found."
        check = provider.requests[1].messages[-1].content
        assert check.endswith(f"User request: {RESULT_CHECK_PROMPT}")
        assert "Rows returned: 2" in check
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_issues_with_a_working_fix(self, make_controller):
        runner = ScriptedRunner([{"id": 1, "tier": None}], [{"id": 1, "tier": "gold"}])
        controller, provider = make_controller(
            [
                _sql("SELECT id, tier FROM customers"),
                _sql(
                    "SELECT id, profile->>'tier' AS tier FROM customers",
                    "The tier lives in the profile column.",
                    validation={"isValid": False, "issues": ["tier is always NULL"]},
                ),
            ],
            runner,
            validate_results=True,
        )

        report = await controller.run_turn("customer tiers")

        assert "all NULL/empty values: tier" in provider.requests[1].messages[-1].content
        assert report.outcome == "success"
        assert report.attempts == 0
        assert report.sql == runner.calls[1]
        assert report.rows == [{"id": 1, "tier": "gold"}]
        assert report.explanation == "The tier lives in the profile column."
        contents = _contents(report)
        assert "Found issues: tier is always NULL. Attempting to fix..." in contents
        assert contents[-1] == "Query fixed! 1 rows returned."
        fix_entry = report.entries[-2]
        assert fix_entry.role == "assistant"
        assert fix_entry.sql == runner.calls[1]
        assert fix_entry.is_auto_fix is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fix_outcome, message",
        [
            ([], "Fixed query still returned no rows."),
            (QueryError("boom"), "Fixed query error: boom"),
        ],
    )
    async def test_failed_fix_keeps_the_working_query(self, make_controller, fix_outcome, message):
        runner = ScriptedRunner([{"id": 1, "tier": None}], fix_outcome)
        controller, _ = make_controller(
            [
                _sql("SELECT id, tier FROM customers"),
                _sql(
                    "SELECT id, profile->>'tier' AS tier FROM customers",
                    validation={"isValid": False, "issues": ["tier is always NULL"]},
                ),
            ],
            runner,
            validate_results=True,
        )

        report = await controller.run_turn("customer tiers")

        assert report.outcome == "success"
        assert report.sql == runner.calls[0]
        assert report.rows == [{"id": 1, "tier": None}]
        assert _contents(report)[-1] == message

    @pytest.mark.asyncio
    async def test_issues_without_a_fix_are_reported(self, make_controller):
        runner = ScriptedRunner([{"id": 1, "tier": None}])
        controller, _ = make_controller(
            [
                _sql("SELECT id, tier FROM customers"),
                _sql(
                    "SELECT id, tier FROM customers",
                    validation={"isValid": False, "issues": ["tier is always NULL"]},
                ),
            ],
            runner,
            validate_results=True,
        )

        report = await controller.run_turn("customer tiers")

        assert _contents(report)[-1] == "1 rows returned. tier is always NULL"
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_validation_failure_keeps_the_success(self, make_controller):
        runner = ScriptedRunner([{"id": 1}])
        controller, _ = make_controller(
            [_sql("SELECT id FROM customers"), LLMAuthError("anthropic", "invalid x-api-key")],
            runner,
            validate_results=True,
        )

        report = await controller.run_turn("ids")

        assert report.outcome == "success"
        assert report.error is None
        assert report.validation is None
        assert _contents(report)[-1] == "Query executed successfully"


def test_find_empty_columns():
    rows = [{"id": 1, "tier": None}, {"id": 2, "tier": None}]
    assert find_empty_columns(["id", "tier"], rows) == ["tier"]
    assert find_empty_columns(["id"], []) == []


class TestSampleData:
    @pytest.mark.asyncio
    async def test_samples_reach_generation_and_debugging(self, make_controller, sample_schema):
        fetcher = AsyncMock(
            return_value=[
                TableSample(
                    table='"customers"',
                    columns=["id", "profile"],
                    rows=[{"id": 1, "profile": {"tier": "gold"}}],
                    json_field_samples={"profile": [{"tier": "gold"}]},
                )
            ]
        )
        runner = ScriptedRunner([], [{"id": 1}])
        controller, provider = make_controller(
            [
                _sql("SELECT id FROM customers WHERE profile->>'tier' = 'Gold'"),
                _sql(
                    "SELECT id FROM customers WHERE profile->>'tier' = 'gold'",
                    debugInfo={"needsMoreData": False, "diagnosis": "Tiers are lowercase."},
                ),
            ],
            runner,
            sample_fetcher=fetcher,
        )

        report = await controller.run_turn("gold customers", schema=list(sample_schema))

        assert report.outcome == "success"
        fetcher.assert_awaited_once_with(list(sample_schema))
        first, debug = (request.messages[-1].content for request in provider.requests)
        assert "Sample Data (for understanding field values and JSON structure):" in first
        assert '"profile" examples:' in debug

    @pytest.mark.asyncio
    async def test_unavailable_samples_do_not_block_the_turn(self, make_controller, sample_schema):
        fetcher = AsyncMock(side_effect=ConnectionError("connection refused", code="ECONNREFUSED"))
        controller, provider = make_controller(
            [_sql("SELECT id FROM customers")], ScriptedRunner([{"id": 1}]), sample_fetcher=fetcher
        )

        report = await controller.run_turn("ids", schema=list(sample_schema))

        assert report.outcome == "success"
        assert "Sample Data" not in provider.requests[0].messages[-1].content

    @pytest.mark.asyncio
    async def test_no_schema_means_no_sampling(self, make_controller):
        fetcher = AsyncMock(return_value=[])
        controller, _ = make_controller(
            [_sql("SELECT 1")], ScriptedRunner([{"?column?": 1}]), sample_fetcher=fetcher
        )

        await controller.run_turn("one")

        fetcher.assert_not_awaited()


def test_sampling_follows_the_connection_settings(scripted_provider):
    generator = SQLGeneratorAgent(llm_provider=scripted_provider())
    dsn = "postgresql://localhost/shop"

    sampling = RepairController(generator, connection_string=dsn)
    assert sampling.fetch_samples.keywords["max_tables"] == 5
    assert sampling.fetch_samples.args == (dsn,)

    disabled = RepairController(
        generator, connection_string=dsn, settings=RepairSettings(sample_tables=0)
    )
    assert disabled.fetch_samples is None


def test_connection_string_or_runner_required(scripted_provider):
    generator = SQLGeneratorAgent(llm_provider=scripted_provider())
    with pytest.raises(ValueError, match="connection_string is required"):
        RepairController(generator)
