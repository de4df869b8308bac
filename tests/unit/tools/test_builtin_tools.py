"""
Unit Tests for the built-in agent tools

Every tool is invoked through ToolExecutor, the way the agent loop calls
it, so results are checked in their camelCase wire form.
"""

import pytest

from querypilot.config import AgentSettings
from querypilot.connectors.base import QueryError
from querypilot.models.tools import ToolName
from querypilot.tools.base import ToolContext
from querypilot.tools.builtin.query import MUTATION_REJECTED
from querypilot.tools.builtin.schema import NO_KEYS_HINT
from querypilot.tools.executor import ToolExecutor
from querypilot.utils.sql_guard import quote_table_reference


@pytest.fixture
def ctx(sample_schema):
    return ToolContext(
        connection_string="postgresql://localhost/shop",
        schema_snapshot=sample_schema,
        correlation_id="run-1",
        limits=AgentSettings(),
    )


@pytest.fixture
def run_tool(ctx):
    executor = ToolExecutor()

    async def run(name: str, **args):
        return await executor.execute(name, args, ctx)

    return run


class TestGetTableSchema:
    @pytest.mark.asyncio
    async def test_returns_snapshot_with_views(self, run_tool, fake_connector):
        result = await run_tool(ToolName.GET_TABLE_SCHEMA)

        assert result["tableCount"] == 3
        names = [table["name"] for table in result["tables"]]
        assert names == ['"customers"', '"sales"."orders"', '"order_totals"']
        assert result["tables"][0]["columns"][0] == {
            "name": "id",
            "type": "integer",
            "isPrimaryKey": True,
        }
        assert "get_json_keys" in result["hint"]
        assert fake_connector.factory_calls == []

    @pytest.mark.asyncio
    async def test_views_can_be_excluded(self, run_tool):
        result = await run_tool(ToolName.GET_TABLE_SCHEMA, include_views=False)

        assert result["tableCount"] == 2
        assert all(table["type"] == "table" for table in result["tables"])


class TestGetJsonKeys:
    def test_table_references_are_quoted(self):
        assert quote_table_reference("users") == '"users"'
        assert quote_table_reference("sales.orders") == '"sales"."orders"'
        assert quote_table_reference('"my.schema"."t"') == '"my.schema"."t"'

    @pytest.mark.asyncio
    async def test_discovers_keys(self, run_tool, fake_connector, query_result):
        fake_connector.respond(
            "jsonb_object_keys", query_result([{"key": "city"}, {"key": "tier"}])
        )

        result = await run_tool(ToolName.GET_JSON_KEYS, table="customers", column="profile")

        assert result["keys"] == ["city", "tier"]
        assert result["keyCount"] == 2
        assert result["sampleValues"] is None
        assert result["hint"].startswith("Found 2 unique keys")
        assert 'jsonb_object_keys("profile"::jsonb)' in fake_connector.executed[0]
        assert 'FROM "customers"' in fake_connector.executed[0]

    @pytest.mark.asyncio
    async def test_nested_path_and_samples(self, run_tool, fake_connector, query_result):
        fake_connector.respond("jsonb_object_keys", query_result([{"key": "zip"}]))
        fake_connector.respond("->>'zip'", query_result([{"value": "10115"}]))

        result = await run_tool(
            ToolName.GET_JSON_KEYS,
            table="customers",
            column="profile",
            nested_path="address",
            sample_values=True,
        )

        assert result["nestedPath"] == "address"
        assert result["sampleValues"] == {"zip": ["10115"]}
        assert "\"profile\"->'address'" in fake_connector.executed[0]

    @pytest.mark.asyncio
    async def test_empty_result_is_not_an_error(self, run_tool, fake_connector):
        result = await run_tool(ToolName.GET_JSON_KEYS, table="customers", column="profile")

        assert result["keys"] == []
        assert result["keyCount"] == 0
        assert result["hint"] == NO_KEYS_HINT
        assert result["error"] is None

    @pytest.mark.asyncio
    async def test_database_error_is_reported(self, run_tool, fake_connector):
        fake_connector.default = QueryError('column "profil" does not exist', code="42703")

        result = await run_tool(ToolName.GET_JSON_KEYS, table="customers", column="profil")

        assert result["error"] == 'column "profil" does not exist'
        assert result["suggestion"] == "Check that the table and column names are correct."
        assert result["keys"] is None


class TestExecuteQuery:
    @pytest.mark.asyncio
    async def test_mutation_never_reaches_the_database(self, run_tool, fake_connector):
        result = await run_tool(
            ToolName.EXECUTE_QUERY,
            sql="DROP TABLE users",
            title="Drop",
            description="Remove users",
        )

        assert result["success"] is False
        assert result["error"] == MUTATION_REJECTED
        assert result["title"] == "Drop"
        assert fake_connector.factory_calls == []
        assert fake_connector.executed == []

    @pytest.mark.asyncio
    async def test_non_select_prefix_is_rejected(self, run_tool, fake_connector):
        result = await run_tool(
            ToolName.EXECUTE_QUERY, sql="SHOW TABLES", title="t", description="d"
        )

        assert result["success"] is False
        assert result["error"] == "Query must start with SELECT, WITH, or EXPLAIN."
        assert fake_connector.executed == []

    @pytest.mark.asyncio
    async def test_success_returns_sample_and_types(self, run_tool, fake_connector, query_result):
        rows = [{"name": f"c{n}", "revenue": n * 10, "email": None} for n in range(7)]
        fake_connector.default = query_result(rows, {"name": 25, "revenue": 1700, "email": 1043})

        result = await run_tool(
            ToolName.EXECUTE_QUERY,
            sql="SELECT name, revenue, email FROM customers",
            title="Revenue",
            description="Revenue per customer",
        )

        assert result["success"] is True
        assert result["rowCount"] == 7
        assert result["executionTime"] == 12
        assert len(result["rows"]) == 5
        assert result["hasMoreRows"] is True
        assert result["columns"] == ["name", "revenue", "email"]
        assert result["columnTypes"] == {"name": "text", "revenue": "numeric", "email": "text"}
        assert result["emptyColumns"] == ["email"]
        assert "email" in result["warning"]
        assert fake_connector.executed == ["SELECT name, revenue, email FROM customers\nLIMIT 100"]

    @pytest.mark.asyncio
    async def test_explicit_limit_is_capped(self, run_tool, fake_connector):
        await run_tool(
            ToolName.EXECUTE_QUERY,
            sql="SELECT * FROM customers",
            title="All",
            description="Everything",
            limit=5000,
        )

        assert fake_connector.executed[-1].endswith("LIMIT 1000")

    @pytest.mark.asyncio
    async def test_database_error_gets_suggestion(self, run_tool, fake_connector):
        fake_connector.default = QueryError('column "nme" does not exist', code="42703")

        result = await run_tool(
            ToolName.EXECUTE_QUERY, sql="SELECT nme FROM customers", title="t", description="d"
        )

        assert result["success"] is False
        assert result["error"] == 'column "nme" does not exist'
        assert "get_json_keys" in result["suggestion"]
        assert result["rowCount"] is None


class TestValidateQuery:
    @pytest.mark.asyncio
    async def test_valid_query_runs_explain(self, run_tool, fake_connector):
        result = await run_tool(ToolName.VALIDATE_QUERY, sql="SELECT * FROM customers;")

        assert result["isValid"] is True
        assert fake_connector.executed == ["EXPLAIN SELECT * FROM customers"]

    @pytest.mark.asyncio
    async def test_explain_is_not_accepted_as_input(self, run_tool, fake_connector):
        result = await run_tool(ToolName.VALIDATE_QUERY, sql="EXPLAIN SELECT 1")

        assert result["isValid"] is False
        assert result["error"] == "Query must start with SELECT or WITH"
        assert fake_connector.executed == []

    @pytest.mark.asyncio
    async def test_hidden_mutation_is_rejected(self, run_tool, fake_connector):
        result = await run_tool(
            ToolName.VALIDATE_QUERY, sql="WITH x AS (DELETE FROM users RETURNING *) SELECT 1"
        )

        assert result["isValid"] is False
        assert "disallowed keywords" in result["error"]
        assert fake_connector.executed == []

    @pytest.mark.asyncio
    async def test_invalid_relation(self, run_tool, fake_connector):
        fake_connector.default = QueryError('relation "nope" does not exist', code="42P01")

        result = await run_tool(ToolName.VALIDATE_QUERY, sql="SELECT * FROM nope")

        assert result["isValid"] is False
        assert "get_table_schema" in result["suggestion"]


class TestPresentationTools:
    @pytest.mark.asyncio
    async def test_update_query_ui_defaults(self, run_tool):
        result = await run_tool(
            ToolName.UPDATE_QUERY_UI,
            sql="SELECT 1",
            explanation="Returns one",
            summary="Trivial",
        )

        assert result["action"] == "updateUI"
        assert result["confidence"] == "high"
        assert result["changes"] == []
        assert result["suggestions"] == []

    @pytest.mark.asyncio
    async def test_chart_is_inferred(self, run_tool):
        result = await run_tool(
            ToolName.GENERATE_CHART,
            data=[{"country": "DE", "users": "12"}, {"country": "FR", "users": 7}],
            columns=[{"name": "country", "type": "text"}, {"name": "users", "type": "numeric"}],
            title="Users by country",
            description="Two countries",
        )

        assert result["success"] is True
        assert result["chartConfig"]["type"] == "pie"
        assert result["xAxisKey"] == "country"
        assert result["yAxisKeys"] == ["users"]
        assert result["chartData"] == [{"country": "DE", "users": 12.0}, {"country": "FR", "users": 7}]
        assert result["dataPointCount"] == 2

    @pytest.mark.asyncio
    async def test_chart_overrides(self, run_tool):
        result = await run_tool(
            ToolName.GENERATE_CHART,
            data=[{"day": "2024-01-01", "a": 1, "b": 2}],
            columns=[
                {"name": "day", "type": "date"},
                {"name": "a", "type": "numeric"},
                {"name": "b", "type": "numeric"},
            ],
            title="t",
            description="d",
            chart_type="area",
            y_axes=["b"],
            stacked=True,
        )

        assert result["chartConfig"] == {
            "type": "area",
            "xAxis": "day",
            "yAxes": ["b"],
            "stacked": True,
            "title": "t",
        }

    @pytest.mark.asyncio
    async def test_chart_without_data(self, run_tool):
        result = await run_tool(
            ToolName.GENERATE_CHART, data=[], columns=[], title="t", description="d"
        )

        assert result["success"] is False
        assert result["error"] == "No data provided for chart generation"

    @pytest.mark.asyncio
    async def test_chart_without_numeric_column(self, run_tool):
        result = await run_tool(
            ToolName.GENERATE_CHART,
            data=[{"name": "a"}],
            columns=[{"name": "name", "type": "text"}],
            title="t",
            description="d",
        )

        assert result["success"] is False
        assert result["error"].startswith("Cannot determine chart axes")
        assert result["hint"]


class TestManageTodo:
    @pytest.mark.asyncio
    async def test_create(self, run_tool):
        result = await run_tool(
            ToolName.MANAGE_TODO, action="create", items=["Inspect schema", "Write query"]
        )

        assert result["success"] is True
        assert [item["status"] for item in result["items"]] == ["in_progress", "pending"]
        assert result["message"] == "Created todo list with 2 items"

    @pytest.mark.asyncio
    async def test_create_requires_items(self, run_tool):
        result = await run_tool(ToolName.MANAGE_TODO, action="create")

        assert result["success"] is False
        assert result["error"] == "Must provide items array for create action"

    @pytest.mark.asyncio
    async def test_add(self, run_tool):
        result = await run_tool(ToolName.MANAGE_TODO, action="add", item_text="Check nulls")

        assert result["item"]["status"] == "pending"
        assert result["item"]["addedDuringExecution"] is True

    @pytest.mark.asyncio
    async def test_items_added_in_the_same_millisecond_get_distinct_ids(
        self, run_tool, monkeypatch
    ):
        monkeypatch.setattr("querypilot.tools.builtin.planning.now_ms", lambda: 1700000000000)

        first = await run_tool(ToolName.MANAGE_TODO, action="add", item_text="Check nulls")
        second = await run_tool(ToolName.MANAGE_TODO, action="add", item_text="Check dates")

        assert first["item"]["id"].startswith("todo-1700000000000-new-")
        assert first["item"]["id"] != second["item"]["id"]

    @pytest.mark.asyncio
    async def test_item_actions_echo_the_id(self, run_tool):
        result = await run_tool(ToolName.MANAGE_TODO, action="complete", item_id="todo-1-0")

        assert result["item_id"] == "todo-1-0"
        assert result["message"] == "Marked todo-1-0 as completed"

    @pytest.mark.asyncio
    async def test_item_actions_require_an_id(self, run_tool):
        result = await run_tool(ToolName.MANAGE_TODO, action="skip")

        assert result["success"] is False
        assert result["error"] == "Must provide item_id for skip action"

    @pytest.mark.asyncio
    async def test_unknown_action_is_a_validation_error(self, run_tool):
        result = await run_tool(ToolName.MANAGE_TODO, action="delete")

        assert result["error"].startswith("Invalid arguments for manage_todo")
