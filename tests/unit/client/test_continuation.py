"""Unit tests for the step-limit continuation digest."""

from querypilot.client.continuation import (
    build_continuation_context,
    continuation_goal,
    summarize_tool_call,
)
from querypilot.client.models import ToolCallInfo


def _call(tool_name: str, result, **args) -> ToolCallInfo:
    return ToolCallInfo(id="x", tool_name=tool_name, args=args, result=result, status="success")


def test_continuation_goal():
    assert continuation_goal("Top customers") == "Continue working on the goal: Top customers"


def test_empty_run_has_no_context():
    assert build_continuation_context([]) == ""


def test_digest_lines():
    calls = [
        _call("get_table_schema", {"success": True, "tableCount": 4}),
        _call(
            "get_json_keys",
            {"success": True, "keys": ["city", "zip"]},
            table="customers",
            column="profile",
            nested_path="address",
        ),
        _call(
            "execute_query",
            {"success": False, "error": 'relation "nope" does not exist'},
            sql="SELECT *\n  FROM nope",
        ),
        _call(
            "execute_query",
            {"success": True, "rowCount": 3, "emptyColumns": ["email"]},
            sql="SELECT id, email FROM customers",
        ),
        _call("validate_query", {"isValid": True}, sql="SELECT 1"),
        _call("update_query_ui", {"success": True}, sql="SELECT 1"),
        _call("manage_todo", {"success": True, "action": "create"}),
    ]

    context = build_continuation_context(calls, last_sql="SELECT id FROM customers")

    assert context.splitlines() == [
        "The previous attempt ran out of steps. What it found:",
        "- Inspected schema: 4 tables",
        "- JSON keys in customers.profile -> address: city, zip",
        '- Query FAILED (relation "nope" does not exist): SELECT * FROM nope',
        "- Query succeeded (3 rows; all-NULL columns: email): SELECT id, email FROM customers",
        "- Validated OK: SELECT 1",
        "Latest SQL: SELECT id FROM customers",
        "Do not repeat queries that already failed; build on what worked.",
    ]


def test_long_sql_is_truncated():
    sql = "SELECT " + ", ".join(f"column_{n}" for n in range(60)) + " FROM wide"

    line = summarize_tool_call(_call("execute_query", {"success": True, "rowCount": 1}, sql=sql))

    assert line.endswith("...")
    assert len(line) < len(sql)


def test_json_keys_without_results():
    line = summarize_tool_call(
        _call("get_json_keys", {"success": True, "keys": []}, table="t", column="c")
    )

    assert line == "- JSON keys in t.c: none found"


def test_unknown_tools_are_left_out():
    assert summarize_tool_call(_call("mystery", {"success": True})) is None
