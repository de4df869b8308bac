"""Read-only query tools: execution with a row sample, and EXPLAIN validation."""

from __future__ import annotations

import logging
from typing import Annotated

from pydantic import Field

from querypilot.connectors import ConnectorError, create_connector
from querypilot.models.tools import ExecuteQueryResult, ToolName, ValidateQueryResult
from querypilot.tools.base import ToolCategory, ToolContext, tool
from querypilot.utils.charts import column_kind
from querypilot.utils.sql_guard import (
    QUERY_PREFIXES,
    VALIDATION_PREFIXES,
    apply_row_limit,
    has_allowed_prefix,
    is_mutation_query,
    strip_trailing_semicolon,
)

logger = logging.getLogger(__name__)

MUTATION_REJECTED = (
    "Query rejected: Only SELECT queries are allowed. Mutation queries are blocked for safety."
)


def _execution_suggestion(message: str) -> str:
    if "column" in message:
        return (
            "Check column names against the schema. "
            "Use get_table_schema or get_json_keys to verify field names."
        )
    if "relation" in message:
        return "A referenced table does not exist. Use get_table_schema to see available tables."
    if "syntax" in message:
        return "There is a syntax error in your SQL. Review the query structure."
    return "Review the query and try again."


def _validation_suggestion(message: str) -> str:
    if "column" in message:
        return "A referenced column does not exist. Check column names against the schema."
    if "relation" in message:
        return "A referenced table does not exist. Use get_table_schema to see available tables."
    if "syntax" in message:
        return "There is a syntax error in the query. Review SQL syntax."
    return "Review the query and fix the issue."


@tool(
    name=ToolName.EXECUTE_QUERY,
    description=(
        "Execute a read-only SQL query against the database and return results.\n"
        "IMPORTANT: Only SELECT queries are allowed. Any INSERT, UPDATE, DELETE, DROP, or "
        "other mutation queries will be rejected.\n"
        "Use this to test your queries, explore data, or verify your results match the "
        "user's goal. A LIMIT is applied automatically if none is specified.\n\n"
        "REQUIRED: Always provide a title and description for the query."
    ),
    category=ToolCategory.QUERY,
)
async def execute_query(
    sql: Annotated[str, Field(description="The SQL SELECT query to execute")],
    title: Annotated[
        str, Field(description='Short title describing what this query does (e.g., "Sales by Region")')
    ],
    description: Annotated[
        str, Field(description="Brief explanation of what this query retrieves and why (1-2 sentences)")
    ],
    limit: Annotated[
        int | None,
        Field(description="Maximum number of rows to return. Defaults to 100. Max is 1000."),
    ] = None,
    ctx: ToolContext | None = None,
) -> ExecuteQueryResult:
    if is_mutation_query(sql):
        ctx.log_action("query_rejected", {"reason": "mutation"})
        return ExecuteQueryResult(
            success=False,
            error=MUTATION_REJECTED,
            suggestion="Rewrite as a SELECT query to read data instead of modifying it.",
            title=title,
            description=description,
        )
    if not has_allowed_prefix(sql, QUERY_PREFIXES):
        ctx.log_action("query_rejected", {"reason": "prefix"})
        return ExecuteQueryResult(
            success=False,
            error="Query must start with SELECT, WITH, or EXPLAIN.",
            suggestion="Start your query with SELECT to read data from the database.",
            title=title,
            description=description,
        )

    limits = ctx.limits
    effective_limit = max(1, min(limit or limits.default_row_limit, limits.max_row_limit))
    query_to_run, _ = apply_row_limit(sql, effective_limit)

    try:
        async with create_connector(ctx.connection_string, ctx.database) as connector:
            result = await connector.execute(query_to_run)
    except ConnectorError as e:
        message = e.message or "Unknown error"
        logger.info(f"Agent query failed: {message}", extra={"code": e.code})
        return ExecuteQueryResult(
            success=False,
            error=message,
            suggestion=_execution_suggestion(message),
            title=title,
            description=description,
        )

    empty_columns: list[str] = []
    if result.rows:
        empty_columns = [
            field.name
            for field in result.fields
            if all(row.get(field.name) is None for row in result.rows)
        ]

    ctx.log_action(
        "query_executed",
        {"rows": result.row_count, "ms": round(result.execution_time_ms)},
    )
    return ExecuteQueryResult(
        success=True,
        row_count=result.row_count,
        execution_time=round(result.execution_time_ms),
        columns=result.columns,
        column_types={field.name: column_kind(field.data_type_id) for field in result.fields},
        rows=result.rows[: limits.sample_rows],
        has_more_rows=result.row_count > limits.sample_rows,
        warning=(
            f"These columns returned all NULL values: {', '.join(empty_columns)}. "
            "This might indicate wrong field names or JSON paths."
            if empty_columns
            else None
        ),
        empty_columns=empty_columns or None,
        title=title,
        description=description,
    )


@tool(
    name=ToolName.VALIDATE_QUERY,
    description=(
        "Validate that a SQL query is syntactically correct PostgreSQL without running it. "
        "Uses EXPLAIN to check query validity. Useful for checking complex queries before "
        "proposing them to the user."
    ),
    category=ToolCategory.QUERY,
)
async def validate_query(
    sql: Annotated[str, Field(description="The SQL query to validate")],
    ctx: ToolContext | None = None,
) -> ValidateQueryResult:
    if not has_allowed_prefix(sql, VALIDATION_PREFIXES):
        return ValidateQueryResult(is_valid=False, error="Query must start with SELECT or WITH")
    if is_mutation_query(sql):
        return ValidateQueryResult(
            is_valid=False,
            error="Query contains disallowed keywords. Only SELECT queries are permitted.",
        )

    try:
        async with create_connector(ctx.connection_string, ctx.database) as connector:
            await connector.execute(f"EXPLAIN {strip_trailing_semicolon(sql)}")
    except ConnectorError as e:
        message = e.message or "Unknown error"
        return ValidateQueryResult(
            is_valid=False,
            error=message,
            suggestion=_validation_suggestion(message),
        )

    return ValidateQueryResult(is_valid=True, message="Query is syntactically valid PostgreSQL")
