"""Schema discovery tools: the snapshot view and JSON key exploration."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from pydantic import Field

from querypilot.connectors import ConnectorError, create_connector
from querypilot.models.tools import (
    ColumnSummary,
    JsonKeysResult,
    TableSchemaResult,
    TableSummary,
    ToolName,
)
from querypilot.tools.base import ToolCategory, ToolContext, tool
from querypilot.utils.sql_guard import quote_identifier, quote_table_reference

logger = logging.getLogger(__name__)

SCHEMA_HINT = "Use get_json_keys to explore JSON/JSONB column structures if needed."
NO_KEYS_HINT = "No keys found. The column might be empty, an array, or have a different structure."


def escape_literal(value: str) -> str:
    return value.replace("'", "''")


@tool(
    name=ToolName.GET_TABLE_SCHEMA,
    description=(
        "Get the complete database schema including all tables, views, and their column "
        "definitions. Use this tool first to understand the database structure before "
        "writing queries. Returns a list of tables with their columns, data types, and "
        "primary key information."
    ),
    category=ToolCategory.SCHEMA,
)
def get_table_schema(
    include_views: Annotated[
        bool, Field(description="Whether to include views in the result. Defaults to true.")
    ] = True,
    ctx: ToolContext | None = None,
) -> TableSchemaResult:
    snapshot = ctx.schema_snapshot if ctx else ()
    tables = [
        TableSummary(
            name=table.qualified_name,
            type=table.type,
            columns=[
                ColumnSummary(
                    name=column.name,
                    type=column.type,
                    is_primary_key=column.is_primary_key,
                )
                for column in table.columns
            ],
        )
        for table in snapshot
        if include_views or table.type != "view"
    ]
    return TableSchemaResult(table_count=len(tables), tables=tables, hint=SCHEMA_HINT)


@tool(
    name=ToolName.GET_JSON_KEYS,
    description=(
        "Extract the unique keys from a JSON or JSONB column to understand its structure. "
        "Use this when you need to query a JSON field but don't know what keys it contains. "
        "This helps you write correct JSON path expressions like data->>'fieldName'."
    ),
    category=ToolCategory.SCHEMA,
)
async def get_json_keys(
    table: Annotated[str, Field(description='The table name (e.g., "users" or "schema"."table")')],
    column: Annotated[str, Field(description="The JSON/JSONB column name to inspect")],
    nested_path: Annotated[
        str | None,
        Field(description="Optional nested path to explore (e.g., \"data\" for column->'data')"),
    ] = None,
    sample_values: Annotated[
        bool, Field(description="Whether to include sample values for each key. Defaults to false.")
    ] = False,
    ctx: ToolContext | None = None,
) -> JsonKeysResult:
    limits = ctx.limits
    table_ref = quote_table_reference(table)
    json_expr = quote_identifier(column)
    if nested_path:
        json_expr = f"{json_expr}->'{escape_literal(nested_path)}'"

    keys_query = (
        f"SELECT DISTINCT jsonb_object_keys({json_expr}::jsonb) AS key\n"
        f"FROM {table_ref}\n"
        f"WHERE {json_expr} IS NOT NULL\n"
        f"LIMIT {limits.json_key_limit}"
    )

    try:
        async with create_connector(ctx.connection_string, ctx.database) as connector:
            keys_result = await connector.execute(keys_query)
            keys = [str(row["key"]) for row in keys_result.rows]

            samples: dict[str, list[Any]] = {}
            if sample_values:
                for key in keys[: limits.json_sample_keys]:
                    key_expr = f"{json_expr}->>'{escape_literal(key)}'"
                    sample_result = await connector.execute(
                        f"SELECT DISTINCT {key_expr} AS value\n"
                        f"FROM {table_ref}\n"
                        f"WHERE {key_expr} IS NOT NULL\n"
                        f"LIMIT {limits.json_samples_per_key}"
                    )
                    samples[key] = [row["value"] for row in sample_result.rows]
    except ConnectorError as e:
        logger.info(f"JSON key discovery failed for {table}.{column}: {e.message}")
        return JsonKeysResult(
            table=table,
            column=column,
            nested_path=nested_path,
            error=e.message or "Failed to get JSON keys",
            suggestion="Check that the table and column names are correct.",
        )

    ctx.log_action("json_keys_discovered", {"table": table, "column": column, "keys": len(keys)})
    if keys:
        hint = f"Found {len(keys)} unique keys. Use these in your query like: {json_expr}->>'{keys[0]}'"
    else:
        hint = NO_KEYS_HINT
    return JsonKeysResult(
        table=table,
        column=column,
        nested_path=nested_path,
        keys=keys,
        key_count=len(keys),
        sample_values=samples if sample_values else None,
        hint=hint,
    )
