"""
Table sampling for prompt context.

A handful of rows per table show the model real field values and, above
all, the shape of JSON columns, which the schema alone only lists as
``json``/``jsonb``. Values are truncated so one wide row cannot flood the
prompt.

Usage:
    samples = await fetch_sample_data(dsn, ['"sales"."orders"', "customers"])
    for sample in samples:
        print(sample.table, sample.json_field_samples)
"""

import json
import logging
from collections.abc import Sequence
from typing import Any

from querypilot.config import DatabaseSettings
from querypilot.connectors.base import ConnectorError
from querypilot.connectors.factory import create_connector
from querypilot.connectors.postgres import JSON_TYPE_IDS
from querypilot.models.schema import SchemaInfo, TableSample
from querypilot.utils.sql_guard import quote_table_reference

logger = logging.getLogger(__name__)

MAX_SAMPLED_TABLES = 10
MAX_SAMPLE_SIZE = 5
DEFAULT_SAMPLE_SIZE = 3
MAX_VALUE_LENGTH = 200
JSON_SAMPLES_PER_COLUMN = 2

_JSON_COLUMN_TYPES = {"json", "jsonb"}


def truncate_value(value: Any, max_length: int = MAX_VALUE_LENGTH) -> Any:
    """
    Shrink a value for display in a prompt.

    Strings are cut at ``max_length``; lists keep three items and objects
    five keys, with a marker saying how much was dropped. Nested values get
    half the budget of their parent.
    """
    if isinstance(value, str):
        return value[:max_length] + "..." if len(value) > max_length else value

    if isinstance(value, list):
        truncated = [truncate_value(item, max_length // 2) for item in value[:3]]
        if len(value) > 3:
            truncated.append(f"... ({len(value) - 3} more items)")
        return truncated

    if isinstance(value, dict):
        keys = list(value)
        truncated_obj = {key: truncate_value(value[key], max_length // 2) for key in keys[:5]}
        if len(keys) > 5:
            truncated_obj["..."] = f"({len(keys) - 5} more fields)"
        return truncated_obj

    return value


def json_table_references(schema: Sequence[SchemaInfo], limit: int = 5) -> list[str]:
    """References of the first ``limit`` tables that have a JSON column."""
    references: list[str] = []
    for table in schema:
        if len(references) >= limit:
            break
        if table.type != "table":
            continue
        if any(column.type.lower() in _JSON_COLUMN_TYPES for column in table.columns):
            references.append(table.qualified_name)
    return references


def _json_samples(rows: list[dict[str, Any]], column: str) -> list[Any]:
    samples: list[Any] = []
    seen: set[str] = set()
    for row in rows:
        value = row.get(column)
        if not value:
            continue
        truncated = truncate_value(value)
        key = json.dumps(truncated, sort_keys=True, default=str)
        if key in seen:
            continue
        seen.add(key)
        samples.append(truncated)
        if len(samples) >= JSON_SAMPLES_PER_COLUMN:
            break
    return samples


async def fetch_sample_data(
    connection_string: str,
    tables: Sequence[str],
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    settings: DatabaseSettings | None = None,
) -> list[TableSample]:
    """
    Sample up to ``sample_size`` rows from each table on one connection.

    At most ten tables are sampled and at most five rows each. A table that
    cannot be read is skipped.

    Raises:
        ConnectorError: If the connection cannot be opened
    """
    size = max(1, min(sample_size, MAX_SAMPLE_SIZE))
    samples: list[TableSample] = []

    async with create_connector(connection_string, settings) as connector:
        for table in list(tables)[:MAX_SAMPLED_TABLES]:
            reference = quote_table_reference(table)
            if not reference:
                continue
            try:
                result = await connector.execute(f"SELECT * FROM {reference} LIMIT {size}")
            except ConnectorError as e:
                logger.warning(f"Could not sample {table}: {e.message}")
                continue

            json_columns = [
                field.name for field in result.fields if field.data_type_id in JSON_TYPE_IDS
            ]
            json_field_samples = {
                column: values
                for column in json_columns
                if (values := _json_samples(result.rows, column))
            }
            samples.append(
                TableSample(
                    table=table,
                    columns=result.columns,
                    rows=[
                        {key: truncate_value(value) for key, value in row.items()}
                        for row in result.rows
                    ],
                    json_field_samples=json_field_samples or None,
                )
            )

    logger.debug(f"Sampled {len(samples)} of {len(tables)} tables")
    return samples


async def fetch_json_samples(
    connection_string: str,
    schema: Sequence[SchemaInfo],
    max_tables: int = 5,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    settings: DatabaseSettings | None = None,
) -> list[TableSample]:
    """Sample the tables of ``schema`` that carry JSON columns."""
    tables = json_table_references(schema, max_tables)
    if not tables:
        return []
    return await fetch_sample_data(connection_string, tables, sample_size, settings)
