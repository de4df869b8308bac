"""
Agent Tool Models

The closed set of agent tool identifiers and the result records each tool
returns. Every result field is always present in the serialized record
(``None`` when not applicable) so the model sees one stable shape per tool
across success and failure branches.

The server-side tool registry and the client reducer both dispatch on
``ToolName``; adding a tool means extending this enum and both consumers.
"""

from enum import StrEnum
from typing import Any, Literal

from pydantic import Field

from querypilot.models.base import CamelModel


class ToolName(StrEnum):
    GET_TABLE_SCHEMA = "get_table_schema"
    GET_JSON_KEYS = "get_json_keys"
    EXECUTE_QUERY = "execute_query"
    VALIDATE_QUERY = "validate_query"
    UPDATE_QUERY_UI = "update_query_ui"
    GENERATE_CHART = "generate_chart"
    MANAGE_TODO = "manage_todo"

    @classmethod
    def parse(cls, value: str) -> "ToolName | None":
        """Return the matching member, or None for names outside the set."""
        try:
            return cls(value)
        except ValueError:
            return None


TERMINAL_TOOL = ToolName.UPDATE_QUERY_UI

ColumnKind = Literal["numeric", "date", "text", "unknown"]
ChartType = Literal["column", "line", "area", "pie"]
TodoStatus = Literal["pending", "in_progress", "completed", "skipped"]
TodoAction = Literal["create", "set_current", "complete", "skip", "add"]


class ToolFailure(CamelModel):
    """Generic failure record produced outside a tool's own handler."""

    error: str
    suggestion: str | None = None


class ColumnSummary(CamelModel):
    name: str
    type: str
    is_primary_key: bool = False


class TableSummary(CamelModel):
    name: str
    type: Literal["table", "view"]
    columns: list[ColumnSummary]


class TableSchemaResult(CamelModel):
    table_count: int
    tables: list[TableSummary]
    hint: str
    error: str | None = None


class JsonKeysResult(CamelModel):
    table: str
    column: str
    nested_path: str | None = None
    keys: list[str] | None = None
    key_count: int | None = None
    sample_values: dict[str, list[Any]] | None = None
    hint: str | None = None
    error: str | None = None
    suggestion: str | None = None


class ExecuteQueryResult(CamelModel):
    success: bool
    row_count: int | None = None
    execution_time: int | None = None
    columns: list[str] | None = None
    column_types: dict[str, ColumnKind] | None = None
    rows: list[dict[str, Any]] | None = None
    has_more_rows: bool | None = None
    warning: str | None = None
    empty_columns: list[str] | None = None
    title: str | None = None
    description: str | None = None
    error: str | None = None
    suggestion: str | None = None


class ValidateQueryResult(CamelModel):
    is_valid: bool
    message: str | None = None
    error: str | None = None
    suggestion: str | None = None


class UpdateQueryUIResult(CamelModel):
    action: Literal["updateUI"] = "updateUI"
    sql: str
    explanation: str
    summary: str
    changes: list[str] = Field(default_factory=list)
    confidence: Literal["high", "medium", "low"] = "high"
    suggestions: list[str] = Field(default_factory=list)
    message: str = "Query has been updated in the editor for user review."


class ChartColumn(CamelModel):
    name: str
    type: ColumnKind = "unknown"


class ChartConfig(CamelModel):
    type: ChartType
    x_axis: str
    y_axes: list[str]
    stacked: bool = False
    title: str | None = None


class GenerateChartResult(CamelModel):
    success: bool
    chart_config: ChartConfig | None = None
    chart_data: list[dict[str, Any]] | None = None
    x_axis_key: str | None = None
    y_axis_keys: list[str] | None = None
    data_point_count: int | None = None
    message: str | None = None
    error: str | None = None
    hint: str | None = None
    title: str | None = None
    description: str | None = None


class TodoEntry(CamelModel):
    id: str
    text: str
    status: TodoStatus = "pending"
    added_during_execution: bool | None = None


class ManageTodoResult(CamelModel):
    success: bool
    action: TodoAction
    items: list[TodoEntry] | None = None
    item_id: str | None = Field(default=None, alias="item_id")
    item: TodoEntry | None = None
    message: str | None = None
    error: str | None = None
