"""
Chart Inference

Column classification by PostgreSQL type OID and the rules that pick a chart
type and axes for a result set.
"""

import math
from collections.abc import Sequence
from typing import Any

from querypilot.models.tools import ChartColumn, ChartType, ColumnKind

# int8, int2, int4, float4, float8, numeric
NUMERIC_TYPE_IDS = frozenset({20, 21, 23, 700, 701, 1700})
# date, timestamp, timestamptz
DATE_TYPE_IDS = frozenset({1082, 1114, 1184})
# text, varchar, bpchar, name
TEXT_TYPE_IDS = frozenset({25, 1043, 1042, 19})


def column_kind(data_type_id: int) -> ColumnKind:
    if data_type_id in NUMERIC_TYPE_IDS:
        return "numeric"
    if data_type_id in DATE_TYPE_IDS:
        return "date"
    if data_type_id in TEXT_TYPE_IDS:
        return "text"
    return "unknown"


def detect_chart_type(columns: Sequence[ChartColumn], row_count: int) -> ChartType:
    """Pick a chart type from column kinds.

    A date column with any numeric column is a line chart; a single text and a
    single numeric column over at most ten rows is a pie; otherwise column.
    """
    has_date = any(col.type == "date" for col in columns)
    numeric_count = sum(1 for col in columns if col.type == "numeric")
    text_count = sum(1 for col in columns if col.type == "text")

    if has_date and numeric_count >= 1:
        return "line"
    if text_count == 1 and numeric_count == 1 and row_count <= 10:
        return "pie"
    return "column"


def suggest_x_axis(columns: Sequence[ChartColumn]) -> str | None:
    """Prefer a date column, then a text column, then the first column."""
    for kind in ("date", "text"):
        for col in columns:
            if col.type == kind:
                return col.name
    return columns[0].name if columns else None


def suggest_y_axes(columns: Sequence[ChartColumn], x_axis: str | None) -> list[str]:
    return [col.name for col in columns if col.type == "numeric" and col.name != x_axis]


def to_number(value: Any) -> float | int:
    """Coerce a cell to a number for plotting; unparseable and non-finite values become 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        number = value if isinstance(value, float) else float(str(value))
    except (TypeError, ValueError):
        return 0
    return number if math.isfinite(number) else 0
