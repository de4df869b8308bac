"""Presentation tools: the terminal editor update and chart shaping.

Neither tool performs I/O. ``update_query_ui`` is the run's finish line;
the agent loop stops stepping once it has been called.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import Field

from querypilot.models.tools import (
    ChartColumn,
    ChartConfig,
    ChartType,
    GenerateChartResult,
    ToolName,
    UpdateQueryUIResult,
)
from querypilot.tools.base import ToolCategory, tool
from querypilot.utils.charts import detect_chart_type, suggest_x_axis, suggest_y_axes, to_number


@tool(
    name=ToolName.UPDATE_QUERY_UI,
    description=(
        "Update the query in the UI for the user to review and run. Call this when you have "
        "a final query that meets the user's goal, with a clear explanation of what it does. "
        "THIS IS THE FINAL STEP - call it once, when you have a working query.\n\n"
        "REQUIRED: Provide a brief summary of key findings from your analysis."
    ),
    category=ToolCategory.PRESENTATION,
)
def update_query_ui(
    sql: Annotated[str, Field(description="The final SQL query to display to the user")],
    explanation: Annotated[
        str, Field(description="What this query does and how it addresses the user's goal")
    ],
    summary: Annotated[
        str, Field(description="Brief summary of findings from the analysis (2-3 sentences)")
    ],
    changes: Annotated[
        list[str] | None, Field(description="Changes made from the previous query, if any")
    ] = None,
    confidence: Annotated[
        Literal["high", "medium", "low"] | None,
        Field(description="Your confidence that this query meets the user's goal"),
    ] = None,
    suggestions: Annotated[
        list[str] | None, Field(description="Optional suggestions for refining the query further")
    ] = None,
) -> UpdateQueryUIResult:
    return UpdateQueryUIResult(
        sql=sql,
        explanation=explanation,
        summary=summary or "",
        changes=changes or [],
        confidence=confidence or "high",
        suggestions=suggestions or [],
    )


@tool(
    name=ToolName.GENERATE_CHART,
    description=(
        "Generate a chart visualization for query results. Use it after executing a query "
        "whose results benefit from a visual: aggregates with GROUP BY, time series, or "
        "comparisons between categories. Do NOT use it for single rows, raw unaggregated "
        "data, or text-only results.\n\n"
        "REQUIRED: Always provide a title and description."
    ),
    category=ToolCategory.PRESENTATION,
)
def generate_chart(
    data: Annotated[list[dict[str, Any]], Field(description="The query result rows to visualize")],
    columns: Annotated[list[ChartColumn], Field(description="Column metadata from the query result")],
    title: Annotated[str, Field(description='Short title for the chart (e.g., "Users by Country")')],
    description: Annotated[
        str, Field(description="What the visualization shows and key insights (1-2 sentences)")
    ],
    chart_type: Annotated[
        ChartType | None, Field(description="Override automatic chart type detection")
    ] = None,
    x_axis: Annotated[str | None, Field(description="Override X-axis column selection")] = None,
    y_axes: Annotated[
        list[str] | None, Field(description="Override Y-axis columns selection")
    ] = None,
    stacked: Annotated[
        bool, Field(description="Whether to stack the chart (for column/area charts)")
    ] = False,
) -> GenerateChartResult:
    if not data:
        return GenerateChartResult(
            success=False,
            error="No data provided for chart generation",
            title=title,
            description=description,
        )

    resolved_type = chart_type or detect_chart_type(columns, len(data))
    resolved_x = x_axis or suggest_x_axis(columns)
    resolved_y = y_axes or suggest_y_axes(columns, resolved_x)

    if not resolved_x or not resolved_y:
        return GenerateChartResult(
            success=False,
            error=(
                "Cannot determine chart axes. Need at least one category column "
                "and one numeric column."
            ),
            hint=(
                "Ensure your query returns at least one text/date column for the X-axis "
                "and one numeric column for values."
            ),
            title=title,
            description=description,
        )

    chart_data = [
        {resolved_x: row.get(resolved_x), **{key: to_number(row.get(key)) for key in resolved_y}}
        for row in data
    ]
    return GenerateChartResult(
        success=True,
        chart_config=ChartConfig(
            type=resolved_type,
            x_axis=resolved_x,
            y_axes=resolved_y,
            stacked=stacked,
            title=title,
        ),
        chart_data=chart_data,
        x_axis_key=resolved_x,
        y_axis_keys=resolved_y,
        data_point_count=len(data),
        message=f"Generated {resolved_type} chart with {len(data)} data points",
        title=title,
        description=description,
    )
