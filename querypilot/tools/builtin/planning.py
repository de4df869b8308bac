"""The ``manage_todo`` planning tool.

The plan itself lives with the client; this tool only validates the request
and describes the transition for the client reducer to apply.
"""

from __future__ import annotations

import itertools
from typing import Annotated

from pydantic import Field

from querypilot.models.base import now_ms
from querypilot.models.tools import ManageTodoResult, TodoAction, TodoEntry, ToolName
from querypilot.tools.base import ToolCategory, tool

_ITEM_MESSAGES = {
    "set_current": "Set current item to {}",
    "complete": "Marked {} as completed",
    "skip": "Skipped {}",
}

# Ids stay unique when several items are added within one millisecond
_added_ids = itertools.count(1)


@tool(
    name=ToolName.MANAGE_TODO,
    description=(
        "Manage a todo list to track progress on complex queries (3+ steps, unknown schema, "
        "several tables or aggregations).\n\n"
        "ACTIONS:\n"
        '- "create": Initialize the list with planned steps (call once at start)\n'
        '- "set_current": Mark which item you are working on\n'
        '- "complete": Mark an item as done\n'
        '- "skip": Skip an item that is no longer needed\n'
        '- "add": Add an item discovered during execution\n\n'
        'Keep items specific and actionable, e.g. "Find date column for time filtering" '
        'rather than "Understand the data".'
    ),
    category=ToolCategory.PLANNING,
)
def manage_todo(
    action: Annotated[TodoAction, Field(description="The action to perform")],
    items: Annotated[
        list[str] | None, Field(description='For "create": list of todo items to initialize')
    ] = None,
    item_id: Annotated[
        str | None,
        Field(description='For "set_current", "complete", "skip": the ID of the item to update'),
    ] = None,
    item_text: Annotated[
        str | None, Field(description='For "add": the text for the new todo item')
    ] = None,
) -> ManageTodoResult:
    if action == "create":
        if not items:
            return ManageTodoResult(
                success=False, action=action, error="Must provide items array for create action"
            )
        stamp = now_ms()
        return ManageTodoResult(
            success=True,
            action=action,
            items=[
                TodoEntry(
                    id=f"todo-{stamp}-{index}",
                    text=text,
                    status="in_progress" if index == 0 else "pending",
                )
                for index, text in enumerate(items)
            ],
            message=f"Created todo list with {len(items)} items",
        )

    if action == "add":
        if not item_text:
            return ManageTodoResult(
                success=False, action=action, error="Must provide item_text for add action"
            )
        return ManageTodoResult(
            success=True,
            action=action,
            item=TodoEntry(
                id=f"todo-{now_ms()}-new-{next(_added_ids)}",
                text=item_text,
                status="pending",
                added_during_execution=True,
            ),
            message=f"Added new todo: {item_text}",
        )

    if not item_id:
        return ManageTodoResult(
            success=False, action=action, error=f"Must provide item_id for {action} action"
        )
    return ManageTodoResult(
        success=True,
        action=action,
        item_id=item_id,
        message=_ITEM_MESSAGES[action].format(item_id),
    )
