"""
Task Tools
==========

CRUD operations on the user's task list:

- create_task: add a task from natural language
- update_task: change fields of one task (by id or fuzzy title match)
- delete_task: remove one task
- list_tasks: filter, sort and paginate tasks

Every mutation is recorded as an action so undo_last_action and
get_audit_log can see it.

Field naming:
    The model speaks in `title` and `due`; the store columns are
    `content` and `due_date`. The mapping happens here and nowhere else.
"""

import difflib

from taskpilot.errors import InvalidArgumentsError, TaskNotFoundError
from taskpilot.store.base import TaskQuery, priorities_at_least
from taskpilot.tools import Operation, OperationContext, OperationName, ToolResult, tool_registry
from taskpilot.tools.args import (
    CreateTaskArgs,
    DeleteTaskArgs,
    ListTasksArgs,
    TaskChanges,
    UpdateTaskArgs,
)
from taskpilot.utils.dates import is_date_only, parse_datetime, parse_hhmm, within_hours
from taskpilot.utils.logger import Logger

logger = Logger("TaskTools")

# Minimum title similarity for a fuzzy reference to count as a match
FUZZY_MATCH_CUTOFF = 0.6

SORT_COLUMNS = {"due": "due_date", "priority": "priority", "created": "created_at"}

_PRIORITY = {"type": ["string", "null"], "enum": ["P0", "P1", "P2", "P3", None]}
_STATUS = {"type": ["string", "null"], "enum": ["open", "in_progress", "done", "archived", None]}
_TASK_REF = {"type": ["integer", "string", "null"], "description": "Exact task ID when known"}
_DURATION = {"type": ["integer", "null"], "minimum": 5, "maximum": 1440}


def checked_date(value: str) -> str:
    """
    Return value unchanged if it is an ISO 8601 date or date-time.

    Raises:
        InvalidArgumentsError: Otherwise
    """
    try:
        parse_datetime(value)
    except ValueError:
        raise InvalidArgumentsError(f"Invalid ISO 8601 date: '{value}'") from None
    return value


def coerce_task_id(value: int | str) -> int:
    """
    Turn a model-supplied task reference into an integer id.

    Raises:
        InvalidArgumentsError: If the value is not numeric
    """
    if isinstance(value, int):
        return value
    text = str(value).strip().lstrip("#")
    if not text.isdigit():
        raise InvalidArgumentsError(f"Task id must be numeric, got '{value}'")
    return int(text)


def _match_title(tasks: list[dict], key: str) -> dict | None:
    needle = key.strip().lower()
    if not needle:
        return None

    for task in tasks:
        if task["content"].lower() == needle:
            return task

    containing = [t for t in tasks if needle in t["content"].lower()]
    if len(containing) == 1:
        return containing[0]

    if containing:
        candidates, cutoff = containing, 0.0
    else:
        candidates, cutoff = tasks, FUZZY_MATCH_CUTOFF

    titles = [t["content"].lower() for t in candidates]
    best = difflib.get_close_matches(needle, titles, n=1, cutoff=cutoff)
    if not best:
        return None
    return candidates[titles.index(best[0])]


async def resolve_task(ctx: OperationContext, task_id: int | str | None, fuzzy_key: str | None) -> dict:
    """
    Find the task an operation refers to.

    A numeric task_id wins; a non-numeric task_id is treated as a fuzzy
    reference. Fuzzy references match an exact title, then a unique
    substring, then the closest title.

    Raises:
        InvalidArgumentsError: If neither reference is given
        TaskNotFoundError: If nothing matches
    """
    if task_id is not None:
        try:
            return await ctx.store.get_task(ctx.user_id, coerce_task_id(task_id))
        except InvalidArgumentsError:
            fuzzy_key = fuzzy_key or str(task_id)

    if not fuzzy_key:
        raise InvalidArgumentsError("Either task_id or fuzzy_key is required")

    tasks = await ctx.store.list_tasks(ctx.user_id)
    match = _match_title(tasks, fuzzy_key)
    if match is None:
        raise TaskNotFoundError(f"matching '{fuzzy_key}'")

    logger.debug(f"Fuzzy reference '{fuzzy_key}' resolved to task {match['id']}")
    return match


def changes_to_columns(changes: TaskChanges) -> dict:
    """Map non-null model fields to store columns."""
    columns = {}
    if changes.title is not None:
        columns["content"] = changes.title
    if changes.due is not None:
        columns["due_date"] = checked_date(changes.due)
    for name in ("priority", "labels", "duration_minutes", "notes", "status"):
        value = getattr(changes, name)
        if value is not None:
            columns[name] = value
    return columns


def diff_rows(before: dict, after: dict, columns) -> dict:
    """{column: {before, after}} for every column whose value changed."""
    return {
        column: {"before": before.get(column), "after": after.get(column)}
        for column in columns
        if before.get(column) != after.get(column)
    }


# ==============================================================================
# Tool: Create Task
# ==============================================================================

async def _create_task(args: CreateTaskArgs, ctx: OperationContext) -> ToolResult:
    """Insert a new open task."""
    if not args.title.strip():
        return ToolResult(success=False, error="Task title is required")

    fields = {"content": args.title.strip(), "status": "open"}
    if args.due:
        fields["due_date"] = checked_date(args.due)
    if args.priority:
        fields["priority"] = args.priority
    if args.labels:
        fields["labels"] = args.labels
    if args.duration_minutes is not None:
        fields["duration_minutes"] = args.duration_minutes
    if args.notes:
        fields["notes"] = args.notes

    task = await ctx.store.insert_task(ctx.user_id, fields)
    await ctx.audit("create", task["id"], None, task)

    logger.info(f"Created task {task['id']} for {ctx.user_id}")
    return ToolResult(success=True, data={
        "task_id": task["id"],
        "task": task,
        "message": f'Task "{task["content"]}" created successfully',
    })


create_task_tool = Operation(
    name=OperationName.CREATE_TASK,
    description="Create a task from natural language. Use when the user describes a new todo.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "title": {"type": "string", "description": "Concise task title"},
            "due": {
                "type": ["string", "null"],
                "description": 'ISO8601 date or date-time (e.g., "2025-10-01" or "2025-10-01T10:00:00Z"); null if not provided',
            },
            "priority": {
                **_PRIORITY,
                "description": "P0 highest; default P2. Always suggest a priority level to the user if not provided.",
            },
            "labels": {
                "type": ["array", "null"],
                "items": {"type": "string"},
                "description": "Tags like 'work', 'personal'; null if not provided",
            },
            "duration_minutes": {
                **_DURATION,
                "description": "Estimated effort in minutes (5-1440). Ask the user for an estimate if not provided.",
            },
            "notes": {"type": ["string", "null"], "description": "Additional details"},
            "source_text": {"type": ["string", "null"], "description": "Original user input for audit"},
        },
        "required": ["title"],
    },
    args_model=CreateTaskArgs,
    execute=_create_task,
)


# ==============================================================================
# Tool: Update Task
# ==============================================================================

async def _update_task(args: UpdateTaskArgs, ctx: OperationContext) -> ToolResult:
    """Apply the non-null fields of `set` and report a before/after diff."""
    columns = changes_to_columns(args.set)
    if not columns:
        return ToolResult(success=False, error="No fields to update")

    before = await resolve_task(ctx, args.task_id, args.fuzzy_key)
    after = await ctx.store.update_task(ctx.user_id, before["id"], columns)
    changes = diff_rows(before, after, columns)
    await ctx.audit("update", after["id"], before, after)

    return ToolResult(success=True, data={
        "task_id": after["id"],
        "task": after,
        "changes": changes,
        "message": f'Task "{after["content"]}" updated successfully',
    })


update_task_tool = Operation(
    name=OperationName.UPDATE_TASK,
    description="Update a task by id or fuzzy match; perform atomic field updates and return a diff preview.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "task_id": _TASK_REF,
            "fuzzy_key": {"type": ["string", "null"], "description": "Natural language reference if ID unknown"},
            "set": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "title": {"type": ["string", "null"]},
                    "due": {
                        "type": ["string", "null"],
                        "description": 'ISO8601 date or date-time (e.g., "2025-10-01" or "2025-10-01T10:00:00Z")',
                    },
                    "priority": _PRIORITY,
                    "labels": {"type": ["array", "null"], "items": {"type": "string"}},
                    "duration_minutes": _DURATION,
                    "notes": {"type": ["string", "null"]},
                    "status": _STATUS,
                },
            },
        },
        "required": ["set"],
    },
    args_model=UpdateTaskArgs,
    execute=_update_task,
)


# ==============================================================================
# Tool: Delete Task
# ==============================================================================

async def _delete_task(args: DeleteTaskArgs, ctx: OperationContext) -> ToolResult:
    target = await resolve_task(ctx, args.task_id, args.fuzzy_key)
    removed = await ctx.store.delete_task(ctx.user_id, target["id"])
    await ctx.audit("delete", removed["id"], removed, None)

    return ToolResult(success=True, data={
        "task_id": removed["id"],
        "task": removed,
        "message": f'Task "{removed["content"]}" deleted',
    })


delete_task_tool = Operation(
    name=OperationName.DELETE_TASK,
    description="Delete a task by id or fuzzy match. Use when the user wants a task removed entirely.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "task_id": _TASK_REF,
            "fuzzy_key": {"type": ["string", "null"], "description": "Natural language reference if ID unknown"},
        },
        "required": [],
    },
    args_model=DeleteTaskArgs,
    execute=_delete_task,
)


# ==============================================================================
# Tool: List Tasks
# ==============================================================================

def _parse_sort(sort: str) -> tuple[str, bool]:
    field_name, _, direction = sort.rpartition("_")
    return SORT_COLUMNS[field_name], direction == "asc"


def _in_working_hours(task: dict, ctx: OperationContext) -> bool:
    due = task.get("due_date")
    # Date-only and undated tasks carry no time of day to exclude them on
    if not due or is_date_only(due):
        return True
    start = parse_hhmm(ctx.settings.working_hours_start)
    end = parse_hhmm(ctx.settings.working_hours_end)
    return within_hours(parse_datetime(due), start, end)


async def _list_tasks(args: ListTasksArgs, ctx: OperationContext) -> ToolResult:
    """List tasks with filters, sorting, working-hours filter and pagination."""
    order_by, ascending = _parse_sort(args.sort)
    query = TaskQuery(order_by=order_by, ascending=ascending)

    if args.filter:
        if args.filter.priority_at_least:
            query.priorities = priorities_at_least(args.filter.priority_at_least)
        if args.filter.due_before:
            query.due_before = checked_date(args.filter.due_before)
        if args.filter.due_after:
            query.due_after = checked_date(args.filter.due_after)
        if args.filter.labels_any:
            query.labels_any = args.filter.labels_any
        query.status = args.filter.status

    tasks = await ctx.store.list_tasks(ctx.user_id, query)

    if args.working_hours_only:
        tasks = [t for t in tasks if _in_working_hours(t, ctx)]

    total = len(tasks)
    start = (args.page - 1) * args.page_size
    page = tasks[start:start + args.page_size]

    return ToolResult(success=True, data={
        "tasks": page,
        "count": len(page),
        "total": total,
        "page": args.page,
        "page_size": args.page_size,
    })


list_tasks_tool = Operation(
    name=OperationName.LIST_TASKS,
    description="List tasks with filters and sorting; supports pagination and working-hours filter.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "filter": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "priority_at_least": _PRIORITY,
                    "due_before": {
                        "type": ["string", "null"],
                        "description": 'Date or date-time in ISO 8601 format (e.g., "2025-10-03" or "2025-10-03T23:59:59Z")',
                    },
                    "due_after": {
                        "type": ["string", "null"],
                        "description": 'Date or date-time in ISO 8601 format (e.g., "2025-10-03" or "2025-10-03T00:00:00Z")',
                    },
                    "labels_any": {"type": ["array", "null"], "items": {"type": "string"}},
                    "status": _STATUS,
                },
            },
            "sort": {
                "type": "string",
                "enum": ["due_asc", "due_desc", "priority_asc", "priority_desc", "created_asc", "created_desc"],
                "description": "Sort order",
            },
            "working_hours_only": {"type": "boolean", "description": "Filter tasks within working hours"},
            "page": {"type": "integer", "minimum": 1, "description": "Page number for pagination"},
            "page_size": {"type": "integer", "minimum": 1, "maximum": 100, "description": "Number of tasks per page"},
        },
        "required": [],
    },
    args_model=ListTasksArgs,
    execute=_list_tasks,
)


# ==============================================================================
# Register task tools
# ==============================================================================

def register_task_tools():
    """Register all task CRUD tools with the registry."""
    tool_registry.register(create_task_tool)
    tool_registry.register(update_task_tool)
    tool_registry.register(delete_task_tool)
    tool_registry.register(list_tasks_tool)
    logger.debug("Registered task tools")


# Auto-register on import
register_task_tools()
