"""
Planning Tools
==============

Operations that reason over several tasks at once:

- schedule_tasks_to_calendar: pack tasks into working-hour time blocks
- reschedule_tasks: move overdue tasks onto new due dates
- check_deadline_risks: flag tasks that are due soon or overdue
- calculate_priority_score: weighted impact/urgency/effort/risk score
- bulk_update_tasks: apply one change to many tasks with partial success

Time:
    All "now"-dependent computations read the clock from the operation
    context exactly once, so results are deterministic for a fixed clock.

Deadline risk:
    days_until_due = ceil((due - now) / 1 day)
    at_risk  = 0 <= days_until_due <= threshold_days
    overdue  = days_until_due < 0
"""

from datetime import datetime, timedelta

from taskpilot.errors import InvalidArgumentsError, TaskPilotError
from taskpilot.store.base import CLOSED_STATUSES, TaskQuery, priority_rank
from taskpilot.tools import Operation, OperationContext, OperationName, ToolResult, tool_registry
from taskpilot.tools.args import (
    BulkParams,
    BulkUpdateArgs,
    DeadlineRiskArgs,
    PriorityScoreArgs,
    RescheduleTasksArgs,
    ScheduleTasksArgs,
)
from taskpilot.tools.task_tools import checked_date, coerce_task_id, diff_rows
from taskpilot.utils.dates import at_time, days_until, parse_datetime, parse_hhmm, shift_due
from taskpilot.utils.logger import Logger

logger = Logger("PlanningTools")

DEFAULT_BLOCK_MINUTES = 30
DEFAULT_SCHEDULE_DAYS = 7

DEFAULT_WEIGHTS = {"impact": 0.3, "urgency": 0.3, "effort": 0.2, "risk": 0.2}
IMPACT_BY_PRIORITY = {"P0": 100.0, "P1": 75.0, "P2": 50.0, "P3": 25.0}
# Durations at or above this many minutes get the lowest effort score
EFFORT_CAP_MINUTES = 480

_ID_LIST = {"type": "array", "items": {"type": ["integer", "string"]}}
_HHMM = {"type": "string", "pattern": "^([01]\\d|2[0-3]):[0-5]\\d$"}


def _sortable(tasks: list[dict]) -> list[dict]:
    """Most urgent priority first, then earliest due date, undated last."""
    return sorted(tasks, key=lambda t: (
        priority_rank(t.get("priority")),
        t.get("due_date") is None,
        parse_datetime(t["due_date"]).timestamp() if t.get("due_date") else 0.0,
        t["id"],
    ))


async def _fetch(ctx: OperationContext, raw_ids: list) -> tuple[list[dict], list[int]]:
    """Fetch the referenced tasks; also return ids that do not exist."""
    ids = [coerce_task_id(raw) for raw in raw_ids]
    tasks = await ctx.store.list_tasks(ctx.user_id, TaskQuery(ids=ids))
    found = {t["id"] for t in tasks}
    return tasks, [i for i in ids if i not in found]


# ==============================================================================
# Tool: Schedule Tasks To Calendar
# ==============================================================================

def _window_start(cursor: datetime, day_start, day_end) -> datetime:
    """Move cursor to the next moment inside working hours."""
    opens = at_time(cursor.date(), day_start)
    closes = at_time(cursor.date(), day_end)
    if cursor < opens:
        return opens
    if cursor >= closes:
        return at_time(cursor.date() + timedelta(days=1), day_start)
    return cursor


async def _schedule_tasks(args: ScheduleTasksArgs, ctx: OperationContext) -> ToolResult:
    """
    Propose consecutive calendar blocks for the given tasks.

    Blocks never cross the end of the working day; a task that does not
    fit in the remainder of a day starts the next morning.
    """
    now = ctx.now()
    start = parse_datetime(checked_date(args.start_date)) if args.start_date else now
    end = (
        parse_datetime(checked_date(args.end_date)) if args.end_date
        else start + timedelta(days=DEFAULT_SCHEDULE_DAYS)
    )
    if end <= start:
        return ToolResult(success=False, error="end_date must be after start_date")

    hours = args.working_hours
    day_start = parse_hhmm(hours.start if hours else ctx.settings.working_hours_start)
    day_end = parse_hhmm(hours.end if hours else ctx.settings.working_hours_end)
    if day_end <= day_start:
        return ToolResult(success=False, error="Working hours must end after they start")
    day_minutes = (day_end.hour * 60 + day_end.minute) - (day_start.hour * 60 + day_start.minute)

    tasks, missing = await _fetch(ctx, args.task_ids)
    candidates = _sortable([t for t in tasks if t.get("status") not in CLOSED_STATUSES])

    blocks = []
    unscheduled = list(missing)
    cursor = _window_start(start, day_start, day_end)

    for task in candidates:
        minutes = task.get("duration_minutes") or DEFAULT_BLOCK_MINUTES
        if minutes > day_minutes:
            unscheduled.append(task["id"])
            continue

        slot = _window_start(cursor, day_start, day_end)
        if slot + timedelta(minutes=minutes) > at_time(slot.date(), day_end):
            slot = at_time(slot.date() + timedelta(days=1), day_start)

        block_end = slot + timedelta(minutes=minutes)
        if block_end > end:
            unscheduled.append(task["id"])
            continue

        blocks.append({
            "task_id": task["id"],
            "task_title": task["content"],
            "start": slot.isoformat(),
            "end": block_end.isoformat(),
            "duration_minutes": minutes,
        })
        cursor = block_end + timedelta(minutes=args.buffer_minutes)

    logger.info(f"Scheduled {len(blocks)} block(s), {len(unscheduled)} task(s) left over")
    return ToolResult(success=True, data={
        "scheduled_count": len(blocks),
        "blocks": blocks,
        "unscheduled": unscheduled,
        "preview_only": args.preview_only,
    })


schedule_tasks_tool = Operation(
    name=OperationName.SCHEDULE_TASKS_TO_CALENDAR,
    description="Convert tasks into calendar blocks within working hours, respecting deadlines.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "task_ids": {**_ID_LIST, "description": "Task IDs to schedule"},
            "start_date": {"type": "string", "description": "Start date-time for scheduling (ISO 8601)"},
            "end_date": {"type": "string", "description": "End date-time for scheduling (ISO 8601)"},
            "working_hours": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "start": {**_HHMM, "description": "Start time HH:MM"},
                    "end": {**_HHMM, "description": "End time HH:MM"},
                },
                "required": ["start", "end"],
            },
            "buffer_minutes": {"type": "integer", "minimum": 0, "maximum": 120, "description": "Buffer between blocks"},
            "preview_only": {"type": "boolean", "description": "Generate preview without committing"},
        },
        "required": ["task_ids"],
    },
    args_model=ScheduleTasksArgs,
    execute=_schedule_tasks,
)


# ==============================================================================
# Tool: Reschedule Tasks
# ==============================================================================

async def _reschedule_tasks(args: RescheduleTasksArgs, ctx: OperationContext) -> ToolResult:
    """Give every overdue open task a new due date, one per day from today."""
    now = ctx.now()
    tasks, missing = await _fetch(ctx, args.task_ids)

    conflicts = _sortable([
        t for t in tasks
        if t.get("due_date")
        and t.get("status") not in CLOSED_STATUSES
        and days_until(parse_datetime(t["due_date"]), now) < 0
    ])

    proposals = []
    for offset, task in enumerate(conflicts):
        new_due = (now.date() + timedelta(days=offset)).isoformat()
        proposals.append({
            "task_id": task["id"],
            "task_title": task["content"],
            "old_due_date": task["due_date"],
            "new_due_date": new_due,
        })

    # Each task is written on its own; a failed write is reported and the rest continue
    resolved = 0
    errors = []
    if not args.preview_only:
        for proposal, task in zip(proposals, conflicts):
            try:
                after = await ctx.store.update_task(ctx.user_id, task["id"], {"due_date": proposal["new_due_date"]})
            except TaskPilotError as e:
                errors.append(f"Task {task['id']}: {e}")
                continue
            await ctx.audit("update", task["id"], task, after)
            resolved += 1

    return ToolResult(success=True, data={
        "rescheduled_count": len(proposals),
        "conflicts_resolved": resolved,
        "proposals": proposals,
        "errors": errors,
        "missing": missing,
        "pin_meetings": args.pin_meetings,
        "preserve_dependencies": args.preserve_dependencies,
        "preview_only": args.preview_only,
    })


reschedule_tasks_tool = Operation(
    name=OperationName.RESCHEDULE_TASKS,
    description=(
        "Detect overdue tasks and propose a revised schedule; "
        "use preview_only to request confirmation before applying."
    ),
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "task_ids": {**_ID_LIST, "description": "Tasks to reschedule"},
            "conflicts": {"type": "array", "items": {"type": "string"}, "description": "Conflict IDs to resolve"},
            "pin_meetings": {"type": "boolean", "description": "Do not move meetings"},
            "preserve_dependencies": {"type": "boolean", "description": "Respect task dependencies"},
            "preview_only": {"type": "boolean", "description": "Generate preview without committing"},
        },
        "required": ["task_ids"],
    },
    args_model=RescheduleTasksArgs,
    execute=_reschedule_tasks,
)


# ==============================================================================
# Tool: Check Deadline Risks
# ==============================================================================

def assess_deadline(task: dict, now: datetime, threshold_days: int) -> dict:
    """
    Risk assessment for one task with a due date.

    Pure function of (task, now, threshold_days).
    """
    due = parse_datetime(task["due_date"])
    remaining = days_until(due, now)
    return {
        "task_id": task["id"],
        "task_title": task["content"],
        "due_date": task["due_date"],
        "days_until_due": remaining,
        "at_risk": 0 <= remaining <= threshold_days,
        "overdue": remaining < 0,
    }


async def _check_deadline_risks(args: DeadlineRiskArgs, ctx: OperationContext) -> ToolResult:
    now = ctx.now()
    query = TaskQuery(has_due_date=True, exclude_statuses=list(CLOSED_STATUSES), order_by="due_date")
    if args.task_ids:
        query.ids = [coerce_task_id(raw) for raw in args.task_ids]

    tasks = await ctx.store.list_tasks(ctx.user_id, query)

    risks = []
    for task in tasks:
        risk = assess_deadline(task, now, args.threshold_days)
        if not (risk["at_risk"] or risk["overdue"]):
            continue
        if args.auto_suggest:
            minutes = task.get("duration_minutes") or DEFAULT_BLOCK_MINUTES
            suggested = max(now, parse_datetime(task["due_date"]) - timedelta(minutes=minutes))
            risk["suggested_start"] = suggested.isoformat()
        risks.append(risk)

    return ToolResult(success=True, data={"risks": risks, "total_at_risk": len(risks)})


check_deadline_risks_tool = Operation(
    name=OperationName.CHECK_DEADLINE_RISKS,
    description="Detect tasks due soon or overdue, suggest earlier time blocks, and report breach risk.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "task_ids": {
                "type": ["array", "null"],
                "items": {"type": ["integer", "string"]},
                "description": "Specific tasks to check; null for all",
            },
            "threshold_days": {"type": "integer", "minimum": 1, "maximum": 30, "description": "Risk threshold in days"},
            "auto_suggest": {"type": "boolean", "description": "Automatically suggest earlier blocks"},
        },
        "required": [],
    },
    args_model=DeadlineRiskArgs,
    execute=_check_deadline_risks,
)


# ==============================================================================
# Tool: Calculate Priority Score
# ==============================================================================

def resolve_weights(custom: dict | None) -> dict[str, float]:
    """
    Merge custom weights over the defaults.

    Raises:
        InvalidArgumentsError: If the merged weights do not sum to 1.0
    """
    weights = dict(DEFAULT_WEIGHTS)
    for key, value in (custom or {}).items():
        if value is not None:
            weights[key] = float(value)

    total = sum(weights.values())
    if abs(total - 1.0) > 0.01:
        raise InvalidArgumentsError(f"Weights must sum to 1.0, got {total:.2f}")
    return weights


def score_factors(task: dict, now: datetime) -> dict[str, float]:
    """Impact, urgency, effort and risk factors on a 0-100 scale."""
    impact = IMPACT_BY_PRIORITY.get(task.get("priority"), 50.0)

    if task.get("due_date"):
        remaining = days_until(parse_datetime(task["due_date"]), now)
        urgency = 100.0 if remaining < 0 else max(0.0, 100.0 - 10.0 * remaining)
        risk = 100.0 if remaining < 0 else (70.0 if remaining <= 7 else 20.0)
    else:
        urgency = 25.0
        risk = 20.0

    duration = task.get("duration_minutes")
    if duration:
        effort = 100.0 - 100.0 * min(duration, EFFORT_CAP_MINUTES) / EFFORT_CAP_MINUTES
    else:
        effort = 50.0

    return {"impact": impact, "urgency": urgency, "effort": effort, "risk": risk}


async def _calculate_priority_score(args: PriorityScoreArgs, ctx: OperationContext) -> ToolResult:
    weights = resolve_weights(args.weights.model_dump() if args.weights else None)
    task = await ctx.store.get_task(ctx.user_id, coerce_task_id(args.task_id))

    factors = score_factors(task, ctx.now())
    breakdown = {name: round(factors[name] * weights[name], 2) for name in factors}
    total = round(sum(breakdown.values()), 2)

    explanation = f'Task "{task["content"]}" scored {total} (priority {task.get("priority") or "unset"})'
    if args.explain:
        parts = ", ".join(f"{name} {factors[name]:.0f} x {weights[name]:.2f}" for name in factors)
        explanation += f": {parts}"

    return ToolResult(success=True, data={
        "task_id": str(task["id"]),
        "total_score": total,
        "breakdown": breakdown,
        "factors": factors,
        "weights": weights,
        "explanation": explanation,
    })


calculate_priority_score_tool = Operation(
    name=OperationName.CALCULATE_PRIORITY_SCORE,
    description="Calculate priority score using impact, urgency, effort, risk; return score with explainability.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "task_id": {"type": ["integer", "string"], "description": "Task ID to score"},
            "weights": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "impact": {"type": "number", "minimum": 0, "maximum": 1},
                    "urgency": {"type": "number", "minimum": 0, "maximum": 1},
                    "effort": {"type": "number", "minimum": 0, "maximum": 1},
                    "risk": {"type": "number", "minimum": 0, "maximum": 1},
                },
                "description": "Custom weights; must sum to 1.0",
            },
            "explain": {"type": "boolean", "description": "Return explainability details"},
        },
        "required": ["task_id"],
    },
    args_model=PriorityScoreArgs,
    execute=_calculate_priority_score,
)


# ==============================================================================
# Tool: Bulk Update Tasks
# ==============================================================================

def bulk_changes(operation: str, task: dict, params: BulkParams) -> dict:
    """
    Column changes one bulk operation makes to one task.

    Raises:
        InvalidArgumentsError: If the operation's parameters are missing or
            do not apply to this task
    """
    if operation == "reassign":
        if not params.assignee:
            raise InvalidArgumentsError("assignee is required for reassign")
        return {"assignee": params.assignee}

    if operation == "relabel":
        if not params.labels_add and not params.labels_remove:
            raise InvalidArgumentsError("labels_add or labels_remove is required for relabel")
        labels = [l for l in task.get("labels") or [] if l not in (params.labels_remove or [])]
        for label in params.labels_add or []:
            if label not in labels:
                labels.append(label)
        return {"labels": labels}

    if operation == "reschedule":
        if params.reschedule_offset_days is None:
            raise InvalidArgumentsError("reschedule_offset_days is required for reschedule")
        if not task.get("due_date"):
            raise InvalidArgumentsError("task has no due date to shift")
        return {"due_date": shift_due(task["due_date"], params.reschedule_offset_days)}

    if operation == "archive":
        changes = {"status": "archived"}
        if params.archive_reason:
            notes = task.get("notes")
            reason = f"Archived: {params.archive_reason}"
            changes["notes"] = f"{notes}\n{reason}" if notes else reason
        return changes

    # delete carries no column changes
    return {}


async def _bulk_update_tasks(args: BulkUpdateArgs, ctx: OperationContext) -> ToolResult:
    """
    Apply one operation to every target, continuing past failures.

    Each target is its own unit: a failing target is counted and reported
    and the remaining targets are still processed.
    """
    if not args.task_ids:
        return ToolResult(success=False, error="No task IDs provided")

    params = args.params or BulkParams()
    success_count = 0
    errors = []

    for raw_id in args.task_ids:
        try:
            task_id = coerce_task_id(raw_id)
            before = await ctx.store.get_task(ctx.user_id, task_id)
            changes = bulk_changes(args.operation, before, params)

            if not args.preview_only:
                if args.operation == "delete":
                    await ctx.store.delete_task(ctx.user_id, task_id)
                    await ctx.audit("delete", task_id, before, None)
                else:
                    after = await ctx.store.update_task(ctx.user_id, task_id, changes)
                    await ctx.audit("update", task_id, before, after)
                    logger.debug(f"Bulk {args.operation} on task {task_id}", diff_rows(before, after, changes))

            success_count += 1
        except TaskPilotError as e:
            errors.append(f"Task {raw_id}: {e}")
        except Exception as e:
            logger.error(f"Bulk {args.operation} on task {raw_id} raised", e)
            errors.append(f"Task {raw_id}: {str(e) or type(e).__name__}")

    if errors:
        logger.warning(f"Bulk {args.operation}: {len(errors)} of {len(args.task_ids)} target(s) failed")

    return ToolResult(success=True, data={
        "operation": args.operation,
        "success_count": success_count,
        "failed_count": len(errors),
        "errors": errors,
        "preview_only": args.preview_only,
    })


bulk_update_tasks_tool = Operation(
    name=OperationName.BULK_UPDATE_TASKS,
    description=(
        "Apply bulk operations: reassign, relabel, reschedule, archive, delete; "
        "handles partial success and reports per-task errors."
    ),
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "task_ids": {**_ID_LIST, "description": "Tasks to update"},
            "operation": {
                "type": "string",
                "enum": ["reassign", "relabel", "reschedule", "archive", "delete"],
                "description": "Bulk operation type",
            },
            "params": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "assignee": {"type": ["string", "null"]},
                    "labels_add": {"type": ["array", "null"], "items": {"type": "string"}},
                    "labels_remove": {"type": ["array", "null"], "items": {"type": "string"}},
                    "reschedule_offset_days": {"type": ["integer", "null"]},
                    "archive_reason": {"type": ["string", "null"]},
                },
            },
            "preview_only": {"type": "boolean", "description": "Preview without committing"},
        },
        "required": ["task_ids", "operation"],
    },
    args_model=BulkUpdateArgs,
    execute=_bulk_update_tasks,
)


# ==============================================================================
# Register planning tools
# ==============================================================================

def register_planning_tools():
    """Register all planning tools with the registry."""
    tool_registry.register(schedule_tasks_tool)
    tool_registry.register(reschedule_tasks_tool)
    tool_registry.register(check_deadline_risks_tool)
    tool_registry.register(calculate_priority_score_tool)
    tool_registry.register(bulk_update_tasks_tool)
    logger.debug("Registered planning tools")


register_planning_tools()
