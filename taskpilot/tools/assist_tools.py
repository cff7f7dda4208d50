"""
Assist Tools
============

Operations that help the user rather than edit a single task directly:

- generate_task_brief: expand a short input into summary, criteria and subtasks
- undo_last_action: revert the most recent change inside the undo window
- get_audit_log: list (and optionally export) recorded actions
- ask_clarification: tell the user which fields are still missing
"""

import csv
import io
import json
from datetime import timedelta

from taskpilot.errors import InferenceError, InvalidArgumentsError
from taskpilot.store.base import ActionQuery, TASK_FIELDS
from taskpilot.tools import Operation, OperationContext, OperationName, ToolResult, tool_registry
from taskpilot.tools.args import AuditLogArgs, ClarificationArgs, TaskBriefArgs, UndoArgs
from taskpilot.tools.task_tools import checked_date, coerce_task_id
from taskpilot.utils.dates import parse_datetime
from taskpilot.utils.logger import Logger

logger = Logger("AssistTools")

UNDOABLE_ACTIONS = ["create", "update", "delete"]
AUDIT_CSV_COLUMNS = ["id", "created_at", "action_type", "task_id", "undone"]

BRIEF_PROMPT = (
    "Generate a detailed task brief with summary, acceptance criteria, and "
    "subtasks from the user input. Return as JSON."
)

BRIEF_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "summary": {"type": "string"},
        "acceptance_criteria": {"type": "array", "items": {"type": "string"}},
        "subtasks": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["summary", "acceptance_criteria", "subtasks"],
}


# ==============================================================================
# Tool: Generate Task Brief
# ==============================================================================

def _draft_notes(brief: dict) -> str:
    lines = [brief["summary"]]
    if brief.get("acceptance_criteria"):
        lines.append("")
        lines.append("Acceptance criteria:")
        lines.extend(f"- {item}" for item in brief["acceptance_criteria"])
    if brief.get("subtasks"):
        lines.append("")
        lines.append("Subtasks:")
        lines.extend(f"- {item}" for item in brief["subtasks"])
    return "\n".join(lines)


async def _generate_task_brief(args: TaskBriefArgs, ctx: OperationContext) -> ToolResult:
    """
    Ask the model for a structured brief.

    Lists the caller did not ask for are dropped from the output. With
    save_as_draft the brief is stored as a new open task labelled "draft".
    """
    if ctx.inference is None:
        raise InferenceError("No model client available for brief generation")

    generated = await ctx.inference.complete_json(
        [
            {"role": "system", "content": BRIEF_PROMPT},
            {"role": "user", "content": args.short_input},
        ],
        schema_name="task_brief",
        schema=BRIEF_SCHEMA,
        temperature=ctx.settings.composition_temperature,
    )

    brief = {"summary": str(generated.get("summary") or args.short_input)}
    if args.generate_acceptance_criteria:
        brief["acceptance_criteria"] = [str(c) for c in generated.get("acceptance_criteria") or []]
    if args.generate_subtasks:
        brief["subtasks"] = [str(s) for s in generated.get("subtasks") or []]

    if args.save_as_draft:
        task = await ctx.store.insert_task(ctx.user_id, {
            "content": args.short_input.strip(),
            "status": "open",
            "labels": ["draft"],
            "notes": _draft_notes(brief),
        })
        await ctx.audit("create", task["id"], None, task)
        brief["draft_task_id"] = task["id"]

    return ToolResult(success=True, data=brief)


generate_task_brief_tool = Operation(
    name=OperationName.GENERATE_TASK_BRIEF,
    description="Generate task summary, acceptance criteria, and subtasks from short input; save as editable draft.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "short_input": {"type": "string", "description": "Brief task description from user"},
            "generate_acceptance_criteria": {"type": "boolean", "description": "Include acceptance criteria"},
            "generate_subtasks": {"type": "boolean", "description": "Suggest subtasks"},
            "save_as_draft": {"type": "boolean", "description": "Save the brief as a draft task"},
        },
        "required": ["short_input"],
    },
    args_model=TaskBriefArgs,
    execute=_generate_task_brief,
)


# ==============================================================================
# Tool: Undo Last Action
# ==============================================================================

async def _find_undoable(args: UndoArgs, ctx: OperationContext) -> dict:
    """
    Pick the action to revert.

    Raises:
        InvalidArgumentsError: If the action is unknown, already undone or
            older than the undo window
    """
    cutoff = ctx.now() - timedelta(minutes=ctx.settings.undo_window_minutes)
    actions = await ctx.store.list_actions(ctx.user_id, ActionQuery(action_types=UNDOABLE_ACTIONS))

    if args.action_id:
        action = next((a for a in actions if a["id"] == args.action_id), None)
        if action is None:
            raise InvalidArgumentsError(f"Action {args.action_id} not found")
        if action.get("undone"):
            raise InvalidArgumentsError(f"Action {args.action_id} was already undone")
    else:
        action = next((a for a in actions if not a.get("undone")), None)
        if action is None:
            raise InvalidArgumentsError("Nothing to undo")

    if parse_datetime(action["created_at"]) < cutoff:
        raise InvalidArgumentsError(
            f"Action {action['id']} is older than {ctx.settings.undo_window_minutes} minutes "
            "and can no longer be undone"
        )
    return action


async def _revert(action: dict, ctx: OperationContext) -> dict | None:
    """Apply the inverse of one action; return the task row afterwards."""
    kind = action["action_type"]
    task_id = action["task_id"]

    if kind == "create":
        await ctx.store.delete_task(ctx.user_id, task_id)
        return None
    if kind == "update":
        previous = action.get("before") or {}
        fields = {column: previous.get(column) for column in TASK_FIELDS if column in previous}
        return await ctx.store.update_task(ctx.user_id, task_id, fields)
    return await ctx.store.restore_task(ctx.user_id, action["before"])


async def _undo_last_action(args: UndoArgs, ctx: OperationContext) -> ToolResult:
    action = await _find_undoable(args, ctx)
    summary = {
        "action_id": action["id"],
        "action_type": action["action_type"],
        "task_id": action["task_id"],
    }

    if not args.confirm:
        return ToolResult(success=True, data={
            **summary,
            "undone": False,
            "message": f"Would undo {action['action_type']} of task {action['task_id']}; confirm to proceed",
        })

    current = None
    if action["action_type"] != "delete":
        current = await ctx.store.get_task(ctx.user_id, action["task_id"])
    after = await _revert(action, ctx)
    await ctx.store.mark_action_undone(ctx.user_id, action["id"])
    await ctx.audit("undo", action["task_id"], current, after)

    logger.info(f"Undid {action['action_type']} of task {action['task_id']} for {ctx.user_id}")
    return ToolResult(success=True, data={
        **summary,
        "undone": True,
        "message": f"Undid {action['action_type']} of task {action['task_id']}",
    })


undo_last_action_tool = Operation(
    name=OperationName.UNDO_LAST_ACTION,
    description="Single-click undo for the last change within time window; supports all task operations.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "action_id": {"type": ["string", "null"], "description": "Specific action ID; null for last action"},
            "confirm": {"type": "boolean", "description": "Skip confirmation prompt"},
        },
        "required": [],
    },
    args_model=UndoArgs,
    execute=_undo_last_action,
)


# ==============================================================================
# Tool: Get Audit Log
# ==============================================================================

def _entry(action: dict) -> dict:
    return {
        "id": action["id"],
        "action_type": action["action_type"],
        "task_id": action.get("task_id"),
        "created_at": action["created_at"],
        "undone": bool(action.get("undone")),
        "before": action.get("before"),
        "after": action.get("after"),
    }


def to_csv(entries: list[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=AUDIT_CSV_COLUMNS, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    writer.writerows(entries)
    return buffer.getvalue()


async def _get_audit_log(args: AuditLogArgs, ctx: OperationContext) -> ToolResult:
    # Action records are per user; other users' ids never widen the query
    if args.user_ids and ctx.user_id not in args.user_ids:
        entries = []
    else:
        query = ActionQuery(
            task_ids=[coerce_task_id(t) for t in args.task_ids] if args.task_ids else None,
            action_types=args.action_types or None,
            date_from=checked_date(args.date_from) if args.date_from else None,
            date_to=checked_date(args.date_to) if args.date_to else None,
        )
        entries = [_entry(a) for a in await ctx.store.list_actions(ctx.user_id, query)]

    data = {"entries": entries, "total": len(entries)}
    if args.export_format == "csv":
        data["export"] = to_csv(entries)
    elif args.export_format == "json":
        data["export"] = json.dumps(entries, default=str)
    return ToolResult(success=True, data=data)


get_audit_log_tool = Operation(
    name=OperationName.GET_AUDIT_LOG,
    description="Retrieve audit log for tasks; supports filtering by user, date range, and action type.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "task_ids": {
                "type": ["array", "null"],
                "items": {"type": ["integer", "string"]},
                "description": "Filter by task IDs",
            },
            "user_ids": {"type": ["array", "null"], "items": {"type": "string"}, "description": "Filter by users"},
            "action_types": {
                "type": ["array", "null"],
                "items": {"type": "string"},
                "description": "Filter by action types (create, update, delete, undo)",
            },
            "date_from": {"type": ["string", "null"], "description": "ISO 8601 lower bound"},
            "date_to": {"type": ["string", "null"], "description": "ISO 8601 upper bound"},
            "export_format": {
                "type": ["string", "null"],
                "enum": ["json", "csv", None],
                "description": "Export format",
            },
        },
        "required": [],
    },
    args_model=AuditLogArgs,
    execute=_get_audit_log,
)


# ==============================================================================
# Tool: Ask Clarification
# ==============================================================================

async def _ask_clarification(args: ClarificationArgs, ctx: OperationContext) -> ToolResult:
    return ToolResult(success=True, data={
        "needs_clarification": True,
        "missing_fields": args.missing_fields,
        "context": args.context,
        "suggestions": args.suggestions,
    })


ask_clarification_tool = Operation(
    name=OperationName.ASK_CLARIFICATION,
    description="Ask user for missing information when required fields are not provided in the original input.",
    parameters={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "missing_fields": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of missing required fields",
            },
            "context": {"type": "string", "description": "Context for the clarification request"},
            "suggestions": {
                "type": ["array", "null"],
                "items": {"type": "string"},
                "description": "Suggested values if applicable",
            },
        },
        "required": ["missing_fields", "context"],
    },
    args_model=ClarificationArgs,
    execute=_ask_clarification,
)


# ==============================================================================
# Register assist tools
# ==============================================================================

def register_assist_tools():
    """Register all assist tools with the registry."""
    tool_registry.register(generate_task_brief_tool)
    tool_registry.register(undo_last_action_tool)
    tool_registry.register(get_audit_log_tool)
    tool_registry.register(ask_clarification_tool)
    logger.debug("Registered assist tools")


register_assist_tools()
