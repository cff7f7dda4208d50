"""
Structured Formatter
====================

Coerces an operation's raw output into the typed payload registered for
that operation in RESPONSE_SCHEMAS.

Two strategies (STRUCTURED_STRATEGY):

- map (default): a per-operation mapper renames fields
  (content -> task_title, due_date -> task_due_date, ...) and writes an
  `ai_summary` sentence; no model call is made.
- model: the model is asked for JSON constrained to the response schema,
  given the raw output as input.

Either way the candidate is validated against the pydantic model. When the
candidate does not validate, or no schema exists, the raw output is passed
through with validated=False and a warning is logged. In strict mode
(STRICT_STRUCTURED_OUTPUT=true) a StructuredOutputError is raised instead.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from taskpilot.errors import InferenceError, StructuredOutputError
from taskpilot.tools.responses import RESPONSE_SCHEMAS
from taskpilot.utils.logger import Logger

logger = Logger("Formatter")


@dataclass
class StructuredResponse:
    """
    The structured payload of one operation result.

    Attributes:
        operation: Operation name the payload belongs to
        data: Validated payload, or the raw output when validation failed
        validated: Whether data matches the operation's response schema
        error: Validation message when falling back
    """
    operation: str
    data: dict
    validated: bool = True
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "data": self.data,
            "validated": self.validated,
            "error": self.error,
        }


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _task_fields(task: dict) -> dict:
    return {
        "task_id": task["id"],
        "task_title": task["content"],
        "task_status": task.get("status") or "open",
        "task_duration_minutes": task.get("duration_minutes"),
        "task_priority": task.get("priority"),
        "task_labels": task.get("labels"),
        "task_due_date": task.get("due_date"),
    }


def _task_item(task: dict) -> dict:
    return {
        "id": task["id"],
        "title": task["content"],
        "status": task.get("status") or "open",
        "duration_minutes": task.get("duration_minutes"),
        "priority": task.get("priority"),
        "labels": task.get("labels"),
        "due_date": task.get("due_date"),
    }


# ==============================================================================
# Per-operation mappers
# ==============================================================================

def _map_create(raw: dict) -> dict:
    task = raw["task"]
    return {"ai_summary": f'Created task "{task["content"]}".', **_task_fields(task)}


def _map_update(raw: dict) -> dict:
    task = raw["task"]
    changed = list(raw.get("changes") or {})
    detail = f" ({', '.join(changed)} changed)" if changed else " (no changes)"
    return {
        "ai_summary": f'Updated task "{task["content"]}"{detail}.',
        **_task_fields(task),
        "changed_fields": changed,
    }


def _map_delete(raw: dict) -> dict:
    task = raw["task"]
    return {
        "ai_summary": f'Deleted task "{task["content"]}".',
        "task_id": task["id"],
        "task_title": task["content"],
    }


def _map_list(raw: dict) -> dict:
    count = raw["count"]
    return {
        "ai_summary": f"Found {count} task(s).",
        "tasks": [_task_item(t) for t in raw["tasks"]],
        "count": count,
        "total": raw.get("total", count),
    }


def _map_schedule(raw: dict) -> dict:
    summary = f"Scheduled {_plural(raw['scheduled_count'], 'task')} into calendar blocks."
    if raw["unscheduled"]:
        summary += f" {_plural(len(raw['unscheduled']), 'task')} did not fit."
    return {
        "ai_summary": summary,
        "scheduled_count": raw["scheduled_count"],
        "blocks": raw["blocks"],
        "unscheduled": raw["unscheduled"],
        "preview_only": raw["preview_only"],
    }


def _map_reschedule(raw: dict) -> dict:
    verb = "Proposed new due dates for" if raw.get("preview_only") else "Rescheduled"
    return {
        "ai_summary": f"{verb} {_plural(raw['rescheduled_count'], 'overdue task')}.",
        "rescheduled_count": raw["rescheduled_count"],
        "conflicts_resolved": raw["conflicts_resolved"],
        "proposals": raw["proposals"],
        "errors": raw.get("errors", []),
    }


def _map_risks(raw: dict) -> dict:
    overdue = sum(1 for r in raw["risks"] if r["overdue"])
    summary = f"{_plural(raw['total_at_risk'], 'task')} at risk"
    if overdue:
        summary += f", {overdue} overdue"
    return {"ai_summary": summary + ".", "risks": raw["risks"], "total_at_risk": raw["total_at_risk"]}


def _map_score(raw: dict) -> dict:
    return {
        "ai_summary": f"Task {raw['task_id']} has a priority score of {raw['total_score']}.",
        "task_id": str(raw["task_id"]),
        "total_score": float(raw["total_score"]),
        "breakdown": raw["breakdown"],
        "explanation": raw["explanation"],
    }


def _map_bulk(raw: dict) -> dict:
    summary = f"Updated {_plural(raw['success_count'], 'task')}"
    if raw["failed_count"]:
        summary += f", {raw['failed_count']} failed"
    return {
        "ai_summary": summary + ".",
        "success_count": raw["success_count"],
        "failed_count": raw["failed_count"],
        "errors": raw["errors"],
        "preview_only": raw["preview_only"],
    }


def _map_brief(raw: dict) -> dict:
    mapped = {"ai_summary": "Generated a task brief.", "summary": raw["summary"]}
    for key in ("acceptance_criteria", "subtasks", "draft_task_id"):
        if key in raw:
            mapped[key] = raw[key]
    if "draft_task_id" in raw:
        mapped["ai_summary"] = f"Generated a task brief and saved it as draft task {raw['draft_task_id']}."
    return mapped


def _map_undo(raw: dict) -> dict:
    return {
        "ai_summary": raw["message"],
        "undone": raw["undone"],
        "action_id": raw.get("action_id"),
        "action_type": raw.get("action_type"),
        "task_id": raw.get("task_id"),
    }


def _map_audit(raw: dict) -> dict:
    entries = [
        {k: e[k] for k in ("id", "action_type", "task_id", "created_at", "undone")}
        for e in raw["entries"]
    ]
    total = raw["total"]
    mapped = {
        "ai_summary": f"Found {total} audit {'entry' if total == 1 else 'entries'}.",
        "entries": entries,
        "total": raw["total"],
    }
    if "export" in raw:
        mapped["export"] = raw["export"]
    return mapped


def _map_clarification(raw: dict) -> dict:
    return {
        "ai_summary": f"Need more information: {', '.join(raw['missing_fields']) or 'details'}.",
        "needs_clarification": True,
        "missing_fields": raw["missing_fields"],
        "context": raw["context"],
        "suggestions": raw.get("suggestions"),
    }


MAPPERS: dict[str, Callable[[dict], dict]] = {
    "create_task": _map_create,
    "update_task": _map_update,
    "delete_task": _map_delete,
    "list_tasks": _map_list,
    "schedule_tasks_to_calendar": _map_schedule,
    "reschedule_tasks": _map_reschedule,
    "check_deadline_risks": _map_risks,
    "calculate_priority_score": _map_score,
    "bulk_update_tasks": _map_bulk,
    "generate_task_brief": _map_brief,
    "undo_last_action": _map_undo,
    "get_audit_log": _map_audit,
    "ask_clarification": _map_clarification,
}


class StructuredFormatter:
    """
    Turns raw operation output into a StructuredResponse.

    Example:
        formatter = StructuredFormatter(strategy="map")

        structured = await formatter.structure("list_tasks", result.data)
        if not structured.validated:
            ...  # raw passthrough
    """

    MODEL_PROMPT = (
        "Convert the operation result into a JSON object that matches the "
        "provided schema exactly. Write `ai_summary` as one short sentence "
        "describing the outcome for the user. Do not invent values."
    )

    def __init__(self, strategy: str = "map", strict: bool = False, inference=None):
        """
        Args:
            strategy: "map" or "model"
            strict: Raise instead of falling back when validation fails
            inference: Model client, required for the "model" strategy
        """
        self.strategy = strategy
        self.strict = strict
        self.inference = inference

    def _fallback(self, operation: str, raw: Any, reason: str) -> StructuredResponse:
        if self.strict:
            raise StructuredOutputError(f"{operation}: {reason}")

        logger.warning(f"Structured output for {operation} not validated: {reason}")
        data = dict(raw) if isinstance(raw, dict) else {"output": raw}
        return StructuredResponse(operation=operation, data=data, validated=False, error=reason)

    def _validate(self, operation: str, schema: type[BaseModel], candidate: dict, raw: Any) -> StructuredResponse:
        try:
            parsed = schema.model_validate(candidate)
        except ValidationError as e:
            return self._fallback(operation, raw, str(e))
        return StructuredResponse(operation=operation, data=parsed.model_dump(exclude_unset=True))

    def format(self, operation: str, raw: Any) -> StructuredResponse:
        """
        Map and validate without calling the model.

        Raises:
            StructuredOutputError: In strict mode, when the output does not validate
        """
        schema = RESPONSE_SCHEMAS.get(operation)
        mapper = MAPPERS.get(operation)
        if schema is None or mapper is None:
            return self._fallback(operation, raw, "no response schema registered")
        if not isinstance(raw, dict):
            return self._fallback(operation, raw, "operation output is not an object")

        try:
            candidate = mapper(raw)
        except (KeyError, TypeError) as e:
            return self._fallback(operation, raw, f"missing or malformed field {e}")

        return self._validate(operation, schema, candidate, raw)

    async def format_with_model(self, operation: str, raw: Any) -> StructuredResponse:
        """
        Ask the model for schema-constrained JSON, then validate it.

        Raises:
            StructuredOutputError: In strict mode, when the output does not validate
        """
        schema = RESPONSE_SCHEMAS.get(operation)
        if schema is None:
            return self._fallback(operation, raw, "no response schema registered")
        if self.inference is None:
            return self._fallback(operation, raw, "no model client for structured output")

        try:
            candidate = await self.inference.complete_json(
                [
                    {"role": "system", "content": self.MODEL_PROMPT},
                    {"role": "user", "content": json.dumps(raw, default=str)},
                ],
                schema_name=f"{operation}_response",
                schema=schema.model_json_schema(),
                temperature=0,
            )
        except InferenceError as e:
            return self._fallback(operation, raw, str(e))

        return self._validate(operation, schema, candidate, raw)

    async def structure(self, operation: str, raw: Any) -> StructuredResponse:
        """Format with the configured strategy."""
        if self.strategy == "model":
            return await self.format_with_model(operation, raw)
        return self.format(operation, raw)
