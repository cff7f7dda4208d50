"""
Operation Arguments
===================

Typed argument structs, one per operation.

The JSON Schema in each operation's catalog entry is what the model sees
and what the executor validates first (enums, ranges, patterns). After
that check the sanitized argument bag is parsed into the matching model
below, so handlers work with attributes instead of dict lookups.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict

Priority = Literal["P0", "P1", "P2", "P3"]
Status = Literal["open", "in_progress", "done", "archived"]
TaskRef = int | str


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateTaskArgs(_Args):
    title: str
    due: str | None = None
    priority: Priority | None = None
    labels: list[str] | None = None
    duration_minutes: int | None = None
    notes: str | None = None
    source_text: str | None = None


class TaskChanges(_Args):
    title: str | None = None
    due: str | None = None
    priority: Priority | None = None
    labels: list[str] | None = None
    duration_minutes: int | None = None
    notes: str | None = None
    status: Status | None = None


class UpdateTaskArgs(_Args):
    task_id: TaskRef | None = None
    fuzzy_key: str | None = None
    set: TaskChanges


class DeleteTaskArgs(_Args):
    task_id: TaskRef | None = None
    fuzzy_key: str | None = None


class TaskFilter(_Args):
    priority_at_least: Priority | None = None
    due_before: str | None = None
    due_after: str | None = None
    labels_any: list[str] | None = None
    status: Status | None = None


class ListTasksArgs(_Args):
    filter: TaskFilter | None = None
    sort: str = "due_asc"
    working_hours_only: bool = False
    page: int = 1
    page_size: int = 50


class WorkingHours(_Args):
    start: str
    end: str


class ScheduleTasksArgs(_Args):
    task_ids: list[TaskRef]
    start_date: str | None = None
    end_date: str | None = None
    working_hours: WorkingHours | None = None
    buffer_minutes: int = 10
    preview_only: bool = True


class RescheduleTasksArgs(_Args):
    task_ids: list[TaskRef]
    conflicts: list[str] | None = None
    pin_meetings: bool = True
    preserve_dependencies: bool = True
    preview_only: bool = False


class DeadlineRiskArgs(_Args):
    task_ids: list[TaskRef] | None = None
    threshold_days: int = 7
    auto_suggest: bool = False


class ScoreWeights(_Args):
    impact: float | None = None
    urgency: float | None = None
    effort: float | None = None
    risk: float | None = None


class PriorityScoreArgs(_Args):
    task_id: TaskRef
    weights: ScoreWeights | None = None
    explain: bool = False


class BulkParams(_Args):
    assignee: str | None = None
    labels_add: list[str] | None = None
    labels_remove: list[str] | None = None
    reschedule_offset_days: int | None = None
    archive_reason: str | None = None


class BulkUpdateArgs(_Args):
    task_ids: list[TaskRef]
    operation: Literal["reassign", "relabel", "reschedule", "archive", "delete"]
    params: BulkParams | None = None
    preview_only: bool = False


class TaskBriefArgs(_Args):
    short_input: str
    generate_acceptance_criteria: bool = True
    generate_subtasks: bool = True
    save_as_draft: bool = False


class UndoArgs(_Args):
    action_id: str | None = None
    confirm: bool = True


class AuditLogArgs(_Args):
    task_ids: list[TaskRef] | None = None
    user_ids: list[str] | None = None
    action_types: list[str] | None = None
    date_from: str | None = None
    date_to: str | None = None
    export_format: Literal["json", "csv"] | None = None


class ClarificationArgs(_Args):
    missing_fields: list[str]
    context: str
    suggestions: list[str] | None = None
