"""
Response Schemas
================

The structured payload returned next to the natural-language reply, one
pydantic model per operation. Every model carries a mandatory `ai_summary`
and forbids unknown fields, so a response either matches its operation's
shape exactly or is reported as unvalidated.

RESPONSE_SCHEMAS maps operation name -> model. load_operations() checks it
covers exactly the operation catalog.
"""

from pydantic import BaseModel, ConfigDict


class _Response(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)


class _Item(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)


# ==============================================================================
# Task CRUD
# ==============================================================================

class TaskResponse(_Response):
    ai_summary: str
    task_id: int
    task_title: str
    task_status: str
    task_duration_minutes: int | None
    task_priority: str | None
    task_labels: list[str] | None
    task_due_date: str | None


class CreateTaskResponse(TaskResponse):
    pass


class UpdateTaskResponse(TaskResponse):
    changed_fields: list[str] = []


class DeleteTaskResponse(_Response):
    ai_summary: str
    task_id: int
    task_title: str


class TaskItem(_Item):
    id: int
    title: str
    status: str
    duration_minutes: int | None
    priority: str | None
    labels: list[str] | None
    due_date: str | None


class ListTasksResponse(_Response):
    ai_summary: str
    tasks: list[TaskItem]
    count: int
    total: int


# ==============================================================================
# Planning
# ==============================================================================

class CalendarBlock(_Item):
    task_id: int
    task_title: str
    start: str
    end: str
    duration_minutes: int


class ScheduleTasksResponse(_Response):
    ai_summary: str
    scheduled_count: int
    blocks: list[CalendarBlock]
    unscheduled: list[int]
    preview_only: bool


class RescheduleProposal(_Item):
    task_id: int
    task_title: str
    old_due_date: str | None
    new_due_date: str


class RescheduleTasksResponse(_Response):
    ai_summary: str
    rescheduled_count: int
    conflicts_resolved: int
    proposals: list[RescheduleProposal]
    errors: list[str] = []


class DeadlineRisk(_Item):
    task_id: int
    task_title: str
    due_date: str
    days_until_due: int
    at_risk: bool
    overdue: bool
    suggested_start: str | None = None


class DeadlineRisksResponse(_Response):
    ai_summary: str
    risks: list[DeadlineRisk]
    total_at_risk: int


class ScoreBreakdown(_Item):
    impact: float
    urgency: float
    effort: float
    risk: float


class PriorityScoreResponse(_Response):
    ai_summary: str
    task_id: str
    total_score: float
    breakdown: ScoreBreakdown
    explanation: str


class BulkUpdateResponse(_Response):
    ai_summary: str
    success_count: int
    failed_count: int
    errors: list[str]
    preview_only: bool


# ==============================================================================
# Assist
# ==============================================================================

class TaskBriefResponse(_Response):
    ai_summary: str
    summary: str
    acceptance_criteria: list[str] | None = None
    subtasks: list[str] | None = None
    draft_task_id: int | None = None


class UndoResponse(_Response):
    ai_summary: str
    undone: bool
    action_id: str | None
    action_type: str | None = None
    task_id: int | None = None


class AuditEntry(_Item):
    id: str
    action_type: str
    task_id: int | None
    created_at: str
    undone: bool


class AuditLogResponse(_Response):
    ai_summary: str
    entries: list[AuditEntry]
    total: int
    export: str | None = None


class ClarificationResponse(_Response):
    ai_summary: str
    needs_clarification: bool
    missing_fields: list[str]
    context: str
    suggestions: list[str] | None


RESPONSE_SCHEMAS: dict[str, type[BaseModel]] = {
    "create_task": CreateTaskResponse,
    "update_task": UpdateTaskResponse,
    "delete_task": DeleteTaskResponse,
    "list_tasks": ListTasksResponse,
    "schedule_tasks_to_calendar": ScheduleTasksResponse,
    "reschedule_tasks": RescheduleTasksResponse,
    "check_deadline_risks": DeadlineRisksResponse,
    "calculate_priority_score": PriorityScoreResponse,
    "bulk_update_tasks": BulkUpdateResponse,
    "generate_task_brief": TaskBriefResponse,
    "undo_last_action": UndoResponse,
    "get_audit_log": AuditLogResponse,
    "ask_clarification": ClarificationResponse,
}
