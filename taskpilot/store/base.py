"""
Store Interfaces
================

The assistant never talks to a database directly. It depends on three
collaborator interfaces, passed in through constructors:

- ConversationStore: append-only conversation log per user
- TaskStore: task rows and the action (audit) records used for undo
- IdentityProvider: resolves a user id to a profile, or None if unknown

Two implementations ship with TaskPilot:
- SupabaseClient (taskpilot.store.supabase): PostgREST + GoTrue over httpx
- InMemoryStore (taskpilot.store.memory): in-process, for development and tests

Task rows are plain dicts with these keys:
    id, user_id, content, due_date, priority, status, labels,
    duration_minutes, notes, assignee, created_at

Action records are plain dicts with these keys:
    id, user_id, action_type, task_id, before, after, created_at, undone
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

# Columns a caller may write; id, user_id and created_at are owned by the store
TASK_FIELDS = (
    "content",
    "due_date",
    "priority",
    "status",
    "labels",
    "duration_minutes",
    "notes",
    "assignee",
)

PRIORITIES = ("P0", "P1", "P2", "P3")
STATUSES = ("open", "in_progress", "done", "archived")
CLOSED_STATUSES = ("done", "archived")

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass
class ConversationTurn:
    """One message of the persisted conversation."""
    user_id: str
    role: str
    content: str
    created_at: str | None = None

    def to_message(self) -> dict:
        """Format for the chat completions API."""
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
        }


@dataclass
class UserProfile:
    """What the identity provider knows about a verified user."""
    user_id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str | None:
        return self.first_name or None


@dataclass
class TaskQuery:
    """
    Filter and ordering for TaskStore.list_tasks.

    Every attribute left at its default is not applied.

    Attributes:
        ids: Only these task ids
        priorities: Priority must be one of these
        due_before: due_date <= this ISO value
        due_after: due_date >= this ISO value
        labels_any: Labels overlap this set
        status: Exact status
        exclude_statuses: Status must not be one of these
        has_due_date: True to require a due date
        order_by: Column to sort by (due_date, priority, created_at)
        ascending: Sort direction; nulls always sort last
    """
    ids: list[int] | None = None
    priorities: list[str] | None = None
    due_before: str | None = None
    due_after: str | None = None
    labels_any: list[str] | None = None
    status: str | None = None
    exclude_statuses: list[str] = field(default_factory=list)
    has_due_date: bool = False
    order_by: str = "created_at"
    ascending: bool = True


@dataclass
class ActionQuery:
    """Filter for TaskStore.list_actions. Results are newest first."""
    task_ids: list[int] | None = None
    action_types: list[str] | None = None
    date_from: str | None = None
    date_to: str | None = None
    include_undone: bool = True
    limit: int | None = None


class ConversationStore(ABC):
    """Append-only conversation log keyed by user."""

    @abstractmethod
    async def append_turn(self, user_id: str, role: str, content: str) -> None:
        ...

    @abstractmethod
    async def recent_turns(self, user_id: str, limit: int) -> list[ConversationTurn]:
        """Return the last `limit` turns for the user, oldest first."""


class TaskStore(ABC):
    """Task rows and action records, always scoped to one user."""

    @abstractmethod
    async def insert_task(self, user_id: str, fields: dict[str, Any]) -> dict:
        """Insert a task and return the stored row."""

    @abstractmethod
    async def get_task(self, user_id: str, task_id: int) -> dict:
        """Return one row. Raises TaskNotFoundError."""

    @abstractmethod
    async def update_task(self, user_id: str, task_id: int, fields: dict[str, Any]) -> dict:
        """Apply fields and return the updated row. Raises TaskNotFoundError."""

    @abstractmethod
    async def delete_task(self, user_id: str, task_id: int) -> dict:
        """Delete and return the removed row. Raises TaskNotFoundError."""

    @abstractmethod
    async def restore_task(self, user_id: str, row: dict) -> dict:
        """Re-insert a previously deleted row, keeping its id."""

    @abstractmethod
    async def list_tasks(self, user_id: str, query: TaskQuery | None = None) -> list[dict]:
        ...

    @abstractmethod
    async def record_action(self, user_id: str, action: dict[str, Any]) -> dict:
        ...

    @abstractmethod
    async def list_actions(self, user_id: str, query: ActionQuery | None = None) -> list[dict]:
        ...

    @abstractmethod
    async def mark_action_undone(self, user_id: str, action_id: str) -> None:
        ...


class IdentityProvider(ABC):
    """Verifies user ids."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Return the profile, or None if the user does not exist."""


def priority_rank(priority: str | None) -> int:
    """Sort key for priorities: P0 first, missing priority last."""
    if priority in PRIORITIES:
        return PRIORITIES.index(priority)
    return len(PRIORITIES)


def priorities_at_least(priority: str) -> list[str]:
    """All priorities at least as urgent as the given one (P0 is the most urgent)."""
    return list(PRIORITIES[: PRIORITIES.index(priority) + 1])
