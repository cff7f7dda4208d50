"""
In-Memory Store
===============

A process-local implementation of all three store interfaces.

- Lives only in RAM (cleared on restart)
- Keeps at most `max_turns` conversation turns per user, trimming the oldest
- Hands out copies of rows so callers can never mutate stored state

Used with STORE_BACKEND=memory for local development, and as the store
fake in the test suite.

Example:
    store = InMemoryStore()
    store.add_user("u-1", first_name="Ada")

    row = await store.insert_task("u-1", {"content": "Buy groceries"})
    await store.append_turn("u-1", "user", "Add a task to buy groceries")
    history = await store.recent_turns("u-1", limit=30)
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any

from taskpilot.errors import StoreError, TaskNotFoundError
from taskpilot.store.base import (
    TASK_FIELDS,
    ActionQuery,
    ConversationStore,
    ConversationTurn,
    IdentityProvider,
    TaskQuery,
    TaskStore,
    UserProfile,
    priority_rank,
)
from taskpilot.utils.dates import parse_datetime


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sort_key(row: dict, column: str):
    value = row.get(column)
    if column == "priority":
        return priority_rank(value)
    if column == "due_date":
        return parse_datetime(value)
    return value


class InMemoryStore(ConversationStore, TaskStore, IdentityProvider):
    """
    Dict-backed task, conversation and identity store.

    Attributes:
        max_turns: Maximum conversation turns kept per user
        accept_any_user: When True, every non-empty user id is treated as valid
    """

    def __init__(self, max_turns: int = 200, accept_any_user: bool = False):
        self.max_turns = max_turns
        self.accept_any_user = accept_any_user

        self._users: dict[str, UserProfile] = {}
        self._turns: dict[str, list[ConversationTurn]] = {}
        self._tasks: dict[int, dict] = {}
        self._actions: list[dict] = []
        self._next_id = 1

    # ==========================================================================
    # Identity
    # ==========================================================================

    def add_user(self, user_id: str, first_name: str | None = None, **profile: Any) -> UserProfile:
        """Register a user so get_profile() recognises it."""
        user = UserProfile(user_id=user_id, first_name=first_name, **profile)
        self._users[user_id] = user
        return user

    async def get_profile(self, user_id: str) -> UserProfile | None:
        if user_id in self._users:
            return self._users[user_id]
        if self.accept_any_user and user_id:
            return UserProfile(user_id=user_id)
        return None

    # ==========================================================================
    # Conversation
    # ==========================================================================

    async def append_turn(self, user_id: str, role: str, content: str) -> None:
        turns = self._turns.setdefault(user_id, [])
        turns.append(ConversationTurn(
            user_id=user_id,
            role=role,
            content=content,
            created_at=_timestamp(),
        ))

        if len(turns) > self.max_turns:
            self._turns[user_id] = turns[-self.max_turns:]

    async def recent_turns(self, user_id: str, limit: int) -> list[ConversationTurn]:
        if limit <= 0:
            return []
        return list(self._turns.get(user_id, [])[-limit:])

    # ==========================================================================
    # Tasks
    # ==========================================================================

    def _owned(self, user_id: str, task_id: int) -> dict:
        row = self._tasks.get(task_id)
        if row is None or row["user_id"] != user_id:
            raise TaskNotFoundError(task_id)
        return row

    async def insert_task(self, user_id: str, fields: dict[str, Any]) -> dict:
        unknown = set(fields) - set(TASK_FIELDS)
        if unknown:
            raise StoreError(f"Unknown task columns: {', '.join(sorted(unknown))}")
        if not fields.get("content"):
            raise StoreError("Task content is required")

        row = {
            "id": self._next_id,
            "user_id": user_id,
            "content": fields["content"],
            "due_date": fields.get("due_date"),
            "priority": fields.get("priority") or "P2",
            "status": fields.get("status") or "open",
            "labels": list(fields.get("labels") or []),
            "duration_minutes": fields.get("duration_minutes"),
            "notes": fields.get("notes"),
            "assignee": fields.get("assignee"),
            "created_at": _timestamp(),
        }
        self._tasks[row["id"]] = row
        self._next_id += 1
        return copy.deepcopy(row)

    async def get_task(self, user_id: str, task_id: int) -> dict:
        return copy.deepcopy(self._owned(user_id, task_id))

    async def update_task(self, user_id: str, task_id: int, fields: dict[str, Any]) -> dict:
        row = self._owned(user_id, task_id)
        unknown = set(fields) - set(TASK_FIELDS)
        if unknown:
            raise StoreError(f"Unknown task columns: {', '.join(sorted(unknown))}")
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    async def delete_task(self, user_id: str, task_id: int) -> dict:
        row = self._owned(user_id, task_id)
        del self._tasks[task_id]
        return copy.deepcopy(row)

    async def restore_task(self, user_id: str, row: dict) -> dict:
        task_id = row["id"]
        if task_id in self._tasks:
            raise StoreError(f"Task {task_id} already exists")
        restored = copy.deepcopy(row)
        restored["user_id"] = user_id
        self._tasks[task_id] = restored
        self._next_id = max(self._next_id, task_id + 1)
        return copy.deepcopy(restored)

    async def list_tasks(self, user_id: str, query: TaskQuery | None = None) -> list[dict]:
        query = query or TaskQuery()
        rows = [row for row in self._tasks.values() if row["user_id"] == user_id]

        if query.ids is not None:
            wanted = set(query.ids)
            rows = [r for r in rows if r["id"] in wanted]
        if query.priorities is not None:
            rows = [r for r in rows if r.get("priority") in query.priorities]
        if query.status:
            rows = [r for r in rows if r.get("status") == query.status]
        if query.exclude_statuses:
            rows = [r for r in rows if r.get("status") not in query.exclude_statuses]
        if query.labels_any:
            wanted_labels = set(query.labels_any)
            rows = [r for r in rows if wanted_labels & set(r.get("labels") or [])]
        if query.has_due_date or query.due_before or query.due_after:
            rows = [r for r in rows if r.get("due_date")]
        if query.due_before:
            limit = parse_datetime(query.due_before)
            rows = [r for r in rows if parse_datetime(r["due_date"]) <= limit]
        if query.due_after:
            limit = parse_datetime(query.due_after)
            rows = [r for r in rows if parse_datetime(r["due_date"]) >= limit]

        # Nulls last regardless of direction, like PostgREST's nullslast
        present = [r for r in rows if r.get(query.order_by) is not None]
        missing = [r for r in rows if r.get(query.order_by) is None]
        present.sort(
            key=lambda r: (_sort_key(r, query.order_by), r["id"]),
            reverse=not query.ascending,
        )
        return copy.deepcopy(present + missing)

    # ==========================================================================
    # Actions
    # ==========================================================================

    async def record_action(self, user_id: str, action: dict[str, Any]) -> dict:
        record = copy.deepcopy(action)
        record.setdefault("id", uuid.uuid4().hex)
        record.setdefault("created_at", _timestamp())
        record.setdefault("undone", False)
        record["user_id"] = user_id
        self._actions.append(record)
        return copy.deepcopy(record)

    async def list_actions(self, user_id: str, query: ActionQuery | None = None) -> list[dict]:
        query = query or ActionQuery()
        actions = [a for a in reversed(self._actions) if a["user_id"] == user_id]

        if not query.include_undone:
            actions = [a for a in actions if not a.get("undone")]
        if query.task_ids is not None:
            actions = [a for a in actions if a.get("task_id") in query.task_ids]
        if query.action_types is not None:
            actions = [a for a in actions if a.get("action_type") in query.action_types]
        if query.date_from:
            start = parse_datetime(query.date_from)
            actions = [a for a in actions if parse_datetime(a["created_at"]) >= start]
        if query.date_to:
            end = parse_datetime(query.date_to)
            actions = [a for a in actions if parse_datetime(a["created_at"]) <= end]
        if query.limit is not None:
            actions = actions[: query.limit]

        return copy.deepcopy(actions)

    async def mark_action_undone(self, user_id: str, action_id: str) -> None:
        for action in self._actions:
            if action["id"] == action_id and action["user_id"] == user_id:
                action["undone"] = True
                return
        raise StoreError(f"Action {action_id} not found")
