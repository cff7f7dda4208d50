"""
Supabase Store
==============

Talks to a Supabase project over its HTTP APIs:

- PostgREST (/rest/v1) for the `tasks`, `memories` and `task_actions` tables
- GoTrue admin (/auth/v1/admin/users/{id}) to verify user ids

Requests use the service role key, so every query is explicitly scoped with
`user_id=eq.<id>`; row level security is not relied on.

Resilience:
    Each request has a timeout (STORE_TIMEOUT_SECONDS). Transport errors and
    HTTP 429/5xx responses are retried with exponential backoff up to
    STORE_MAX_RETRIES times. Anything else raises StoreError immediately.

PostgREST filter cheat sheet (as used below):
    id=eq.5                 equality
    id=in.(1,2,3)           set membership
    due_date=lte.2025-10-03 range
    labels=ov.{work,home}   array overlap
    due_date=not.is.null    not null
    order=due_date.asc.nullslast
"""

import asyncio
from urllib.parse import quote
from typing import Any

import httpx

from taskpilot.errors import StoreError, TaskNotFoundError
from taskpilot.store.base import (
    ROLE_ASSISTANT,
    ROLE_USER,
    TASK_FIELDS,
    ActionQuery,
    ConversationStore,
    ConversationTurn,
    IdentityProvider,
    TaskQuery,
    TaskStore,
    UserProfile,
)
from taskpilot.utils.config import SupabaseConfig
from taskpilot.utils.logger import Logger

logger = Logger("Supabase")

# The memories table stores the assistant role as "ai"
_ROLE_TO_DB = {ROLE_USER: "user", ROLE_ASSISTANT: "ai"}
_ROLE_FROM_DB = {"user": ROLE_USER, "ai": ROLE_ASSISTANT}

_RETRY_STATUSES = {429, 500, 502, 503, 504}


def _in_list(values: list[Any]) -> str:
    return "in.(" + ",".join(str(v) for v in values) + ")"


def _pg_array(values: list[str]) -> str:
    quoted = ",".join('"' + v.replace('"', '\\"') + '"' for v in values)
    return "{" + quoted + "}"


def _decode(response: httpx.Response, source: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise StoreError(f"{source}: invalid response body") from e


class SupabaseClient(ConversationStore, TaskStore, IdentityProvider):
    """
    Async Supabase client implementing all three store interfaces.

    Example:
        client = SupabaseClient.from_config(config.supabase)
        profile = await client.get_profile(user_id)
        rows = await client.list_tasks(user_id, TaskQuery(status="open"))
        await client.close()
    """

    def __init__(
        self,
        url: str,
        service_role_key: str,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        http_client: httpx.AsyncClient | None = None
    ):
        """
        Args:
            url: Project URL, e.g. https://xyz.supabase.co
            service_role_key: Service role key (server-side only)
            timeout_seconds: Per-request timeout
            max_retries: Retries for transient failures
            http_client: Pre-built client (tests use httpx.MockTransport)
        """
        self.url = url.rstrip("/")
        self.max_retries = max_retries
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._headers = {
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_config(cls, config: SupabaseConfig) -> "SupabaseClient":
        if not config.url or not config.service_role_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        return cls(
            url=config.url,
            service_role_key=config.service_role_key,
            timeout_seconds=config.timeout_seconds,
            max_retries=config.max_retries,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ==========================================================================
    # HTTP plumbing
    # ==========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None
    ) -> httpx.Response:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer

        url = f"{self.url}{path}"
        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                backoff = 0.5 * (2 ** (attempt - 1))
                logger.warning(f"Retry {attempt}/{self.max_retries} for {method} {path} after {backoff}s")
                await asyncio.sleep(backoff)

            try:
                response = await self._client.request(
                    method, url, params=params, json=json, headers=headers
                )
            except httpx.TransportError as e:
                last_error = e
                continue

            if response.status_code in _RETRY_STATUSES:
                last_error = StoreError(f"{method} {path} returned {response.status_code}")
                continue

            return response

        raise StoreError(f"Store unreachable: {last_error}") from last_error

    async def _rest(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None
    ) -> list[dict]:
        response = await self._request(method, f"/rest/v1/{table}", params, json, prefer)

        if response.status_code >= 400:
            message = response.text
            try:
                message = response.json().get("message", message)
            except ValueError:
                pass
            logger.error(f"PostgREST error on {table}: {response.status_code}")
            raise StoreError(f"{table}: {message}")

        if not response.content:
            return []
        return _decode(response, table)

    # ==========================================================================
    # Identity
    # ==========================================================================

    async def get_profile(self, user_id: str) -> UserProfile | None:
        # Encoded as a single path segment so ids like "../users" cannot change the route
        response = await self._request("GET", f"/auth/v1/admin/users/{quote(user_id, safe='')}")

        if response.status_code in (400, 404):
            return None
        if response.status_code >= 400:
            raise StoreError(f"Identity lookup failed: {response.status_code}")

        user = _decode(response, "auth")
        if not isinstance(user, dict) or user.get("id") != user_id:
            return None
        metadata = user.get("user_metadata") or {}
        return UserProfile(
            user_id=user_id,
            first_name=metadata.get("first_name"),
            last_name=metadata.get("last_name"),
            email=user.get("email"),
        )

    # ==========================================================================
    # Conversation
    # ==========================================================================

    async def append_turn(self, user_id: str, role: str, content: str) -> None:
        await self._rest(
            "POST",
            "memories",
            json=[{"user_id": user_id, "role": _ROLE_TO_DB.get(role, role), "content": content}],
            prefer="return=minimal",
        )

    async def recent_turns(self, user_id: str, limit: int) -> list[ConversationTurn]:
        if limit <= 0:
            return []

        rows = await self._rest("GET", "memories", params=[
            ("select", "content,role,created_at"),
            ("user_id", f"eq.{user_id}"),
            ("order", "created_at.desc"),
            ("limit", str(limit)),
        ])

        # Fetched newest first so the limit keeps the latest turns
        return [
            ConversationTurn(
                user_id=user_id,
                role=_ROLE_FROM_DB.get(row["role"], ROLE_USER),
                content=row["content"],
                created_at=row.get("created_at"),
            )
            for row in reversed(rows)
        ]

    # ==========================================================================
    # Tasks
    # ==========================================================================

    def _scope(self, user_id: str, task_id: int | None = None) -> list[tuple[str, str]]:
        params = [("user_id", f"eq.{user_id}")]
        if task_id is not None:
            params.append(("id", f"eq.{task_id}"))
        return params

    async def insert_task(self, user_id: str, fields: dict[str, Any]) -> dict:
        payload = {k: v for k, v in fields.items() if k in TASK_FIELDS}
        payload["user_id"] = user_id
        rows = await self._rest("POST", "tasks", json=[payload], prefer="return=representation")
        if not rows:
            raise StoreError("Failed to add task: no row returned")
        return rows[0]

    async def get_task(self, user_id: str, task_id: int) -> dict:
        rows = await self._rest("GET", "tasks", params=[("select", "*")] + self._scope(user_id, task_id))
        if not rows:
            raise TaskNotFoundError(task_id)
        return rows[0]

    async def update_task(self, user_id: str, task_id: int, fields: dict[str, Any]) -> dict:
        payload = {k: v for k, v in fields.items() if k in TASK_FIELDS}
        rows = await self._rest(
            "PATCH", "tasks",
            params=self._scope(user_id, task_id),
            json=payload,
            prefer="return=representation",
        )
        if not rows:
            raise TaskNotFoundError(task_id)
        return rows[0]

    async def delete_task(self, user_id: str, task_id: int) -> dict:
        rows = await self._rest(
            "DELETE", "tasks",
            params=self._scope(user_id, task_id),
            prefer="return=representation",
        )
        if not rows:
            raise TaskNotFoundError(task_id)
        return rows[0]

    async def restore_task(self, user_id: str, row: dict) -> dict:
        payload = {k: row.get(k) for k in ("id", "created_at", *TASK_FIELDS) if k in row}
        payload["user_id"] = user_id
        rows = await self._rest("POST", "tasks", json=[payload], prefer="return=representation")
        if not rows:
            raise StoreError(f"Failed to restore task {row.get('id')}")
        return rows[0]

    async def list_tasks(self, user_id: str, query: TaskQuery | None = None) -> list[dict]:
        query = query or TaskQuery()
        params = [("select", "*")] + self._scope(user_id)

        if query.ids is not None:
            if not query.ids:
                return []
            params.append(("id", _in_list(query.ids)))
        if query.priorities is not None:
            params.append(("priority", _in_list(query.priorities)))
        if query.status:
            params.append(("status", f"eq.{query.status}"))
        if query.exclude_statuses:
            params.append(("status", "not." + _in_list(query.exclude_statuses)))
        if query.labels_any:
            params.append(("labels", f"ov.{_pg_array(query.labels_any)}"))
        if query.has_due_date:
            params.append(("due_date", "not.is.null"))
        if query.due_before:
            params.append(("due_date", f"lte.{query.due_before}"))
        if query.due_after:
            params.append(("due_date", f"gte.{query.due_after}"))

        direction = "asc" if query.ascending else "desc"
        params.append(("order", f"{query.order_by}.{direction}.nullslast,id.asc"))

        return await self._rest("GET", "tasks", params=params)

    # ==========================================================================
    # Actions
    # ==========================================================================

    async def record_action(self, user_id: str, action: dict[str, Any]) -> dict:
        payload = dict(action)
        payload["user_id"] = user_id
        rows = await self._rest("POST", "task_actions", json=[payload], prefer="return=representation")
        if not rows:
            raise StoreError("Failed to record action")
        return rows[0]

    async def list_actions(self, user_id: str, query: ActionQuery | None = None) -> list[dict]:
        query = query or ActionQuery()
        params = [("select", "*")] + self._scope(user_id)

        if not query.include_undone:
            params.append(("undone", "is.false"))
        if query.task_ids is not None:
            if not query.task_ids:
                return []
            params.append(("task_id", _in_list(query.task_ids)))
        if query.action_types is not None:
            if not query.action_types:
                return []
            params.append(("action_type", _in_list(query.action_types)))
        if query.date_from:
            params.append(("created_at", f"gte.{query.date_from}"))
        if query.date_to:
            params.append(("created_at", f"lte.{query.date_to}"))

        params.append(("order", "created_at.desc"))
        if query.limit is not None:
            params.append(("limit", str(query.limit)))

        return await self._rest("GET", "task_actions", params=params)

    async def mark_action_undone(self, user_id: str, action_id: str) -> None:
        rows = await self._rest(
            "PATCH", "task_actions",
            params=self._scope(user_id) + [("id", f"eq.{action_id}")],
            json={"undone": True},
            prefer="return=representation",
        )
        if not rows:
            raise StoreError(f"Action {action_id} not found")
