"""Tests for the Supabase store over a mocked HTTP transport."""
import json

import httpx
import pytest

from taskpilot.errors import StoreError, TaskNotFoundError
from taskpilot.store.base import TaskQuery
from taskpilot.store.supabase import SupabaseClient

URL = "https://project.supabase.co"


class Recorder:
    """Transport handler that replays canned responses and records requests."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _client(recorder: Recorder, max_retries: int = 2) -> SupabaseClient:
    return SupabaseClient(
        URL,
        "service-key",
        max_retries=max_retries,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
    )


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    async def _sleep(seconds):
        return None

    monkeypatch.setattr("taskpilot.store.supabase.asyncio.sleep", _sleep)


class TestConversation:
    async def test_append_maps_assistant_role(self):
        recorder = Recorder(httpx.Response(201))
        client = _client(recorder)

        await client.append_turn("u-1", "assistant", "Hi!")

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/memories"
        assert json.loads(request.content) == [{"user_id": "u-1", "role": "ai", "content": "Hi!"}]
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Prefer"] == "return=minimal"

    async def test_recent_turns_oldest_first(self):
        recorder = Recorder(httpx.Response(200, json=[
            {"content": "Hi!", "role": "ai", "created_at": "2025-10-01T12:00:01Z"},
            {"content": "Hello", "role": "user", "created_at": "2025-10-01T12:00:00Z"},
        ]))
        client = _client(recorder)

        turns = await client.recent_turns("u-1", 30)

        assert [(t.role, t.content) for t in turns] == [("user", "Hello"), ("assistant", "Hi!")]
        params = recorder.requests[0].url.params
        assert params["order"] == "created_at.desc"
        assert params["limit"] == "30"
        assert params["user_id"] == "eq.u-1"


class TestIdentity:
    async def test_profile(self):
        recorder = Recorder(httpx.Response(200, json={
            "id": "u-1",
            "email": "ada@example.com",
            "user_metadata": {"first_name": "Ada"},
        }))

        profile = await _client(recorder).get_profile("u-1")

        assert profile.first_name == "Ada"
        assert recorder.requests[0].url.path == "/auth/v1/admin/users/u-1"

    async def test_unknown_user(self):
        recorder = Recorder(httpx.Response(404, json={"msg": "User not found"}))
        assert await _client(recorder).get_profile("nobody") is None

    async def test_user_id_cannot_escape_its_path_segment(self):
        recorder = Recorder(httpx.Response(200, json={"users": []}))

        profile = await _client(recorder).get_profile("../users")

        assert profile is None
        assert recorder.requests[0].url.raw_path == b"/auth/v1/admin/users/..%2Fusers"

    async def test_non_object_body_is_not_a_profile(self):
        recorder = Recorder(httpx.Response(200, json=[{"id": "u-1"}]))
        assert await _client(recorder).get_profile("u-1") is None

    async def test_mismatched_id_is_not_a_profile(self):
        recorder = Recorder(httpx.Response(200, json={"id": "someone-else"}))
        assert await _client(recorder).get_profile("u-1") is None

    async def test_invalid_body_is_a_store_error(self):
        recorder = Recorder(httpx.Response(200, content=b"<html>gateway</html>"))
        with pytest.raises(StoreError):
            await _client(recorder).get_profile("u-1")


class TestResilience:
    async def test_retries_transient_status(self):
        recorder = Recorder(
            httpx.Response(503),
            httpx.Response(200, json=[{"id": 1, "content": "x"}]),
        )

        row = await _client(recorder).get_task("u-1", 1)

        assert row["id"] == 1
        assert len(recorder.requests) == 2

    async def test_gives_up_after_max_retries(self):
        recorder = Recorder(httpx.Response(503), httpx.Response(503))

        with pytest.raises(StoreError):
            await _client(recorder, max_retries=1).get_task("u-1", 1)
        assert len(recorder.requests) == 2

    async def test_client_error_is_not_retried(self):
        recorder = Recorder(httpx.Response(400, json={"message": "bad filter"}))

        with pytest.raises(StoreError, match="bad filter"):
            await _client(recorder).list_tasks("u-1")
        assert len(recorder.requests) == 1

    async def test_invalid_json_body_is_a_store_error(self):
        recorder = Recorder(httpx.Response(200, content=b"<html>gateway</html>"))

        with pytest.raises(StoreError, match="invalid response body"):
            await _client(recorder).get_task("u-1", 1)

    async def test_transport_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=[])

        client = SupabaseClient(URL, "k", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        assert await client.list_tasks("u-1") == []
        assert len(calls) == 2


class TestTasks:
    async def test_list_filters(self):
        recorder = Recorder(httpx.Response(200, json=[]))

        await _client(recorder).list_tasks("u-1", TaskQuery(
            ids=[1, 2],
            labels_any=["work"],
            exclude_statuses=["done", "archived"],
            order_by="priority",
        ))

        params = recorder.requests[0].url.params
        assert params["id"] == "in.(1,2)"
        assert params["labels"] == 'ov.{"work"}'
        assert params["status"] == "not.in.(done,archived)"
        assert params["order"] == "priority.asc.nullslast,id.asc"

    async def test_empty_id_list_skips_request(self):
        recorder = Recorder()
        assert await _client(recorder).list_tasks("u-1", TaskQuery(ids=[])) == []
        assert recorder.requests == []

    async def test_missing_task(self):
        recorder = Recorder(httpx.Response(200, json=[]))
        with pytest.raises(TaskNotFoundError):
            await _client(recorder).update_task("u-1", 5, {"priority": "P0"})

    async def test_update_is_scoped_to_user(self):
        recorder = Recorder(httpx.Response(200, json=[{"id": 5, "priority": "P0"}]))

        await _client(recorder).update_task("u-1", 5, {"priority": "P0"})

        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert request.url.params["user_id"] == "eq.u-1"
        assert request.url.params["id"] == "eq.5"
