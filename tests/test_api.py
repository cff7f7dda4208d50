"""Tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient

from taskpilot.api import create_app
from tests.conftest import USER_ID, completion


@pytest.fixture
def api(make_assistant):
    def _make(*responses, raise_server_exceptions=True):
        assistant, _ = make_assistant(*responses)
        app = create_app(assistant=assistant, environment="test")
        return TestClient(app, raise_server_exceptions=raise_server_exceptions), assistant

    return _make


def test_send_message(api):
    client, _ = api(
        completion(tool_calls=[("create_task", {"title": "Buy groceries"})]),
        completion(content="Added it."),
    )

    with client:
        response = client.post("/api/send-message", json={"user_id": USER_ID, "message": "Add buy groceries"})

    assert response.status_code == 200
    body = response.json()
    assert body["reply"] == "Added it."
    assert body["structured_response"]["task_title"] == "Buy groceries"
    assert body["optional_data"]["tool_results"][0]["success"] is True


@pytest.mark.parametrize("payload", [{}, {"user_id": USER_ID}, {"user_id": USER_ID, "message": "  "}])
def test_missing_fields_are_400(api, payload):
    client, _ = api()
    with client:
        response = client.post("/api/send-message", json=payload)
    assert response.status_code == 400
    assert "error" in response.json()


def test_unknown_user_is_401(api):
    client, _ = api()
    with client:
        response = client.post("/api/send-message", json={"user_id": "stranger", "message": "hi"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid user"}


def test_unexpected_error_is_500(api, monkeypatch):
    client, assistant = api(raise_server_exceptions=False)

    async def _boom(user_id, message):
        raise RuntimeError("secret stack detail")

    monkeypatch.setattr(assistant, "send_message", _boom)
    with client:
        response = client.post("/api/send-message", json={"user_id": USER_ID, "message": "hi"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_load_messages(api):
    client, assistant = api(completion(content="Hi!"))

    with client:
        client.post("/api/send-message", json={"user_id": USER_ID, "message": "Hello"})
        client.portal.call(assistant.drain)
        response = client.get(f"/api/messages/{USER_ID}")

    body = response.json()
    assert body["reply"] == "Loaded past messages."
    assert [m["content"] for m in body["optional_data"]["messages"]] == ["Hello", "Hi!"]


def test_list_tools(api):
    client, _ = api()
    with client:
        body = client.get("/api/tools").json()
    assert body["count"] == 13
    assert {"name", "description", "schema"} <= set(body["tools"][0])


def test_health(api):
    client, _ = api()
    with client:
        body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["environment"] == "test"
    assert body["timestamp"]
