"""
HTTP Routes
===========

- POST /api/send-message      {user_id, message} -> {reply, structured_response, optional_data}
- GET  /api/messages/{user_id} last 100 conversation turns
- GET  /api/tools              operation catalog metadata
- GET  /health                 liveness

Error mapping (registered in taskpilot.api.create_app):
    InvalidRequestError -> 400
    InvalidUserError    -> 401
    anything else       -> 500 with a generic message
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from taskpilot.agent.core import TaskAssistant

router = APIRouter()
health_router = APIRouter()


class SendMessageRequest(BaseModel):
    # Optional so that missing fields produce the assistant's 400, not a 422
    user_id: str | None = None
    message: str | None = None


class SendMessageResponse(BaseModel):
    reply: str
    structured_response: dict[str, Any] | None = None
    optional_data: dict[str, Any] | None = None


def _assistant(request: Request) -> TaskAssistant:
    return request.app.state.assistant


@router.post("/send-message", response_model=SendMessageResponse)
async def send_message(body: SendMessageRequest, request: Request) -> dict[str, Any]:
    """Handle one chat message."""
    result = await _assistant(request).send_message(body.user_id or "", body.message or "")
    return result.to_dict()


@router.get("/messages/{user_id}")
async def load_messages(user_id: str, request: Request) -> dict[str, Any]:
    """Conversation history for the chat window, oldest first."""
    turns = await _assistant(request).load_messages(user_id)
    return {
        "reply": "Loaded past messages.",
        "optional_data": {"messages": [turn.to_dict() for turn in turns]},
    }


@router.get("/tools")
async def list_tools(request: Request) -> dict[str, Any]:
    operations = _assistant(request).list_operations()
    return {"tools": operations, "count": len(operations)}


@health_router.get("/health")
async def health_check(request: Request) -> dict[str, str]:
    """Basic health check."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": request.app.state.environment,
    }
