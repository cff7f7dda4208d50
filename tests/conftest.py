"""Pytest configuration and fixtures."""
import json
import time
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from openai.types.chat import ChatCompletion

from taskpilot.agent.core import TaskAssistant
from taskpilot.agent.llm import InferenceClient
from taskpilot.store.memory import InMemoryStore
from taskpilot.tools import OperationContext, load_operations
from taskpilot.utils.config import AssistantConfig

USER_ID = "user-1"
NOW = datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async tests run without markers."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"


def fixed_clock() -> datetime:
    return NOW


# ==============================================================================
# Scripted model
# ==============================================================================

def completion(content: str | None = None, tool_calls: list[tuple[str, dict | str]] | None = None) -> ChatCompletion:
    """
    Build a real ChatCompletion.

    tool_calls is a list of (name, arguments); arguments given as a str are
    sent verbatim, so tests can pass malformed JSON.
    """
    message: dict = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = [
            {
                "id": f"call_{i}",
                "type": "function",
                "function": {
                    "name": name,
                    "arguments": args if isinstance(args, str) else json.dumps(args),
                },
            }
            for i, (name, args) in enumerate(tool_calls)
        ]
    return ChatCompletion.model_validate({
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": "test-model",
        "choices": [{
            "index": 0,
            "finish_reason": "tool_calls" if tool_calls else "stop",
            "message": message,
        }],
    })


def scripted_openai(*responses) -> SimpleNamespace:
    """
    Stand-in for AsyncOpenAI whose chat.completions.create returns (or
    raises) the given items in order.
    """
    create = AsyncMock(side_effect=list(responses))
    return SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=create)),
        close=AsyncMock(),
    )


def sent_kwargs(client: SimpleNamespace, call: int = 0) -> dict:
    """Keyword arguments of the nth create() call."""
    return client.chat.completions.create.call_args_list[call].kwargs


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def registry():
    return load_operations()


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_user(USER_ID, first_name="Ada", email="ada@example.com")
    return store


@pytest.fixture
def settings() -> AssistantConfig:
    return AssistantConfig()


@pytest.fixture
def ctx(store, settings) -> OperationContext:
    return OperationContext(user_id=USER_ID, store=store, settings=settings, clock=fixed_clock)


@pytest.fixture
def make_assistant(store, settings, registry):
    """Factory: assistant over the shared store with a scripted model."""

    def _make(*responses, **overrides):
        client = scripted_openai(*responses)
        assistant = TaskAssistant(
            store=store,
            conversations=store,
            identity=store,
            inference=InferenceClient(client, "test-model"),
            settings=overrides.pop("settings", settings),
            clock=fixed_clock,
            registry=registry,
        )
        return assistant, client

    return _make
