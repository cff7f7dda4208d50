"""Tests for tool call parsing and concurrent execution."""
import json

from taskpilot.agent.tools_executor import ToolCall, ToolExecutor, parse_tool_calls, sanitize_arguments, to_selection
from tests.conftest import USER_ID, completion, fixed_clock


def _message(*tool_calls, content=None):
    return completion(content=content, tool_calls=list(tool_calls)).choices[0].message


class TestParsing:
    def test_sanitize_drops_top_level_nulls_only(self):
        arguments = {"title": "x", "due": None, "filter": {"status": None}}
        assert sanitize_arguments(arguments) == {"title": "x", "filter": {"status": None}}

    def test_parse_keeps_order_and_ids(self):
        calls = parse_tool_calls(_message(
            ("create_task", {"title": "a", "due": None}),
            ("list_tasks", {}),
        ))
        assert [(c.id, c.name) for c in calls] == [("call_0", "create_task"), ("call_1", "list_tasks")]
        assert calls[0].arguments == {"title": "a"}

    def test_malformed_json_is_isolated(self):
        calls = parse_tool_calls(_message(
            ("create_task", "{not json"),
            ("list_tasks", {}),
        ))
        assert calls[0].parse_error is not None
        assert calls[1].parse_error is None

    def test_non_object_arguments(self):
        calls = parse_tool_calls(_message(("list_tasks", json.dumps([1, 2]))))
        assert "expected a JSON object" in calls[0].parse_error

    def test_selection_without_tools_is_smalltalk(self):
        selection = to_selection(_message(content="Hi there!"))
        assert selection.is_smalltalk
        assert selection.direct_reply == "Hi there!"

    def test_selection_message_is_replayable(self):
        selection = to_selection(_message(("list_tasks", {})))
        assert selection.message["role"] == "assistant"
        assert selection.message["tool_calls"][0]["id"] == "call_0"


class TestToolExecutor:
    def _executor(self, registry, store, settings):
        return ToolExecutor(registry, store, settings=settings, clock=fixed_clock)

    async def test_results_in_call_order(self, registry, store, settings):
        executor = self._executor(registry, store, settings)
        calls = [
            ToolCall(id="a", name="create_task", arguments={"title": "first"}),
            ToolCall(id="b", name="launch_rocket", arguments={}),
            ToolCall(id="c", name="list_tasks", arguments={}),
        ]

        results = await executor.execute_all(calls, USER_ID)

        assert [r.tool_call_id for r in results] == ["a", "b", "c"]
        assert results[0].result.success
        assert results[1].result.error == "Unknown tool"
        assert results[2].result.success

    async def test_parse_error_fails_alone(self, registry, store, settings):
        executor = self._executor(registry, store, settings)
        calls = [
            ToolCall(id="a", name="create_task", parse_error="Expecting value"),
            ToolCall(id="b", name="create_task", arguments={"title": "ok"}),
        ]

        results = await executor.execute_all(calls, USER_ID)

        assert results[0].result.success is False
        assert results[0].result.error.startswith("Invalid tool arguments:")
        assert results[1].result.success
        assert len(await store.list_tasks(USER_ID)) == 1

    async def test_tool_message_format(self, registry, store, settings):
        executor = self._executor(registry, store, settings)

        result = await executor.execute_one(ToolCall(id="x", name="launch_rocket"), USER_ID)

        assert result.to_openai_message() == {
            "role": "tool",
            "tool_call_id": "x",
            "content": '{"success": false, "error": "Unknown tool"}',
        }
