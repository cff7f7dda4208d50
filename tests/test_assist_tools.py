"""Tests for brief generation, undo, audit log and clarification."""
import json
from datetime import timedelta

from taskpilot.agent.llm import InferenceClient
from taskpilot.tools import OperationContext
from tests.conftest import NOW, USER_ID, completion, scripted_openai, sent_kwargs


async def _create(registry, ctx, title, **args):
    result = await registry.execute("create_task", {"title": title, **args}, ctx)
    return result.data["task"]


class TestUndo:
    async def test_undo_create(self, registry, ctx, store):
        await _create(registry, ctx, "Oops")

        result = await registry.execute("undo_last_action", {}, ctx)

        assert result.success
        assert result.data["undone"] is True
        assert result.data["action_type"] == "create"
        assert await store.list_tasks(USER_ID) == []

    async def test_undo_update_restores_fields(self, registry, ctx, store):
        task = await _create(registry, ctx, "Report", priority="P2")
        await registry.execute("update_task", {"task_id": task["id"], "set": {"priority": "P0", "title": "Final report"}}, ctx)

        result = await registry.execute("undo_last_action", {}, ctx)

        row = await store.get_task(USER_ID, task["id"])
        assert result.data["action_type"] == "update"
        assert row["priority"] == "P2"
        assert row["content"] == "Report"

    async def test_undo_delete_restores_row(self, registry, ctx, store):
        task = await _create(registry, ctx, "Keep me", labels=["work"])
        await registry.execute("delete_task", {"task_id": task["id"]}, ctx)

        await registry.execute("undo_last_action", {}, ctx)

        row = await store.get_task(USER_ID, task["id"])
        assert row["content"] == "Keep me"
        assert row["labels"] == ["work"]

    async def test_consecutive_undos_walk_back(self, registry, ctx, store):
        await _create(registry, ctx, "First")
        await _create(registry, ctx, "Second")

        await registry.execute("undo_last_action", {}, ctx)
        assert [t["content"] for t in await store.list_tasks(USER_ID)] == ["First"]

        await registry.execute("undo_last_action", {}, ctx)
        assert await store.list_tasks(USER_ID) == []

    async def test_preview_without_confirm(self, registry, ctx, store):
        await _create(registry, ctx, "Still here")

        result = await registry.execute("undo_last_action", {"confirm": False}, ctx)

        assert result.success
        assert result.data["undone"] is False
        assert len(await store.list_tasks(USER_ID)) == 1

    async def test_outside_window(self, registry, ctx, store, settings):
        await _create(registry, ctx, "Old")
        later = OperationContext(
            user_id=USER_ID,
            store=store,
            settings=settings,
            clock=lambda: NOW + timedelta(minutes=61),
        )

        result = await registry.execute("undo_last_action", {}, later)

        assert result.success is False
        assert "older than 60 minutes" in result.error

    async def test_nothing_to_undo(self, registry, ctx):
        result = await registry.execute("undo_last_action", {}, ctx)
        assert result.success is False
        assert result.error == "Nothing to undo"

    async def test_specific_action_id(self, registry, ctx, store):
        first = await _create(registry, ctx, "First")
        await _create(registry, ctx, "Second")
        actions = await store.list_actions(USER_ID)
        first_action = next(a for a in actions if a["task_id"] == first["id"])

        result = await registry.execute("undo_last_action", {"action_id": first_action["id"]}, ctx)

        assert result.data["task_id"] == first["id"]
        assert [t["content"] for t in await store.list_tasks(USER_ID)] == ["Second"]


class TestAuditLog:
    async def test_entries_newest_first(self, registry, ctx):
        task = await _create(registry, ctx, "Audit me")
        await registry.execute("update_task", {"task_id": task["id"], "set": {"priority": "P1"}}, ctx)

        result = await registry.execute("get_audit_log", {}, ctx)

        assert result.data["total"] == 2
        assert [e["action_type"] for e in result.data["entries"]] == ["update", "create"]
        assert result.data["entries"][0]["before"]["priority"] == "P2"

    async def test_filter_by_action_type(self, registry, ctx):
        task = await _create(registry, ctx, "Audit me")
        await registry.execute("delete_task", {"task_id": task["id"]}, ctx)

        result = await registry.execute("get_audit_log", {"action_types": ["delete"]}, ctx)

        assert [e["action_type"] for e in result.data["entries"]] == ["delete"]

    async def test_csv_export(self, registry, ctx):
        await _create(registry, ctx, "Export me")

        result = await registry.execute("get_audit_log", {"export_format": "csv"}, ctx)

        lines = result.data["export"].splitlines()
        assert lines[0] == "id,created_at,action_type,task_id,undone"
        assert len(lines) == 2
        assert ",create,1,False" in lines[1]

    async def test_other_users_are_not_visible(self, registry, ctx):
        await _create(registry, ctx, "Mine")
        result = await registry.execute("get_audit_log", {"user_ids": ["someone-else"]}, ctx)
        assert result.data == {"entries": [], "total": 0}


class TestClarification:
    async def test_echo(self, registry, ctx):
        result = await registry.execute("ask_clarification", {
            "missing_fields": ["due"],
            "context": "When should this be done?",
            "suggestions": ["today", "tomorrow"],
        }, ctx)

        assert result.data == {
            "needs_clarification": True,
            "missing_fields": ["due"],
            "context": "When should this be done?",
            "suggestions": ["today", "tomorrow"],
        }


class TestTaskBrief:
    BRIEF = {
        "summary": "Prepare the quarterly board deck",
        "acceptance_criteria": ["Covers revenue", "Reviewed by CFO"],
        "subtasks": ["Collect numbers", "Draft slides"],
    }

    def _ctx(self, store, settings, client):
        return OperationContext(
            user_id=USER_ID,
            store=store,
            settings=settings,
            inference=InferenceClient(client, "test-model"),
        )

    async def test_generates_brief(self, registry, store, settings):
        client = scripted_openai(completion(content=json.dumps(self.BRIEF)))

        result = await registry.execute("generate_task_brief", {"short_input": "board deck"}, self._ctx(store, settings, client))

        assert result.success
        assert result.data == self.BRIEF
        assert sent_kwargs(client)["response_format"]["type"] == "json_schema"
        assert sent_kwargs(client)["temperature"] == 0.7

    async def test_drops_unrequested_lists(self, registry, store, settings):
        client = scripted_openai(completion(content=json.dumps(self.BRIEF)))

        result = await registry.execute("generate_task_brief", {
            "short_input": "board deck",
            "generate_subtasks": False,
        }, self._ctx(store, settings, client))

        assert "subtasks" not in result.data
        assert result.data["acceptance_criteria"] == self.BRIEF["acceptance_criteria"]

    async def test_save_as_draft(self, registry, store, settings):
        client = scripted_openai(completion(content=json.dumps(self.BRIEF)))

        result = await registry.execute("generate_task_brief", {
            "short_input": "board deck",
            "save_as_draft": True,
        }, self._ctx(store, settings, client))

        draft = await store.get_task(USER_ID, result.data["draft_task_id"])
        assert draft["labels"] == ["draft"]
        assert "Collect numbers" in draft["notes"]

    async def test_invalid_json_fails_the_invocation(self, registry, store, settings):
        client = scripted_openai(completion(content="not json"))

        result = await registry.execute("generate_task_brief", {"short_input": "x"}, self._ctx(store, settings, client))

        assert result.success is False
        assert "invalid JSON" in result.error

    async def test_requires_model_client(self, registry, ctx):
        result = await registry.execute("generate_task_brief", {"short_input": "x"}, ctx)
        assert result.success is False
