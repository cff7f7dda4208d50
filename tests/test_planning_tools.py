"""Tests for scheduling, risk, scoring and bulk operations."""
import pytest

from taskpilot.errors import StoreError
from taskpilot.store.memory import InMemoryStore
from taskpilot.tools import OperationContext
from taskpilot.tools.planning_tools import assess_deadline
from tests.conftest import NOW, USER_ID, fixed_clock


async def _insert(store, content, **fields):
    return await store.insert_task(USER_ID, {"content": content, **fields})


class TestDeadlineRisks:
    def test_assessment_is_pure(self):
        task = {"id": 1, "content": "x", "due_date": "2025-10-08T12:00:00Z"}
        assert assess_deadline(task, NOW, 7) == assess_deadline(task, NOW, 7)

    @pytest.mark.parametrize("due, days, at_risk, overdue", [
        ("2025-10-07T12:00:00Z", 6, True, False),    # threshold - 1
        ("2025-10-08T12:00:00Z", 7, True, False),    # threshold
        ("2025-10-09T12:00:00Z", 8, False, False),   # threshold + 1
        ("2025-10-01T12:00:00Z", 0, True, False),    # due now
        ("2025-09-30T12:00:00Z", -1, False, True),   # a day late
    ])
    def test_threshold_boundaries(self, due, days, at_risk, overdue):
        risk = assess_deadline({"id": 1, "content": "x", "due_date": due}, NOW, 7)
        assert risk["days_until_due"] == days
        assert risk["at_risk"] is at_risk
        assert risk["overdue"] is overdue

    def test_partial_day_rounds_up(self):
        risk = assess_deadline({"id": 1, "content": "x", "due_date": "2025-10-08T12:00:01Z"}, NOW, 7)
        assert risk["days_until_due"] == 8
        assert risk["at_risk"] is False

    async def test_reports_only_open_risky_tasks(self, registry, ctx, store):
        await _insert(store, "soon", due_date="2025-10-03T12:00:00Z")
        await _insert(store, "edge", due_date="2025-10-08T12:00:00Z")
        await _insert(store, "later", due_date="2025-10-09T12:00:00Z")
        await _insert(store, "late", due_date="2025-09-29T12:00:00Z")
        await _insert(store, "finished", due_date="2025-10-02", status="done")
        await _insert(store, "someday")

        result = await registry.execute("check_deadline_risks", {}, ctx)

        assert result.success
        assert [r["task_title"] for r in result.data["risks"]] == ["late", "soon", "edge"]
        assert result.data["total_at_risk"] == 3
        assert result.data["risks"][0]["overdue"] is True

    async def test_custom_threshold_and_ids(self, registry, ctx, store):
        soon = await _insert(store, "soon", due_date="2025-10-03T12:00:00Z")
        await _insert(store, "edge", due_date="2025-10-08T12:00:00Z")

        result = await registry.execute("check_deadline_risks", {"threshold_days": 2, "task_ids": [soon["id"], 42]}, ctx)

        assert [r["task_id"] for r in result.data["risks"]] == [soon["id"]]

    async def test_auto_suggest(self, registry, ctx, store):
        await _insert(store, "soon", due_date="2025-10-03T12:00:00Z", duration_minutes=60)

        result = await registry.execute("check_deadline_risks", {"auto_suggest": True}, ctx)

        assert result.data["risks"][0]["suggested_start"] == "2025-10-03T11:00:00+00:00"


class TestPriorityScore:
    async def test_default_weights(self, registry, ctx, store):
        task = await _insert(store, "Ship release", priority="P1", due_date="2025-10-03T12:00:00Z", duration_minutes=120)

        result = await registry.execute("calculate_priority_score", {"task_id": task["id"], "explain": True}, ctx)

        assert result.success
        assert result.data["task_id"] == str(task["id"])
        assert result.data["factors"] == {"impact": 75.0, "urgency": 80.0, "effort": 75.0, "risk": 70.0}
        assert result.data["breakdown"] == pytest.approx({"impact": 22.5, "urgency": 24.0, "effort": 15.0, "risk": 14.0})
        assert result.data["total_score"] == pytest.approx(75.5)
        assert "impact 75 x 0.30" in result.data["explanation"]

    async def test_no_due_date_or_duration(self, registry, ctx, store):
        task = await _insert(store, "Someday")
        result = await registry.execute("calculate_priority_score", {"task_id": task["id"]}, ctx)
        assert result.data["total_score"] == pytest.approx(36.5)

    async def test_overdue_maxes_urgency_and_risk(self, registry, ctx, store):
        task = await _insert(store, "Late", due_date="2025-09-20")
        result = await registry.execute("calculate_priority_score", {"task_id": task["id"]}, ctx)
        assert result.data["factors"]["urgency"] == 100.0
        assert result.data["factors"]["risk"] == 100.0

    async def test_custom_weights_fill_from_defaults(self, registry, ctx, store):
        task = await _insert(store, "Task", priority="P0")
        result = await registry.execute("calculate_priority_score", {
            "task_id": task["id"],
            "weights": {"impact": 0.4, "urgency": 0.2},
        }, ctx)
        assert result.data["weights"] == {"impact": 0.4, "urgency": 0.2, "effort": 0.2, "risk": 0.2}

    async def test_weights_must_sum_to_one(self, registry, ctx, store):
        task = await _insert(store, "Task")
        result = await registry.execute("calculate_priority_score", {
            "task_id": task["id"],
            "weights": {"impact": 0.5},
        }, ctx)
        assert result.success is False
        assert "sum to 1.0" in result.error


class _FlakyStore(InMemoryStore):
    """Fails updates for one task id."""

    def __init__(self, failing_id: int, error: Exception | None = None):
        super().__init__()
        self.failing_id = failing_id
        self.error = error or StoreError("disk full")

    async def update_task(self, user_id, task_id, fields):
        if task_id == self.failing_id:
            raise self.error
        return await super().update_task(user_id, task_id, fields)


class TestBulkUpdate:
    async def test_partial_success(self, registry, settings):
        store = _FlakyStore(failing_id=2)
        ids = [(await _insert(store, f"Task {n}"))["id"] for n in range(3)]
        ctx = OperationContext(user_id=USER_ID, store=store, settings=settings, clock=fixed_clock)

        result = await registry.execute("bulk_update_tasks", {
            "task_ids": ids,
            "operation": "reassign",
            "params": {"assignee": "sam"},
        }, ctx)

        assert result.success
        assert result.data["success_count"] == 2
        assert result.data["failed_count"] == 1
        assert result.data["errors"] == ["Task 2: disk full"]
        assert (await store.get_task(USER_ID, 1))["assignee"] == "sam"
        assert (await store.get_task(USER_ID, 2))["assignee"] is None
        assert (await store.get_task(USER_ID, 3))["assignee"] == "sam"

    async def test_unexpected_error_on_one_target_does_not_stop_the_rest(self, registry, settings):
        store = _FlakyStore(failing_id=2, error=ValueError("malformed row"))
        ids = [(await _insert(store, f"Task {n}"))["id"] for n in range(3)]
        ctx = OperationContext(user_id=USER_ID, store=store, settings=settings, clock=fixed_clock)

        result = await registry.execute("bulk_update_tasks", {"task_ids": ids, "operation": "archive"}, ctx)

        assert result.success
        assert result.data["success_count"] == 2
        assert result.data["errors"] == ["Task 2: malformed row"]
        statuses = [(await store.get_task(USER_ID, i))["status"] for i in ids]
        assert statuses == ["archived", "open", "archived"]

    async def test_missing_task_is_reported(self, registry, ctx, store):
        task = await _insert(store, "Real")
        result = await registry.execute("bulk_update_tasks", {
            "task_ids": [task["id"], 999],
            "operation": "archive",
        }, ctx)
        assert result.data["success_count"] == 1
        assert result.data["errors"] == ["Task 999: Task 999 not found"]

    async def test_empty_ids(self, registry, ctx):
        result = await registry.execute("bulk_update_tasks", {"task_ids": [], "operation": "delete"}, ctx)
        assert result.success is False
        assert result.error == "No task IDs provided"

    async def test_relabel(self, registry, ctx, store):
        task = await _insert(store, "Task", labels=["home", "errand"])
        await registry.execute("bulk_update_tasks", {
            "task_ids": [task["id"]],
            "operation": "relabel",
            "params": {"labels_add": ["urgent"], "labels_remove": ["home"]},
        }, ctx)
        assert (await store.get_task(USER_ID, task["id"]))["labels"] == ["errand", "urgent"]

    async def test_reschedule_needs_due_date(self, registry, ctx, store):
        dated = await _insert(store, "Dated", due_date="2025-10-05")
        undated = await _insert(store, "Undated")

        result = await registry.execute("bulk_update_tasks", {
            "task_ids": [dated["id"], undated["id"]],
            "operation": "reschedule",
            "params": {"reschedule_offset_days": 3},
        }, ctx)

        assert result.data["success_count"] == 1
        assert "no due date" in result.data["errors"][0]
        assert (await store.get_task(USER_ID, dated["id"]))["due_date"] == "2025-10-08"

    async def test_archive_appends_reason(self, registry, ctx, store):
        task = await _insert(store, "Task", notes="original")
        await registry.execute("bulk_update_tasks", {
            "task_ids": [task["id"]],
            "operation": "archive",
            "params": {"archive_reason": "obsolete"},
        }, ctx)
        row = await store.get_task(USER_ID, task["id"])
        assert row["status"] == "archived"
        assert row["notes"] == "original\nArchived: obsolete"

    async def test_preview_does_not_write(self, registry, ctx, store):
        task = await _insert(store, "Keep me")
        result = await registry.execute("bulk_update_tasks", {
            "task_ids": [task["id"]],
            "operation": "delete",
            "preview_only": True,
        }, ctx)
        assert result.data["success_count"] == 1
        assert await store.get_task(USER_ID, task["id"])


class TestReschedule:
    async def test_overdue_tasks_get_one_day_each(self, registry, ctx, store):
        a = await _insert(store, "a", priority="P2", due_date="2025-09-28")
        b = await _insert(store, "b", priority="P0", due_date="2025-09-29")
        c = await _insert(store, "c", due_date="2025-10-05")
        d = await _insert(store, "d", due_date="2025-09-20", status="done")

        result = await registry.execute("reschedule_tasks", {"task_ids": [a["id"], b["id"], c["id"], d["id"]]}, ctx)

        assert result.success
        assert [(p["task_id"], p["new_due_date"]) for p in result.data["proposals"]] == [
            (b["id"], "2025-10-01"),
            (a["id"], "2025-10-02"),
        ]
        assert result.data["conflicts_resolved"] == 2
        assert (await store.get_task(USER_ID, a["id"]))["due_date"] == "2025-10-02"
        assert (await store.get_task(USER_ID, c["id"]))["due_date"] == "2025-10-05"

    async def test_preview_only(self, registry, ctx, store):
        a = await _insert(store, "a", due_date="2025-09-28")
        result = await registry.execute("reschedule_tasks", {"task_ids": [a["id"]], "preview_only": True}, ctx)
        assert result.data["rescheduled_count"] == 1
        assert result.data["conflicts_resolved"] == 0
        assert (await store.get_task(USER_ID, a["id"]))["due_date"] == "2025-09-28"

    async def test_failed_write_is_reported_and_others_continue(self, registry, settings):
        store = _FlakyStore(failing_id=1)
        a = await _insert(store, "a", priority="P0", due_date="2025-09-28")
        b = await _insert(store, "b", priority="P1", due_date="2025-09-29")
        ctx = OperationContext(user_id=USER_ID, store=store, settings=settings, clock=fixed_clock)

        result = await registry.execute("reschedule_tasks", {"task_ids": [a["id"], b["id"]]}, ctx)

        assert result.success
        assert result.data["rescheduled_count"] == 2
        assert result.data["conflicts_resolved"] == 1
        assert result.data["errors"] == [f"Task {a['id']}: disk full"]
        assert (await store.get_task(USER_ID, a["id"]))["due_date"] == "2025-09-28"
        assert (await store.get_task(USER_ID, b["id"]))["due_date"] == "2025-10-02"


class TestScheduleToCalendar:
    async def test_packs_blocks_within_working_hours(self, registry, ctx, store):
        x = await _insert(store, "x", priority="P1", duration_minutes=60)
        y = await _insert(store, "y", priority="P0", duration_minutes=30)
        z = await _insert(store, "z", priority="P2", duration_minutes=480)
        w = await _insert(store, "w", priority="P3", duration_minutes=600)

        result = await registry.execute("schedule_tasks_to_calendar", {
            "task_ids": [x["id"], y["id"], z["id"], w["id"]],
            "start_date": "2025-10-02T09:00:00Z",
        }, ctx)

        assert result.success
        blocks = [(b["task_id"], b["start"], b["end"]) for b in result.data["blocks"]]
        assert blocks == [
            (y["id"], "2025-10-02T09:00:00+00:00", "2025-10-02T09:30:00+00:00"),
            (x["id"], "2025-10-02T09:40:00+00:00", "2025-10-02T10:40:00+00:00"),
            (z["id"], "2025-10-03T09:00:00+00:00", "2025-10-03T17:00:00+00:00"),
        ]
        assert result.data["unscheduled"] == [w["id"]]
        assert result.data["preview_only"] is True

    async def test_end_before_start(self, registry, ctx, store):
        x = await _insert(store, "x")
        result = await registry.execute("schedule_tasks_to_calendar", {
            "task_ids": [x["id"]],
            "start_date": "2025-10-05",
            "end_date": "2025-10-04",
        }, ctx)
        assert result.success is False
