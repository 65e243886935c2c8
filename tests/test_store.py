"""Tests for the task store: writes, the points ledger and session handling."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from doitapp.demo import DEMO_STATS, seed_demo
from doitapp.errors import (
    AuthRequiredError,
    NotFoundError,
    PersistenceError,
    TaskValidationError,
)
from doitapp.gateway import SqliteGateway
from doitapp.identity import LocalIdentity
from doitapp.models import (
    CategoryTally,
    PointsReason,
    TaskCategory,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
)
from doitapp.store import TaskStore

NOW = datetime(2026, 3, 10, 12, 0)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FailingLedgerGateway(SqliteGateway):
    """Gateway whose ledger insert always fails."""

    def insert_points_record(self, user_id, record):
        raise PersistenceError("disk full", operation="insert_points_record")


class FailingStatsGateway(SqliteGateway):
    """Gateway whose stats upsert fails once ``fail`` is switched on."""

    fail = False

    def patch_stats(self, user_id, fields):
        if self.fail:
            raise PersistenceError("disk full", operation="patch_stats")
        super().patch_stats(user_id, fields)


def _fields(**overrides) -> dict:
    fields = {
        "title": "Gym session",
        "category": "personal",
        "estimated_time": 60,
        "difficulty": 7,
        "importance": 9,
        "deadline": NOW + timedelta(days=1),
    }
    fields.update(overrides)
    return fields


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def gateway(tmp_path: Path):
    gw = SqliteGateway(tmp_path / "test.db")
    yield gw
    gw.close()


@pytest.fixture()
def identity() -> LocalIdentity:
    return LocalIdentity("alice")


@pytest.fixture()
def store(gateway, identity, clock):
    s = TaskStore(gateway, identity, clock=clock)
    assert s.load().ok
    yield s
    s.close()


def _add(store: TaskStore, **overrides):
    outcome = store.add_task(_fields(**overrides))
    assert outcome.ok, outcome.error
    return outcome.value


def _ledger_sum(store: TaskStore) -> int:
    return sum(r.points for r in store.points_history())


class TestLoad:
    def test_creates_zero_stats_row(self, store: TaskStore, gateway: SqliteGateway) -> None:
        assert store.user_id == "alice"
        assert store.stats.total_points == 0
        assert gateway.get_stats("alice") is not None

    def test_requires_sign_in(self, gateway: SqliteGateway, clock: FakeClock) -> None:
        s = TaskStore(gateway, LocalIdentity(), clock=clock)
        outcome = s.load()
        assert not outcome.ok
        assert isinstance(outcome.error, AuthRequiredError)

    def test_reload_sees_persisted_state(
        self, store: TaskStore, gateway: SqliteGateway, clock: FakeClock
    ) -> None:
        task = _add(store)
        store.complete_task(task.id)

        fresh = TaskStore(gateway, LocalIdentity("alice"), clock=clock)
        assert fresh.load().ok
        assert [t.id for t in fresh.tasks] == [task.id]
        assert fresh.tasks[0].status == TaskStatus.COMPLETED
        assert fresh.stats == store.stats
        assert fresh.points_history() == store.points_history()


class TestAddTask:
    def test_adds_pending_task(self, store: TaskStore, clock: FakeClock) -> None:
        task = _add(store)
        assert task.id
        assert task.status == TaskStatus.PENDING
        assert task.created_at == clock.now
        assert store.tasks == [task]

    def test_bumps_category_total(self, store: TaskStore) -> None:
        _add(store)
        _add(store, category="academic")
        _add(store, category="academic")
        assert store.stats.tally(TaskCategory.PERSONAL) == CategoryTally(completed=0, total=1)
        assert store.stats.tally(TaskCategory.ACADEMIC) == CategoryTally(completed=0, total=2)

    def test_accepts_task_create(self, store: TaskStore) -> None:
        outcome = store.add_task(TaskCreate(**_fields(title="Typed")))
        assert outcome.ok
        assert outcome.value.title == "Typed"

    def test_invalid_fields_leave_state_alone(self, store: TaskStore, gateway: SqliteGateway) -> None:
        outcome = store.add_task(_fields(difficulty=11))
        assert not outcome.ok
        assert isinstance(outcome.error, TaskValidationError)
        assert "difficulty" in outcome.error.fields
        assert store.tasks == []
        assert store.stats.tally(TaskCategory.PERSONAL).total == 0
        assert gateway.list_tasks("alice") == []

    def test_status_forced_to_pending(self, store: TaskStore) -> None:
        task = _add(store, status="completed", completed_at=NOW, points_earned=99)
        assert task.status == TaskStatus.PENDING
        assert task.completed_at is None
        assert task.points_earned is None
        assert store.stats.tasks_completed == 0

    def test_persistence_failure_rolls_back(self, tmp_path: Path, clock: FakeClock) -> None:
        gw = FailingStatsGateway(tmp_path / "failing.db")
        s = TaskStore(gw, LocalIdentity("alice"), clock=clock)
        assert s.load().ok
        before = s.stats
        gw.fail = True

        outcome = s.add_task(_fields())
        assert not outcome.ok
        assert isinstance(outcome.error, PersistenceError)
        assert s.tasks == []
        assert s.stats == before
        assert gw.list_tasks("alice") == []
        assert gw.get_stats("alice")["personal_total"] == 0
        gw.close()

    def test_signed_out(self, store: TaskStore, identity: LocalIdentity) -> None:
        identity.sign_out()
        outcome = store.add_task(_fields())
        assert isinstance(outcome.error, AuthRequiredError)


class TestCompleteTask:
    def test_on_time(self, store: TaskStore, clock: FakeClock) -> None:
        task = _add(store, deadline=NOW + timedelta(hours=1))
        outcome = store.complete_task(task.id)
        assert outcome.ok
        feedback = outcome.value
        assert feedback.is_on_time
        assert feedback.applied_ledger_delta == 32
        assert feedback.points_earned == 32
        assert feedback.task.status == TaskStatus.COMPLETED
        assert feedback.task.completed_at == clock.now

        stats = store.stats
        assert stats.total_points == 32
        assert stats.tasks_completed == 1
        assert stats.current_streak == 1
        assert stats.best_streak == 1
        assert stats.tally(TaskCategory.PERSONAL) == CategoryTally(completed=1, total=1)

        (record,) = store.points_history()
        assert record.task_id == task.id
        assert record.points == 32
        assert record.reason == PointsReason.ON_TIME

    def test_at_exact_deadline_is_on_time(self, store: TaskStore) -> None:
        task = _add(store, deadline=NOW)
        assert store.complete_task(task.id).value.is_on_time

    def test_late(self, store: TaskStore, clock: FakeClock) -> None:
        task = _add(store, deadline=NOW)
        clock.now = NOW + timedelta(seconds=1)
        feedback = store.complete_task(task.id).value
        assert not feedback.is_on_time
        assert feedback.applied_ledger_delta == -3
        assert feedback.points_earned == 8
        assert feedback.reason == PointsReason.LATE
        assert store.stats.total_points == -3
        assert store.stats.current_streak == 0
        assert store.get_task(task.id).points_earned == 8

    def test_late_resets_streak_but_keeps_best(self, store: TaskStore, clock: FakeClock) -> None:
        first = _add(store, deadline=NOW + timedelta(hours=1))
        second = _add(store, deadline=NOW + timedelta(hours=2))
        third = _add(store, deadline=NOW + timedelta(hours=3))
        store.complete_task(first.id)
        store.complete_task(second.id)
        clock.now = NOW + timedelta(hours=4)
        store.complete_task(third.id)
        assert store.stats.current_streak == 0
        assert store.stats.best_streak == 2
        assert store.stats.total_points == 32 + 32 - 3

    def test_ledger_matches_total(self, store: TaskStore, clock: FakeClock) -> None:
        tasks = [_add(store, difficulty=d, deadline=NOW + timedelta(hours=d)) for d in range(1, 6)]
        for task in tasks[:3]:
            store.complete_task(task.id)
        clock.now = NOW + timedelta(days=2)
        for task in tasks[3:]:
            store.complete_task(task.id)
        assert len(store.points_history()) == 5
        assert _ledger_sum(store) == store.stats.total_points
        assert store.stats.tasks_completed == 5

    def test_second_completion_changes_nothing(self, store: TaskStore) -> None:
        task = _add(store)
        store.complete_task(task.id)
        stats = store.stats
        again = store.complete_task(task.id)
        assert again.ok
        assert again.value.already_completed
        assert again.value.applied_ledger_delta == 0
        assert store.stats == stats
        assert len(store.points_history()) == 1

    def test_unknown_task(self, store: TaskStore) -> None:
        outcome = store.complete_task("nope")
        assert isinstance(outcome.error, NotFoundError)
        assert store.stats.total_points == 0

    def test_missed_task_cannot_complete(self, store: TaskStore) -> None:
        task = _add(store)
        store.set_status(task.id, TaskStatus.MISSED)
        outcome = store.complete_task(task.id)
        assert isinstance(outcome.error, TaskValidationError)
        assert store.points_history() == []

    def test_persistence_failure_rolls_back(self, tmp_path: Path, clock: FakeClock) -> None:
        gw = FailingLedgerGateway(tmp_path / "failing.db")
        s = TaskStore(gw, LocalIdentity("alice"), clock=clock)
        task = s.add_task(_fields()).value
        before = s.stats

        outcome = s.complete_task(task.id)
        assert not outcome.ok
        assert isinstance(outcome.error, PersistenceError)
        assert s.get_task(task.id).status == TaskStatus.PENDING
        assert s.stats == before
        assert s.points_history() == []

        (row,) = gw.list_tasks("alice")
        assert row["status"] == "pending"
        assert row["completed_at"] is None
        assert gw.get_stats("alice")["tasks_completed"] == 0
        gw.close()


class TestUpdateTask:
    def test_merges_fields(self, store: TaskStore, gateway: SqliteGateway) -> None:
        task = _add(store)
        outcome = store.update_task(task.id, {"title": "Leg day", "importance": 4})
        assert outcome.ok
        assert outcome.value.title == "Leg day"
        assert outcome.value.importance == 4
        assert outcome.value.id == task.id
        assert outcome.value.created_at == task.created_at
        assert gateway.list_tasks("alice")[0]["title"] == "Leg day"

    def test_accepts_task_update(self, store: TaskStore) -> None:
        task = _add(store)
        outcome = store.update_task(task.id, TaskUpdate(description="Bring water"))
        assert outcome.value.description == "Bring water"

    def test_invalid_patch(self, store: TaskStore) -> None:
        task = _add(store)
        outcome = store.update_task(task.id, {"difficulty": 0})
        assert isinstance(outcome.error, TaskValidationError)
        assert store.get_task(task.id).difficulty == 7

    def test_merged_shape_checked(self, store: TaskStore) -> None:
        task = _add(store)
        outcome = store.update_task(task.id, {"is_recurring": True})
        assert isinstance(outcome.error, TaskValidationError)
        assert store.get_task(task.id).is_recurring is False

    def test_unknown_task(self, store: TaskStore) -> None:
        assert isinstance(store.update_task("nope", {"title": "x"}).error, NotFoundError)

    def test_start_and_pause(self, store: TaskStore) -> None:
        task = _add(store)
        assert store.set_status(task.id, TaskStatus.IN_PROGRESS).value.status == TaskStatus.IN_PROGRESS
        assert store.set_status(task.id, TaskStatus.PENDING).value.status == TaskStatus.PENDING

    def test_cannot_complete_by_status(self, store: TaskStore) -> None:
        task = _add(store)
        outcome = store.set_status(task.id, TaskStatus.COMPLETED)
        assert isinstance(outcome.error, TaskValidationError)
        assert store.stats.tasks_completed == 0

    def test_terminal_status_sticks(self, store: TaskStore) -> None:
        task = _add(store)
        store.complete_task(task.id)
        outcome = store.set_status(task.id, TaskStatus.PENDING)
        assert isinstance(outcome.error, TaskValidationError)
        assert store.get_task(task.id).status == TaskStatus.COMPLETED

    def test_missed_leaves_stats_alone(self, store: TaskStore) -> None:
        task = _add(store)
        store.set_status(task.id, TaskStatus.MISSED)
        assert store.get_task(task.id).status == TaskStatus.MISSED
        assert store.stats.tasks_missed == 0
        assert store.stats.total_points == 0

    def test_id_and_created_at_not_overwritten(self, store: TaskStore, gateway: SqliteGateway) -> None:
        task = _add(store)
        outcome = store.update_task(
            task.id, {"id": "other", "created_at": NOW - timedelta(days=9), "title": "Renamed"}
        )
        assert outcome.ok
        assert outcome.value.id == task.id
        assert outcome.value.created_at == task.created_at
        assert outcome.value.title == "Renamed"
        (row,) = gateway.list_tasks("alice")
        assert row["id"] == task.id
        assert row["created_at"] == task.created_at.isoformat()

    def test_category_change_moves_completed_tally(
        self, store: TaskStore, gateway: SqliteGateway
    ) -> None:
        task = _add(store)
        store.complete_task(task.id)
        outcome = store.update_task(task.id, {"category": "academic"})
        assert outcome.ok
        assert store.stats.tally(TaskCategory.PERSONAL) == CategoryTally(completed=0, total=0)
        assert store.stats.tally(TaskCategory.ACADEMIC) == CategoryTally(completed=1, total=1)
        stored = gateway.get_stats("alice")
        assert stored["academic_completed"] == 1
        assert stored["personal_completed"] == 0

    def test_category_change_moves_open_total(self, store: TaskStore) -> None:
        task = _add(store)
        store.update_task(task.id, {"category": "professional"})
        assert store.stats.tally(TaskCategory.PERSONAL) == CategoryTally(completed=0, total=0)
        assert store.stats.tally(TaskCategory.PROFESSIONAL) == CategoryTally(completed=0, total=1)

    def test_category_tallies_match_tasks(self, store: TaskStore) -> None:
        tasks = [_add(store, category=c) for c in ("personal", "academic", "personal")]
        store.complete_task(tasks[0].id)
        store.complete_task(tasks[1].id)
        store.update_task(tasks[0].id, {"category": "professional"})
        store.update_task(tasks[2].id, {"category": "academic"})
        for category in TaskCategory:
            in_category = [t for t in store.tasks if t.category == category]
            tally = store.stats.tally(category)
            assert tally.total == len(in_category)
            assert tally.completed == sum(1 for t in in_category if t.is_completed)

    def test_completed_task_can_still_be_renamed(self, store: TaskStore) -> None:
        task = _add(store)
        store.complete_task(task.id)
        outcome = store.update_task(task.id, {"title": "Gym (done)", "status": "completed"})
        assert outcome.ok
        assert outcome.value.status == TaskStatus.COMPLETED
        assert outcome.value.title == "Gym (done)"


class TestDeleteTask:
    def test_removes_task_keeps_stats(self, store: TaskStore, gateway: SqliteGateway) -> None:
        task = _add(store)
        store.complete_task(task.id)
        stats = store.stats
        outcome = store.delete_task(task.id)
        assert outcome.ok
        assert store.tasks == []
        assert gateway.list_tasks("alice") == []
        assert store.stats == stats
        assert _ledger_sum(store) == stats.total_points

    def test_unknown_task(self, store: TaskStore) -> None:
        assert isinstance(store.delete_task("nope").error, NotFoundError)


class TestIdentitySwitch:
    def test_switch_resets_and_reloads(self, store: TaskStore, identity: LocalIdentity) -> None:
        task = _add(store)
        store.complete_task(task.id)

        identity.sign_in("bob")
        assert store.user_id == "bob"
        assert store.tasks == []
        assert store.stats.total_points == 0
        assert store.points_history() == []

        identity.sign_in("alice")
        assert [t.id for t in store.tasks] == [task.id]
        assert store.stats.total_points == 32

    def test_sign_out_clears(self, store: TaskStore, identity: LocalIdentity) -> None:
        _add(store)
        identity.sign_out()
        assert store.user_id is None
        assert store.tasks == []


class TestQueries:
    def test_todays_tasks_sorted(self, store: TaskStore) -> None:
        late = _add(store, title="Late", scheduled_start=NOW.replace(hour=17))
        early = _add(store, title="Early", scheduled_start=NOW.replace(hour=8))
        _add(store, title="Tomorrow", scheduled_start=NOW + timedelta(days=1))
        _add(store, title="Unscheduled")
        assert [t.id for t in store.todays_tasks()] == [early.id, late.id]

    def test_upcoming_excludes_past_and_completed(self, store: TaskStore) -> None:
        past = _add(store, title="Past", deadline=NOW - timedelta(hours=1))
        done = _add(store, title="Done", deadline=NOW + timedelta(hours=1))
        soon = _add(store, title="Soon", deadline=NOW + timedelta(hours=2))
        later = _add(store, title="Later", deadline=NOW + timedelta(days=3))
        store.complete_task(done.id)
        assert [t.id for t in store.upcoming_tasks()] == [soon.id, later.id]
        assert [t.id for t in store.upcoming_tasks(limit=1)] == [soon.id]
        assert [t.id for t in store.overdue_tasks()] == [past.id]

    def test_top_focus(self, store: TaskStore) -> None:
        relaxed = _add(store, title="Relaxed", importance=2, deadline=NOW + timedelta(days=7))
        urgent = _add(store, title="Urgent", importance=5, deadline=NOW + timedelta(hours=1))
        important = _add(store, title="Important", importance=10, deadline=NOW + timedelta(days=7))
        done = _add(store, title="Done", importance=10, deadline=NOW + timedelta(hours=1))
        store.complete_task(done.id)
        assert [t.id for t in store.top_focus()] == [urgent.id, important.id, relaxed.id]
        assert len(store.top_focus(limit=1)) == 1

    def test_tasks_by_category(self, store: TaskStore) -> None:
        _add(store, category="academic")
        _add(store)
        assert len(store.tasks_by_category(TaskCategory.ACADEMIC)) == 1


class TestDemoSeed:
    def test_seeds_new_user(self, gateway: SqliteGateway, clock: FakeClock) -> None:
        assert seed_demo(gateway, "carol", now=NOW) == 5
        s = TaskStore(gateway, LocalIdentity("carol"), clock=clock)
        assert s.load().ok
        assert len(s.tasks) == 5
        assert all(t.id.endswith("-carol") for t in s.tasks)
        assert s.stats == DEMO_STATS

    def test_skips_user_with_tasks(self, store: TaskStore, gateway: SqliteGateway) -> None:
        _add(store)
        assert seed_demo(gateway, "alice", now=NOW) == 0
        assert len(gateway.list_tasks("alice")) == 1

    def test_completion_after_seed(self, gateway: SqliteGateway, clock: FakeClock) -> None:
        seed_demo(gateway, "carol", now=NOW)
        s = TaskStore(gateway, LocalIdentity("carol"), clock=clock)
        s.load()
        feedback = s.complete_task("demo-paper-review-carol").value
        assert feedback.is_on_time
        assert s.stats.total_points == DEMO_STATS.total_points + 32
        assert s.stats.current_streak == DEMO_STATS.current_streak + 1
