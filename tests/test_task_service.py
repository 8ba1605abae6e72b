"""Tests for taskdesk.core.task_service — task mutations and client metrics."""

import sqlite3
import threading
import time
from unittest.mock import patch

import pytest

from taskdesk.core.errors import NotFoundError, ValidationError
from taskdesk.core.task_service import ImpactUpdate
from taskdesk.core.timer_service import TimerService


def _metrics(store, client_id):
    return store.clients.get_client(client_id).metrics


def _assert_metrics_match_tasks(store, client_id):
    m = _metrics(store, client_id)
    counts = store.tasks.count_by_status(client_id)
    assert (m.tasks_pending, m.tasks_in_progress, m.tasks_completed) == (
        counts["todo"], counts["in-progress"], counts["done"],
    )


class TestCreateTask:
    def test_create_counts_on_client(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "  Bake samples ")
        assert task.id > 0
        assert task.title == "Bake samples"
        assert task.status == "todo"
        assert _metrics(store, client.id).tasks_pending == 1
        _assert_metrics_match_tasks(store, client.id)

    def test_create_with_status_counts_that_status(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Already going", status="in-progress")
        assert _metrics(store, client.id).tasks_in_progress == 1
        done = task_service.create_task(user.id, client.id, "Done already", status="done")
        assert done.completed_at is not None
        assert _metrics(store, client.id).tasks_completed == 1
        assert task.completed_at is None

    def test_unknown_client_writes_nothing(self, task_service, store, user):
        with pytest.raises(NotFoundError):
            task_service.create_task(user.id, 999, "Orphan")
        assert store.tasks.list_tasks(user.id) == []

    def test_other_users_client_is_not_found(self, task_service, store, client):
        other = store.users.add_user("eve", created_at="2026-03-01T00:00:00+00:00")
        with pytest.raises(NotFoundError):
            task_service.create_task(other.id, client.id, "Sneaky")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"title": "  "},
            {"priority": "asap"},
            {"status": "blocked"},
            {"impact_score": 101},
            {"impact_score": -1},
            {"estimated_minutes": -5},
        ],
    )
    def test_invalid_input_rejected(self, task_service, store, user, client, kwargs):
        fields = {"title": "Valid"}
        fields.update(kwargs)
        with pytest.raises(ValidationError):
            task_service.create_task(user.id, client.id, **fields)
        assert _metrics(store, client.id).total == 0


class TestUpdateTask:
    def test_status_change_moves_counter(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Design")
        updated = task_service.update_task(user.id, task.id, {"status": "in-progress"})
        assert updated.status == "in-progress"
        m = _metrics(store, client.id)
        assert (m.tasks_pending, m.tasks_in_progress) == (0, 1)

    def test_status_to_done_sets_completed_at_and_back_clears_it(self, task_service, user, client):
        task = task_service.create_task(user.id, client.id, "Design")
        done = task_service.update_task(user.id, task.id, {"status": "done"})
        assert done.completed_at is not None
        reopened = task_service.update_task(user.id, task.id, {"status": "todo"})
        assert reopened.completed_at is None

    def test_move_to_another_client(self, task_service, store, user, client):
        other = store.clients.add_client(user.id, "Beta Books", created_at="2026-03-01T00:00:00+00:00")
        task = task_service.create_task(user.id, client.id, "Catalogue", status="in-progress")

        moved = task_service.update_task(user.id, task.id, {"client_id": other.id, "status": "done"})

        assert moved.client_id == other.id
        assert _metrics(store, client.id).total == 0
        assert _metrics(store, other.id).tasks_completed == 1
        _assert_metrics_match_tasks(store, client.id)
        _assert_metrics_match_tasks(store, other.id)

    def test_move_to_missing_client_rolls_back(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Catalogue")
        with pytest.raises(NotFoundError):
            task_service.update_task(user.id, task.id, {"client_id": 999})
        assert store.tasks.get_task(task.id).client_id == client.id
        assert _metrics(store, client.id).tasks_pending == 1

    def test_plain_field_update_leaves_metrics(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Draft")
        task_service.update_task(user.id, task.id, {"title": "Final", "priority": "urgent"})
        fetched = store.tasks.get_task(task.id)
        assert (fetched.title, fetched.priority) == ("Final", "urgent")
        assert _metrics(store, client.id).tasks_pending == 1

    def test_null_only_for_optional_fields(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Draft", due_date="2026-04-01")
        with pytest.raises(ValidationError, match="category"):
            task_service.update_task(user.id, task.id, {"category": None})
        cleared = task_service.update_task(user.id, task.id, {"due_date": None})
        assert cleared.due_date is None

    def test_unknown_field_rejected(self, task_service, user, client):
        task = task_service.create_task(user.id, client.id, "Draft")
        with pytest.raises(ValidationError):
            task_service.update_task(user.id, task.id, {"user_id": 2})


class TestCompleteTask:
    def test_completion_rewards_user(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Launch", impact_score=50, status="in-progress")

        result = task_service.complete_task(user.id, task.id, actual_minutes=90)

        assert result.task.status == "done"
        assert result.task.completed_at is not None
        assert result.task.actual_minutes == 90
        assert (result.rewards.points, result.rewards.experience) == (110, 170)
        assert result.rewards.level_up is True

        profile = store.users.get_user(user.id).gamification
        assert profile.action_points == 110
        assert profile.experience == 170
        assert profile.level == 2

        m = _metrics(store, client.id)
        assert (m.tasks_in_progress, m.tasks_completed) == (0, 1)

        activity = store.activities.list_activity(user.id)
        assert activity[0].type == "task_completed"
        assert activity[0].points == 110

    def test_completing_todo_task_moves_pending_counter(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Quick one")
        task_service.complete_task(user.id, task.id)
        _assert_metrics_match_tasks(store, client.id)

    def test_already_done_is_rejected(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Once")
        task_service.complete_task(user.id, task.id)
        with pytest.raises(ValidationError):
            task_service.complete_task(user.id, task.id)
        assert store.users.get_user(user.id).gamification.action_points == 10

    def test_missing_task(self, task_service, user):
        with pytest.raises(NotFoundError):
            task_service.complete_task(user.id, 404)

    def test_ledger_failure_rolls_back_task_and_metrics(self, task_service, store, user, client):
        task = task_service.create_task(user.id, client.id, "Fragile", status="in-progress")
        with patch.object(
            store.users, "save_gamification", side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            with pytest.raises(sqlite3.OperationalError):
                task_service.complete_task(user.id, task.id)

        assert store.tasks.get_task(task.id).status == "in-progress"
        assert _metrics(store, client.id).tasks_in_progress == 1
        assert store.activities.list_activity(user.id) == []


class TestDeleteTask:
    def test_delete_in_progress_decrements(self, task_service, store, user, client):
        tasks = [
            task_service.create_task(user.id, client.id, f"T{i}", status="in-progress")
            for i in range(3)
        ]
        assert _metrics(store, client.id).tasks_in_progress == 3

        task_service.delete_task(user.id, tasks[0].id)

        assert _metrics(store, client.id).tasks_in_progress == 2
        assert store.tasks.get_task(tasks[0].id) is None

    def test_delete_missing(self, task_service, user):
        with pytest.raises(NotFoundError):
            task_service.delete_task(user.id, 1)

    def test_delete_removes_task_timers(self, task_service, store, clock, user, client):
        timers = TimerService(store, clock)
        task = task_service.create_task(user.id, client.id, "Timed")
        keep = task_service.create_task(user.id, client.id, "Still here")
        timers.start(user.id, task_id=task.id)
        kept_task_timer = timers.start(user.id, task_id=keep.id)
        client_timer = timers.start(user.id, client_id=client.id)

        task_service.delete_task(user.id, task.id)

        remaining = {t.id for t in store.timers.list_timers(user.id)}
        assert remaining == {kept_task_timer.id, client_timer.id}


class TestMetricsStayConsistent:
    def test_mixed_operation_sequence(self, task_service, store, user, client):
        other = store.clients.add_client(user.id, "Beta Books", created_at="2026-03-01T00:00:00+00:00")

        def check():
            _assert_metrics_match_tasks(store, client.id)
            _assert_metrics_match_tasks(store, other.id)

        a = task_service.create_task(user.id, client.id, "A")
        check()
        b = task_service.create_task(user.id, client.id, "B", status="in-progress")
        check()
        task_service.update_task(user.id, a.id, {"status": "in-progress"})
        check()
        task_service.update_task(user.id, b.id, {"client_id": other.id})
        check()
        task_service.complete_task(user.id, b.id)
        check()
        task_service.update_task(user.id, b.id, {"client_id": client.id, "status": "todo"})
        check()
        task_service.complete_task(user.id, a.id)
        check()
        task_service.delete_task(user.id, a.id)
        check()
        task_service.delete_task(user.id, b.id)
        check()
        assert _metrics(store, client.id).total == 0


class TestConcurrentWrites:
    """Two threads racing on one task; every read is slowed to widen the window."""

    @pytest.fixture
    def slow_reads(self, store):
        read_task = store.tasks.get_task

        def slow_get_task(*args, **kwargs):
            found = read_task(*args, **kwargs)
            time.sleep(0.2)
            return found

        with patch.object(store.tasks, "get_task", side_effect=slow_get_task):
            yield

    @staticmethod
    def _race(*calls):
        barrier = threading.Barrier(len(calls))
        outcomes = []

        def run(call):
            barrier.wait()
            try:
                call()
                outcomes.append("ok")
            except ValidationError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=run, args=(c,)) for c in calls]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        return sorted(outcomes)

    def test_double_completion_rewards_once(self, task_service, store, user, client, slow_reads):
        task = task_service.create_task(user.id, client.id, "Launch", impact_score=50, status="in-progress")

        def complete():
            task_service.complete_task(user.id, task.id)

        assert self._race(complete, complete) == ["ok", "rejected"]

        m = _metrics(store, client.id)
        assert (m.tasks_in_progress, m.tasks_completed) == (0, 1)
        profile = store.users.get_user(user.id).gamification
        assert (profile.action_points, profile.experience) == (110, 170)
        assert len(store.activities.list_activity(user.id)) == 1

    def test_competing_status_updates(self, task_service, store, user, client, slow_reads):
        task = task_service.create_task(user.id, client.id, "Contested")

        outcomes = self._race(
            lambda: task_service.update_task(user.id, task.id, {"status": "in-progress"}),
            lambda: task_service.update_task(user.id, task.id, {"status": "done"}),
        )

        assert outcomes == ["ok", "ok"]
        _assert_metrics_match_tasks(store, client.id)
        assert _metrics(store, client.id).total == 1


class TestImpactWorkflow:
    def _seed(self, task_service, user, client, scores):
        return [
            task_service.create_task(user.id, client.id, f"T{s}", impact_score=s)
            for s in scores
        ]

    def test_analyze_and_high_impact(self, task_service, user, client):
        self._seed(task_service, user, client, [10, 90, 50, 30, 70])
        analysis = task_service.analyze_impact(user.id)
        assert [s.current_impact_score for s in analysis.recommended_high_impact_tasks] == [90]
        assert [t.impact_score for t in task_service.high_impact_tasks(user.id)] == [90]

    def test_client_impact(self, task_service, user, client):
        tasks = self._seed(task_service, user, client, [20, 60])
        task_service.complete_task(user.id, tasks[0].id)
        stats, top = task_service.client_impact(user.id, client.id)
        assert stats.total_tasks == 2
        assert stats.completion_rate == pytest.approx(50.0)
        assert stats.average_impact == pytest.approx(40.0)
        assert [t.id for t in top] == [tasks[1].id]

    def test_apply_is_best_effort(self, task_service, store, user, client):
        a, b = self._seed(task_service, user, client, [80, 10])
        results = task_service.apply_impact_updates(user.id, [
            ImpactUpdate(a.id, True, 85),
            ImpactUpdate(999, True, 50),
            ImpactUpdate(b.id, False, 150),
            ImpactUpdate(b.id, False, 15),
        ])

        assert [r.success for r in results] == [True, False, False, True]
        assert "not found" in results[1].error
        assert store.tasks.get_task(a.id).is_high_impact is True
        assert store.tasks.get_task(a.id).impact_score == 85
        assert store.tasks.get_task(b.id).impact_score == 15

    def test_set_impact_needs_a_field(self, task_service, user, client):
        (task,) = self._seed(task_service, user, client, [10])
        with pytest.raises(ValidationError):
            task_service.set_impact(user.id, task.id)
