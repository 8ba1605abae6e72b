"""Tests for taskdesk.api.server — HTTP endpoints and error mapping."""

import pytest
from fastapi.testclient import TestClient

from taskdesk.api.server import create_app
from taskdesk.config import settings
from taskdesk.data.models import Badge


@pytest.fixture
def app(store, clock):
    return create_app(store=store, clock=clock)


@pytest.fixture
def api(app):
    return TestClient(app)


@pytest.fixture
def headers(user):
    return {"X-User-Id": str(user.id)}


def _new_client(api, headers, name="Acme Bakery"):
    resp = api.post("/api/clients", json={"name": name}, headers=headers)
    assert resp.status_code == 201
    return resp.json()


def _new_task(api, headers, client_id, **fields):
    resp = api.post("/api/tasks", json={"client_id": client_id, "title": "Task", **fields}, headers=headers)
    assert resp.status_code == 201
    return resp.json()


class TestAuthAndHealth:
    def test_health_needs_no_identity(self, api):
        assert api.get("/health").json() == {"status": "ok"}

    @pytest.mark.parametrize("value", [None, "", "abc", "0"])
    def test_bad_identity_is_401(self, api, value):
        hdrs = {} if value is None else {"X-User-Id": value}
        assert api.get("/api/tasks", headers=hdrs).status_code == 401

    def test_register_and_me(self, api):
        resp = api.post("/api/users", json={"username": "maria", "email": "m@example.com"})
        assert resp.status_code == 201
        user_id = resp.json()["id"]

        me = api.get("/api/users/me", headers={"X-User-Id": str(user_id)}).json()
        assert me["username"] == "maria"
        assert me["gamification"]["level"] == 1
        assert me["progress"]["next_level_experience"] == 100


class TestTaskFlow:
    def test_create_complete_and_metrics(self, api, headers):
        client = _new_client(api, headers)
        task = _new_task(api, headers, client["id"], impact_score=50, status="in-progress")

        resp = api.post(f"/api/tasks/{task['id']}/complete", json={"actual_minutes": 30}, headers=headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["task"]["status"] == "done"
        assert body["rewards"]["points"] == 110
        assert body["rewards"]["experience"] == 170
        assert body["rewards"]["level_up"] is True

        metrics = api.get(f"/api/clients/{client['id']}", headers=headers).json()["metrics"]
        assert metrics["tasks_in_progress"] == 0
        assert metrics["tasks_completed"] == 1

    def test_complete_without_body(self, api, headers):
        client = _new_client(api, headers)
        task = _new_task(api, headers, client["id"])
        assert api.post(f"/api/tasks/{task['id']}/complete", headers=headers).status_code == 200

    def test_update_only_sent_fields(self, api, headers):
        client = _new_client(api, headers)
        task = _new_task(api, headers, client["id"], priority="high")
        resp = api.put(f"/api/tasks/{task['id']}", json={"status": "in-progress"}, headers=headers)
        assert resp.json()["priority"] == "high"
        assert resp.json()["status"] == "in-progress"

    def test_delete_task(self, api, headers):
        client = _new_client(api, headers)
        task = _new_task(api, headers, client["id"])
        assert api.delete(f"/api/tasks/{task['id']}", headers=headers).json() == {"deleted": task["id"]}
        assert api.get(f"/api/tasks/{task['id']}", headers=headers).status_code == 404

    def test_list_filters(self, api, headers):
        client = _new_client(api, headers)
        _new_task(api, headers, client["id"], status="done")
        _new_task(api, headers, client["id"])
        resp = api.get("/api/tasks", params={"status": "done"}, headers=headers)
        assert len(resp.json()) == 1


class TestErrorMapping:
    def test_validation_error_is_400(self, api, headers):
        client = _new_client(api, headers)
        resp = api.post("/api/tasks", json={"client_id": client["id"], "title": "X", "priority": "asap"}, headers=headers)
        assert resp.status_code == 400
        assert "priority" in resp.json()["detail"]

    def test_malformed_body_is_400(self, api, headers):
        assert api.post("/api/tasks", json={"title": "no client"}, headers=headers).status_code == 400

    def test_not_found_is_404(self, api, headers):
        resp = api.get("/api/clients/999", headers=headers)
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Client 999 not found"}

    def test_other_users_records_are_404(self, api, headers, store):
        client = _new_client(api, headers)
        eve = store.users.add_user("eve")
        assert api.get(f"/api/clients/{client['id']}", headers={"X-User-Id": str(eve.id)}).status_code == 404

    def test_unexpected_error_is_500_without_detail(self, app, headers, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", False)
        services = app.state.services
        monkeypatch.setattr(services.clients, "list_clients", lambda *a, **k: 1 / 0)
        resp = TestClient(app, raise_server_exceptions=False).get("/api/clients", headers=headers)
        assert resp.status_code == 500
        assert resp.json() == {"detail": "Internal server error"}

    def test_debug_exposes_message(self, app, headers, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", True)
        services = app.state.services
        monkeypatch.setattr(services.clients, "list_clients", lambda *a, **k: 1 / 0)
        resp = TestClient(app, raise_server_exceptions=False).get("/api/clients", headers=headers)
        assert resp.status_code == 500
        assert "division by zero" in resp.json()["detail"]


class TestImpactEndpoints:
    def test_analyze_and_apply(self, api, headers):
        client = _new_client(api, headers)
        tasks = [_new_task(api, headers, client["id"], impact_score=s) for s in (10, 90, 40)]

        analysis = api.get("/api/task-impact/analyze", headers=headers).json()
        recommended = [s["task_id"] for s in analysis["recommended_high_impact_tasks"]]
        assert recommended == [tasks[1]["id"]]
        assert len(analysis["other_tasks"]) == 2

        resp = api.post("/api/task-impact/apply", json={"updates": [
            {"task_id": tasks[1]["id"], "is_high_impact": True, "impact_score": 90},
            {"task_id": 999, "is_high_impact": True, "impact_score": 10},
        ]}, headers=headers)
        results = resp.json()["results"]
        assert [r["success"] for r in results] == [True, False]
        assert results[0]["task"]["is_high_impact"] is True
        assert results[1]["task"] is None

        high = api.get("/api/task-impact/high-impact", headers=headers).json()
        assert [t["id"] for t in high] == [tasks[1]["id"]]

    def test_set_single_task_and_client_view(self, api, headers):
        client = _new_client(api, headers)
        task = _new_task(api, headers, client["id"])
        resp = api.put(f"/api/task-impact/task/{task['id']}", json={"impact_score": 70}, headers=headers)
        assert resp.json()["impact_score"] == 70

        view = api.get(f"/api/task-impact/client/{client['id']}", headers=headers).json()
        assert view["statistics"]["average_impact"] == 70
        assert [t["id"] for t in view["high_impact_tasks"]] == [task["id"]]


class TestProfitabilityEndpoints:
    def test_put_get_and_summary(self, api, headers):
        client = _new_client(api, headers)
        resp = api.put(
            f"/api/profitability/{client['id']}",
            json={"hourly_rate": 100, "target_hours": 40, "spent_hours": 30},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["profitability_percentage"] == pytest.approx(-25.0)

        record = api.get(f"/api/profitability/{client['id']}", headers=headers).json()
        assert record["remaining_hours"] == pytest.approx(10.0)

        summary = api.get("/api/profitability/summary", headers=headers).json()
        assert summary["client_count"] == 1
        assert summary["unprofitable_clients"] == 1

    def test_zero_rate_is_400(self, api, headers):
        client = _new_client(api, headers)
        resp = api.put(f"/api/profitability/{client['id']}", json={"hourly_rate": 0}, headers=headers)
        assert resp.status_code == 400


class TestTimerEndpoints:
    def test_start_pause_resume_stop(self, api, headers, clock):
        client = _new_client(api, headers)
        timer = api.post("/api/timers", json={"client_id": client["id"]}, headers=headers).json()
        clock.advance(minutes=10)
        assert api.post(f"/api/timers/{timer['id']}/pause", headers=headers).json()["is_running"] is False
        clock.advance(minutes=5)
        api.post(f"/api/timers/{timer['id']}/resume", headers=headers)
        clock.advance(minutes=10)
        stopped = api.post(f"/api/timers/{timer['id']}/stop", headers=headers).json()
        assert stopped["duration"] == 20 * 60
        assert stopped["current_duration"] == 20 * 60

    def test_unknown_action_is_404(self, api, headers):
        client = _new_client(api, headers)
        timer = api.post("/api/timers", json={"client_id": client["id"]}, headers=headers).json()
        assert api.post(f"/api/timers/{timer['id']}/rewind", headers=headers).status_code == 404

    def test_timer_needs_one_target(self, api, headers):
        assert api.post("/api/timers", json={}, headers=headers).status_code == 400


class TestObjectiveAndClientEndpoints:
    def test_objective_progress(self, api, headers):
        client = _new_client(api, headers)
        obj = api.post(
            "/api/objectives",
            json={"client_id": client["id"], "title": "Newsletter", "target_value": 4},
            headers=headers,
        ).json()
        updated = api.put(f"/api/objectives/{obj['id']}", json={"current_value": 3}, headers=headers).json()
        assert updated["progress"] == 75

    def test_delete_client_cascades(self, api, headers):
        client = _new_client(api, headers)
        _new_task(api, headers, client["id"])
        deletion = api.delete(f"/api/clients/{client['id']}", headers=headers).json()
        assert deletion["tasks_deleted"] == 1
        assert api.get("/api/tasks", headers=headers).json() == []

    def test_update_client_contacts(self, api, headers):
        client = _new_client(api, headers)
        resp = api.put(
            f"/api/clients/{client['id']}",
            json={"contacts": [{"name": "Lee", "is_main": True}]},
            headers=headers,
        )
        assert resp.json()["contacts"][0]["name"] == "Lee"


class TestGamificationEndpoints:
    def test_badges_and_activity(self, api, headers, store):
        badge = store.reference.add_badge(Badge(
            id=0, name="Closer", description="Close a deal", category="clients",
            reward_experience=10, reward_action_points=5,
        ))
        resp = api.post(f"/api/gamification/badges/{badge.id}/award", headers=headers)
        assert resp.json()["rewards"]["points"] == 5
        assert api.post(f"/api/gamification/badges/{badge.id}/award", headers=headers).status_code == 400

        badges = api.get("/api/gamification/badges", headers=headers).json()
        assert badges[0]["earned"] is True

        activity = api.get("/api/gamification/activity", headers=headers).json()
        assert activity[0]["type"] == "badge_earned"

        profile = api.get("/api/gamification/profile", headers=headers).json()
        assert profile["action_points"] == 5
        assert profile["progress"]["progress"] == pytest.approx(10.0)

    def test_record_activity_grants_no_reward(self, api, headers):
        resp = api.post(
            "/api/gamification/activity",
            json={"type": "client_call", "description": "Weekly sync"},
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.json()["rewards"] is None
        assert resp.json()["activity"]["points"] == 0

        profile = api.get("/api/gamification/profile", headers=headers).json()
        assert (profile["action_points"], profile["experience"]) == (0, 0)

    def test_record_activity_rejects_self_credited_rewards(self, api, headers):
        resp = api.post(
            "/api/gamification/activity",
            json={"type": "client_call", "points": 1000, "experience": 5000},
            headers=headers,
        )
        assert resp.status_code == 400
        profile = api.get("/api/gamification/profile", headers=headers).json()
        assert profile["experience"] == 0
