"""
HTTP tests for /api/v1/requests and equipment scrapping.

Checks status codes, the standard error body and the advisory audit flags.
"""

import importlib
from unittest.mock import patch

import pytest

config_module = importlib.import_module("gearguard.config")
from gearguard.services.request_store import AuditSink

BASE = "/api/v1/requests"


def _create(client, equipment, **overrides):
    body = {
        "title": "Compressor overheating",
        "description": "Trips after 20 minutes",
        "equipment_id": equipment.id,
        "user_id": "requester-1",
        "role": "requester",
    }
    body.update(overrides)
    return client.post(BASE, json=body)


class TestCreateAndRead:
    def test_create_returns_201(self, client, equipment):
        res = _create(client, equipment)
        assert res.status_code == 201
        data = res.get_json()
        assert data["request"]["status"] == "new"
        assert data["audit_log_success"] is True

    def test_create_requires_user(self, client, equipment):
        res = _create(client, equipment, user_id=None)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_validation_error_is_422_with_details(self, client, equipment):
        res = _create(client, equipment, title="")
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_CONSTRAINT"
        assert body["details"] == {"title": "required"}

    def test_unknown_schedule_is_422_not_retried(self, client, equipment, caplog):
        res = _create(client, equipment, schedule_id="no-such-schedule")
        assert res.status_code == 422
        assert res.get_json()["details"] == {"schedule_id": "schedule not found"}
        assert "collision" not in caplog.text

    def test_non_string_priority_is_422(self, client, equipment):
        res = _create(client, equipment, priority=["high"])
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"priority"}

    def test_non_object_body_is_400(self, client):
        res = client.post(BASE, json=["title", "description"])
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_user_from_headers(self, client, equipment):
        res = client.post(
            BASE,
            json={"title": "Leak", "description": "Pump seal", "equipment_id": equipment.id},
            headers={"X-User-Id": "tech-9", "X-User-Role": "technician"},
        )
        assert res.status_code == 201
        assert res.get_json()["request"]["requester_id"] == "tech-9"

    def test_detail_includes_available_transitions(self, client, make_request):
        req = make_request(status="in_progress")
        res = client.get(f"{BASE}/{req.id}")
        assert res.status_code == 200
        assert res.get_json()["available_transitions"] == ["completed", "on_hold", "cancelled"]

    def test_detail_missing_is_404(self, client):
        res = client.get(f"{BASE}/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_and_filters(self, client, make_request):
        make_request(status="new")
        make_request(status="assigned")
        res = client.get(f"{BASE}?status=assigned")
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

    def test_board(self, client, make_request):
        make_request(status="new")
        res = client.get(f"{BASE}/board")
        data = res.get_json()
        assert data["counts"]["new"] == 1
        assert set(data["columns"]) == {"new", "assigned", "in_progress", "on_hold", "completed"}

    def test_overdue_count(self, client, make_request):
        res = client.get(f"{BASE}/overdue-count")
        assert res.get_json() == {"overdue_count": 0}


class TestLifecycleEndpoints:
    def test_assign_then_start(self, client, make_request):
        req = make_request(status="new")

        res = client.post(f"{BASE}/{req.id}/assign",
                          json={"user_id": "mgr-1", "role": "manager", "technician_id": "tech-1"})
        assert res.status_code == 200
        assert res.get_json()["new_status"] == "assigned"

        res = client.post(f"{BASE}/{req.id}/status",
                          json={"user_id": "tech-1", "role": "technician", "status": "in_progress"})
        assert res.status_code == 200
        assert res.get_json()["request"]["started_at"] is not None

    def test_invalid_transition_is_409(self, client, make_request):
        req = make_request(status="assigned")
        res = client.post(f"{BASE}/{req.id}/status", json={"user_id": "u-1", "status": "verified"})
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["allowed"] == ["in_progress", "new", "cancelled"]

    def test_assign_wrong_state_is_409(self, client, make_request):
        req = make_request(status="assigned")
        res = client.post(f"{BASE}/{req.id}/assign",
                          json={"user_id": "mgr-1", "technician_id": "tech-2"})
        assert res.status_code == 409
        assert res.get_json()["details"]["required_status"] == "new"

    def test_forbidden_is_403(self, client, make_request):
        req = make_request(status="new")
        res = client.post(f"{BASE}/{req.id}/assign",
                          json={"user_id": "tech-1", "role": "technician", "technician_id": "tech-1"})
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_status_required(self, client, make_request):
        req = make_request()
        res = client.post(f"{BASE}/{req.id}/status", json={"user_id": "u-1"})
        assert res.status_code == 400

    def test_complete_without_notes_is_422(self, client, make_request):
        req = make_request(status="in_progress")
        res = client.post(f"{BASE}/{req.id}/complete", json={"user_id": "tech-1"})
        assert res.status_code == 422
        assert client.get(f"{BASE}/{req.id}").get_json()["status"] == "in_progress"

    def test_complete_and_logs(self, client, make_request):
        req = make_request(status="in_progress")
        res = client.post(f"{BASE}/{req.id}/complete",
                          json={"user_id": "tech-1", "resolution_notes": "Replaced fan",
                                "labor_hours": 1.25})
        assert res.status_code == 200
        assert res.get_json()["request"]["labor_hours"] == 1.25

        logs = client.get(f"{BASE}/{req.id}/logs").get_json()
        assert logs["total"] == 1
        assert logs["items"][0]["action"] == "completed"

    def test_work_log(self, client, make_request):
        req = make_request(status="in_progress")
        res = client.post(f"{BASE}/{req.id}/work-logs",
                          json={"user_id": "tech-1", "notes": "Measured vibration"})
        assert res.status_code == 200
        assert res.get_json()["audit_log_success"] is True

    def test_audit_failure_is_success_with_warning(self, client, make_request):
        req = make_request(status="assigned")

        with patch.object(AuditSink, "append", side_effect=RuntimeError("audit store down")):
            res = client.post(f"{BASE}/{req.id}/status",
                              json={"user_id": "tech-1", "status": "in_progress"})

        assert res.status_code == 200
        data = res.get_json()
        assert data["new_status"] == "in_progress"
        assert data["audit_log_success"] is False
        assert data["audit_log_error"] == "audit store down"


class TestEditAndScrap:
    def test_patch_changes_priority(self, client, make_request):
        req = make_request(status="assigned", priority="low", assigned_to_id="tech-1")
        res = client.patch(f"{BASE}/{req.id}", json={
            "priority": "critical", "user_id": "lead-1", "role": "team_leader",
        })
        assert res.status_code == 200
        data = res.get_json()
        assert data["request"]["priority"] == "critical"
        assert data["changes"] == [{"field": "priority", "old_value": "low", "new_value": "critical"}]

        logs = client.get(f"{BASE}/{req.id}/logs").get_json()["items"]
        assert [log["action"] for log in logs] == ["priority_changed"]

    def test_patch_closed_request_is_409(self, client, make_request):
        req = make_request(status="completed")
        res = client.patch(f"{BASE}/{req.id}", json={"priority": "low", "user_id": "mgr-1"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_patch_status_is_422(self, client, make_request):
        req = make_request(status="new")
        res = client.patch(f"{BASE}/{req.id}", json={"status": "completed", "user_id": "mgr-1"})
        assert res.status_code == 422
        assert res.get_json()["details"] == {"status": "not editable"}

    def test_scrap_equipment(self, client, equipment, make_request):
        req = make_request(status="in_progress")
        res = client.post(f"/api/v1/equipment/{equipment.id}/scrap", json={
            "reason": "Cracked bed casting", "user_id": "mgr-1", "role": "manager",
        })
        assert res.status_code == 200
        data = res.get_json()
        assert data["equipment"]["status"] == "scrapped"
        assert data["open_request_ids"] == [req.id]

    def test_scrap_without_reason_is_422(self, client, equipment):
        res = client.post(f"/api/v1/equipment/{equipment.id}/scrap", json={"user_id": "mgr-1"})
        assert res.status_code == 422
        assert res.get_json()["details"] == {"reason": "required"}

    def test_scrap_missing_equipment_is_404(self, client):
        res = client.post("/api/v1/equipment/nope/scrap", json={"reason": "x", "user_id": "mgr-1"})
        assert res.status_code == 404


class TestAppLevel:
    def test_unknown_api_path_is_json_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"

    def test_method_not_allowed(self, client):
        res = client.delete(BASE)
        assert res.status_code == 405

    @pytest.mark.parametrize("path", ["/api/v1/health/ready", "/api/v1/health/live"])
    def test_health(self, client, path):
        res = client.get(path)
        assert res.status_code == 200

    def test_timing_headers(self, client):
        res = client.get("/api/v1/health/ready")
        assert "X-Request-Duration-Ms" in res.headers
        assert res.headers["X-Request-ID"]

    def test_rate_limit_storage_from_config(self, app):
        assert app.config["RATELIMIT_STORAGE_URI"] == config_module.Config.RATELIMIT_STORAGE_URI

    def test_redis_url_selects_rate_limit_storage(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
        try:
            reloaded = importlib.reload(config_module)
            assert reloaded.Config.RATELIMIT_STORAGE_URI == "redis://cache:6379/0"
        finally:
            monkeypatch.undo()
            importlib.reload(config_module)
