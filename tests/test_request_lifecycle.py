"""
Tests for the maintenance request lifecycle engine.

Covers:
    1. Scenarios: assign, blocked verify, complete, verify, terminal cancel
    2. Side effects: started_at idempotence, reopen, cancellation fields
    3. Input validation happens before any store access
    4. Role gating
    5. Best-effort audit: sink failure never undoes the primary change
    6. Optimistic concurrency on the status column
"""

import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from gearguard.core.exceptions import (
    ConcurrentModificationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from gearguard.models import db
from gearguard.models.maintenance import MaintenanceLog, MaintenanceRequest
from gearguard.services.request_lifecycle import RequestLifecycle
from gearguard.services.request_store import AuditSink, RequestStore

T1 = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
T2 = datetime(2025, 3, 2, 14, 0, tzinfo=timezone.utc)


def _naive(dt):
    """SQLite hands back naive datetimes; compare on wall-clock UTC."""
    return dt.replace(tzinfo=None) if dt else None


def _fresh(req_id):
    db.session.expire_all()
    return db.session.get(MaintenanceRequest, req_id)


def _logs(req_id):
    return MaintenanceLog.query.filter_by(request_id=req_id).all()


@pytest.fixture()
def engine():
    return RequestLifecycle(clock=lambda: T1)


class _FailingSink:
    def append(self, entry):
        raise RuntimeError("audit store down")


class _DatabaseGoneSink:
    """Fails the way a dropped connection does: rolled back, then every query errors."""

    def __init__(self, monkeypatch):
        self.monkeypatch = monkeypatch

    def append(self, entry):
        session = db.session()
        session.rollback()

        def _gone(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("server closed the connection"))

        self.monkeypatch.setattr(session, "execute", _gone)
        raise OperationalError("INSERT INTO maintenance_logs", {}, Exception("server closed the connection"))


# ═════════════════════════════════════════════════════════════════════════════
# 1. Scenarios
# ═════════════════════════════════════════════════════════════════════════════


class TestScenarios:
    def test_assign_new_request(self, engine, make_request):
        req = make_request(status="new")

        result = engine.assign_request(req.id, "tech-1", "mgr-1")

        assert result["new_status"] == "assigned"
        assert result["request"]["assigned_to_id"] == "tech-1"
        stored = _fresh(req.id)
        assert stored.status == "assigned"
        assert stored.assigned_to_id == "tech-1"
        assert stored.assigned_by_id == "mgr-1"

    def test_assign_with_team(self, engine, make_request, team):
        req = make_request(status="new")
        engine.assign_request(req.id, "tech-1", "mgr-1", team_id=team.id)
        assert _fresh(req.id).assigned_team_id == team.id

    def test_assigned_cannot_jump_to_verified(self, engine, make_request):
        req = make_request(status="assigned")

        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.update_status(req.id, "verified", "user-1")

        assert exc_info.value.allowed == ["in_progress", "new", "cancelled"]
        assert _fresh(req.id).status == "assigned"

    def test_complete_in_progress_request(self, engine, make_request):
        req = make_request(status="in_progress")

        result = engine.complete_request(req.id, "tech-1", "Replaced belt")

        assert result["previous_status"] == "in_progress"
        stored = _fresh(req.id)
        assert stored.status == "completed"
        assert _naive(stored.completed_at) == _naive(T1)
        assert stored.resolution_notes == "Replaced belt"

    def test_verify_completed_request(self, engine, make_request):
        req = make_request(status="completed", resolution_notes="Replaced belt")

        engine.update_status(req.id, "verified", "manager-1")

        stored = _fresh(req.id)
        assert stored.status == "verified"
        assert stored.verified_by_id == "manager-1"
        assert _naive(stored.verified_at) == _naive(T1)

    @pytest.mark.parametrize("target", ["new", "assigned", "in_progress", "completed", "verified"])
    def test_cancelled_is_terminal(self, engine, make_request, target):
        req = make_request(status="cancelled")

        with pytest.raises(InvalidTransitionError, match="terminal state") as exc_info:
            engine.update_status(req.id, target, "user-1")

        assert exc_info.value.allowed == []
        assert _fresh(req.id).status == "cancelled"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Side effects
# ═════════════════════════════════════════════════════════════════════════════


class TestSideEffects:
    def test_started_at_set_once(self, make_request):
        req = make_request(status="assigned")

        RequestLifecycle(clock=lambda: T1).update_status(req.id, "in_progress", "tech-1")
        RequestLifecycle(clock=lambda: T2).update_status(req.id, "on_hold", "tech-1")
        RequestLifecycle(clock=lambda: T2).update_status(req.id, "in_progress", "tech-1")

        stored = _fresh(req.id)
        assert stored.status == "in_progress"
        assert _naive(stored.started_at) == _naive(T1)
        assert _naive(stored.updated_at) == _naive(T2)

    def test_reopen_keeps_started_at_and_logs_reopened(self, make_request):
        req = make_request(status="completed", started_at=T1, completed_at=T1,
                           resolution_notes="Tightened belt")

        RequestLifecycle(clock=lambda: T2).update_status(
            req.id, "in_progress", "mgr-1", "Noise is back",
        )

        stored = _fresh(req.id)
        assert stored.status == "in_progress"
        assert _naive(stored.started_at) == _naive(T1)
        (log,) = _logs(req.id)
        assert log.action == "reopened"
        assert log.old_value == "completed"
        assert log.new_value == "in_progress"
        assert log.notes == "Noise is back"

    def test_recompletion_restamps_completed_at(self, make_request):
        req = make_request(status="in_progress", completed_at=T1, resolution_notes="First fix")

        RequestLifecycle(clock=lambda: T2).complete_request(req.id, "tech-1", "Second fix")

        stored = _fresh(req.id)
        assert _naive(stored.completed_at) == _naive(T2)
        assert stored.resolution_notes == "Second fix"

    def test_cancel_records_who_and_why(self, engine, make_request):
        req = make_request(status="on_hold")

        engine.update_status(req.id, "cancelled", "mgr-1", "Machine replaced")

        stored = _fresh(req.id)
        assert stored.status == "cancelled"
        assert stored.cancelled_by_id == "mgr-1"
        assert stored.cancellation_reason == "Machine replaced"
        assert _naive(stored.cancelled_at) == _naive(T1)
        assert _logs(req.id)[0].action == "cancelled"

    def test_unassign_clears_assignee(self, engine, make_request):
        req = make_request(status="assigned", assigned_to_id="tech-1", assigned_by_id="mgr-1")

        engine.update_status(req.id, "new", "mgr-1")

        stored = _fresh(req.id)
        assert stored.status == "new"
        assert stored.assigned_to_id is None
        assert stored.assigned_by_id is None
        assert _logs(req.id)[0].action == "status_changed"

    def test_generic_completion_seeds_resolution_notes(self, engine, make_request):
        req = make_request(status="in_progress")
        engine.update_status(req.id, "completed", "tech-1", "Cleaned filter")
        assert _fresh(req.id).resolution_notes == "Cleaned filter"

    def test_generic_completion_keeps_existing_notes(self, engine, make_request):
        req = make_request(status="in_progress", resolution_notes="Original notes")
        engine.update_status(req.id, "completed", "tech-1", "Later remark")
        assert _fresh(req.id).resolution_notes == "Original notes"

    def test_complete_stores_work_record(self, engine, make_request):
        req = make_request(status="in_progress")

        engine.complete_request(
            req.id, "tech-1", "Replaced bearing",
            labor_hours=2.5, parts_used="6204 bearing", actual_cost=48.0,
        )

        stored = _fresh(req.id)
        assert stored.labor_hours == 2.5
        assert stored.parts_used == "6204 bearing"
        assert stored.actual_cost == 48.0

    def test_status_change_log_entry(self, engine, make_request):
        req = make_request(status="assigned")

        engine.update_status(req.id, "in_progress", "tech-1", "Starting now")

        (log,) = _logs(req.id)
        assert log.action == "status_changed"
        assert log.user_id == "tech-1"
        assert log.field_changed == "status"
        assert log.old_value == "assigned"
        assert log.new_value == "in_progress"
        assert _naive(log.created_at) == _naive(T1)


# ═════════════════════════════════════════════════════════════════════════════
# 3. Validation before store access
# ═════════════════════════════════════════════════════════════════════════════


class TestValidation:
    @pytest.mark.parametrize("notes", ["", "   ", None])
    def test_complete_requires_resolution_notes(self, notes):
        store = MagicMock()
        engine = RequestLifecycle(store=store, audit_sink=MagicMock(), clock=lambda: T1)

        with pytest.raises(ValidationError) as exc_info:
            engine.complete_request("req-1", "tech-1", notes)

        assert exc_info.value.details == {"resolution_notes": "required"}
        store.get.assert_not_called()
        store.update.assert_not_called()

    def test_blank_notes_leave_status_alone(self, engine, make_request):
        req = make_request(status="in_progress")
        with pytest.raises(ValidationError):
            engine.complete_request(req.id, "tech-1", "")
        assert _fresh(req.id).status == "in_progress"
        assert _logs(req.id) == []

    @pytest.mark.parametrize("field,kwargs", [
        ("labor_hours", {"labor_hours": -1}),
        ("actual_cost", {"actual_cost": -0.01}),
        ("labor_hours", {"labor_hours": "two"}),
        ("labor_hours", {"labor_hours": float("nan")}),
        ("labor_hours", {"labor_hours": float("inf")}),
        ("actual_cost", {"actual_cost": float("nan")}),
    ])
    def test_complete_rejects_bad_numbers(self, field, kwargs):
        store = MagicMock()
        engine = RequestLifecycle(store=store, audit_sink=MagicMock())

        with pytest.raises(ValidationError) as exc_info:
            engine.complete_request("req-1", "tech-1", "Done", **kwargs)

        assert field in exc_info.value.details
        store.get.assert_not_called()

    def test_work_log_rejects_nan_hours(self):
        store = MagicMock()
        engine = RequestLifecycle(store=store, audit_sink=MagicMock())
        with pytest.raises(ValidationError) as exc_info:
            engine.add_work_log("req-1", "tech-1", "Checked oil", labor_hours=float("nan"))
        assert exc_info.value.details == {"labor_hours": "invalid"}
        store.update.assert_not_called()

    @pytest.mark.parametrize("call", [
        lambda e: e.update_status("req-1", "in_progress", None),
        lambda e: e.update_status("req-1", "verified", "  "),
        lambda e: e.assign_request("req-1", "tech-1", ""),
        lambda e: e.complete_request("req-1", None, "Done"),
        lambda e: e.add_work_log("req-1", None, "Checked oil"),
    ])
    def test_acting_user_required(self, call):
        store = MagicMock()
        sink = MagicMock()
        engine = RequestLifecycle(store=store, audit_sink=sink)

        with pytest.raises(ValidationError):
            call(engine)

        store.get.assert_not_called()
        store.update.assert_not_called()
        sink.append.assert_not_called()

    def test_assign_requires_technician(self):
        store = MagicMock()
        engine = RequestLifecycle(store=store, audit_sink=MagicMock())
        with pytest.raises(ValidationError):
            engine.assign_request("req-1", "  ", "mgr-1")
        store.get.assert_not_called()

    @pytest.mark.parametrize("status", ["assigned", "in_progress", "on_hold", "completed",
                                        "verified", "cancelled"])
    def test_assign_only_from_new(self, engine, make_request, status):
        req = make_request(status=status, assigned_to_id="tech-0")

        with pytest.raises(InvalidStateError, match="Required status: 'new'"):
            engine.assign_request(req.id, "tech-1", "mgr-1")

        stored = _fresh(req.id)
        assert stored.status == status
        assert stored.assigned_to_id == "tech-0"

    def test_missing_request(self, engine):
        with pytest.raises(NotFoundError):
            engine.update_status("does-not-exist", "assigned", "mgr-1")


# ═════════════════════════════════════════════════════════════════════════════
# 4. Role gating
# ═════════════════════════════════════════════════════════════════════════════


class TestRoles:
    def test_technician_cannot_assign(self, engine, make_request):
        req = make_request(status="new")

        with pytest.raises(PermissionDenied):
            engine.assign_request(req.id, "tech-2", "tech-1", actor_role="technician")

        assert _fresh(req.id).status == "new"

    @pytest.mark.parametrize("role", ["admin", "manager", "team_leader"])
    def test_supervisors_can_assign(self, engine, make_request, role):
        req = make_request(status="new")
        result = engine.assign_request(req.id, "tech-1", "boss-1", actor_role=role)
        assert result["new_status"] == "assigned"

    def test_requester_can_verify(self, engine, make_request):
        req = make_request(status="completed")
        result = engine.update_status(req.id, "verified", "requester-1", actor_role="requester")
        assert result["new_status"] == "verified"

    def test_technician_cannot_verify(self, engine, make_request):
        req = make_request(status="completed")
        with pytest.raises(PermissionDenied):
            engine.update_status(req.id, "verified", "tech-1", actor_role="technician")
        assert _fresh(req.id).status == "completed"

    def test_requester_cannot_start_work(self, engine, make_request):
        req = make_request(status="assigned")
        with pytest.raises(PermissionDenied):
            engine.update_status(req.id, "in_progress", "requester-1", actor_role="requester")

    def test_unknown_role_denied(self, engine, make_request):
        req = make_request(status="in_progress")
        with pytest.raises(PermissionDenied):
            engine.add_work_log(req.id, "x-1", "Checked oil", actor_role="visitor")


# ═════════════════════════════════════════════════════════════════════════════
# 5. Best-effort audit
# ═════════════════════════════════════════════════════════════════════════════


class TestAuditDegradation:
    def test_failing_sink_does_not_undo_status_change(self, make_request, caplog):
        req = make_request(status="assigned")
        engine = RequestLifecycle(audit_sink=_FailingSink(), clock=lambda: T1)

        with caplog.at_level(logging.WARNING, logger="gearguard.services.request_lifecycle"):
            result = engine.update_status(req.id, "in_progress", "tech-1")

        assert result["new_status"] == "in_progress"
        assert result["audit_log_success"] is False
        assert result["audit_log_error"] == "audit store down"
        assert _fresh(req.id).status == "in_progress"
        assert _logs(req.id) == []
        assert "Audit log write failed" in caplog.text

    @pytest.mark.parametrize("operation,status,expected", [
        (lambda e, rid: e.update_status(rid, "in_progress", "tech-1"), "assigned", "in_progress"),
        (lambda e, rid: e.assign_request(rid, "tech-1", "mgr-1"), "new", "assigned"),
        (lambda e, rid: e.complete_request(rid, "tech-1", "Replaced belt"), "in_progress", "completed"),
    ])
    def test_lost_database_after_write_still_returns_result(
        self, make_request, monkeypatch, operation, status, expected,
    ):
        req = make_request(status=status)
        request_id, number = req.id, req.request_number
        engine = RequestLifecycle(audit_sink=_DatabaseGoneSink(monkeypatch), clock=lambda: T1)

        result = operation(engine, request_id)

        assert result["audit_log_success"] is False
        assert "server closed the connection" in result["audit_log_error"]
        assert result["new_status"] == expected
        assert result["request"]["status"] == expected
        assert result["request"]["request_number"] == number

    def test_failing_sink_on_assign(self, make_request):
        req = make_request(status="new")
        engine = RequestLifecycle(audit_sink=_FailingSink())

        result = engine.assign_request(req.id, "tech-1", "mgr-1")

        assert result["audit_log_success"] is False
        assert _fresh(req.id).assigned_to_id == "tech-1"

    def test_failing_sink_on_complete(self, make_request):
        req = make_request(status="in_progress")
        engine = RequestLifecycle(audit_sink=_FailingSink())

        result = engine.complete_request(req.id, "tech-1", "Replaced belt")

        assert result["audit_log_success"] is False
        assert _fresh(req.id).status == "completed"

    def test_failing_sink_on_work_log(self, make_request):
        req = make_request(status="in_progress")
        engine = RequestLifecycle(audit_sink=_FailingSink())

        result = engine.add_work_log(req.id, "tech-1", "Checked alignment", labor_hours=1.0)

        assert result == {
            "request_id": req.id,
            "audit_log_success": False,
            "audit_log_error": "audit store down",
        }
        assert _fresh(req.id).labor_hours == 1.0

    def test_sqlalchemy_sink_failure_is_contained(self, make_request):
        req = make_request(status="assigned")

        with patch.object(AuditSink, "append", side_effect=RuntimeError("disk full")):
            result = RequestLifecycle().update_status(req.id, "in_progress", "tech-1")

        assert result["audit_log_success"] is False
        assert result["audit_log_error"] == "disk full"
        assert _fresh(req.id).status == "in_progress"

    def test_log_action_success_shape(self, make_request):
        req = make_request()
        assert RequestLifecycle().log_action(req.id, "u-1", "note_added", notes="hi") == {
            "success": True, "error": None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 6. Work logs
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkLog:
    def test_work_log_keeps_status(self, engine, make_request):
        req = make_request(status="in_progress")

        result = engine.add_work_log(req.id, "tech-1", "Replaced gasket",
                                     labor_hours=1.5, parts_used="gasket")

        assert result["audit_log_success"] is True
        stored = _fresh(req.id)
        assert stored.status == "in_progress"
        assert stored.labor_hours == 1.5
        assert stored.parts_used == "gasket"
        (log,) = _logs(req.id)
        assert log.action == "note_added"
        assert log.notes == "Replaced gasket"
        assert log.field_changed is None

    def test_work_log_requires_notes(self, engine, make_request):
        req = make_request(status="in_progress")
        with pytest.raises(ValidationError):
            engine.add_work_log(req.id, "tech-1", " ")
        assert _logs(req.id) == []

    def test_work_log_negative_hours(self, engine, make_request):
        req = make_request(status="in_progress")
        with pytest.raises(ValidationError):
            engine.add_work_log(req.id, "tech-1", "Oops", labor_hours=-2)

    def test_work_log_missing_request(self, engine):
        with pytest.raises(NotFoundError):
            engine.add_work_log("nope", "tech-1", "Checked")


# ═════════════════════════════════════════════════════════════════════════════
# 7. Optimistic concurrency
# ═════════════════════════════════════════════════════════════════════════════


class _RacingStore(RequestStore):
    """Another writer moves the request between our read and our write."""

    def __init__(self, competing_status):
        self.competing_status = competing_status

    def update(self, request_id, fields, *, expected_status=None):
        db.session.execute(
            update(MaintenanceRequest)
            .where(MaintenanceRequest.id == request_id)
            .values(status=self.competing_status)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return super().update(request_id, fields, expected_status=expected_status)


class TestConcurrency:
    def test_lost_race_raises_and_writes_nothing(self, make_request):
        req = make_request(status="assigned")
        engine = RequestLifecycle(store=_RacingStore("cancelled"), clock=lambda: T1)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            engine.update_status(req.id, "in_progress", "tech-1")

        assert exc_info.value.expected_status == "assigned"
        stored = _fresh(req.id)
        assert stored.status == "cancelled"
        assert stored.started_at is None
        assert _logs(req.id) == []

    def test_lost_race_on_assign(self, make_request):
        req = make_request(status="new")
        engine = RequestLifecycle(store=_RacingStore("cancelled"))

        with pytest.raises(ConcurrentModificationError):
            engine.assign_request(req.id, "tech-1", "mgr-1")

        assert _fresh(req.id).assigned_to_id is None

    def test_store_update_precondition(self, make_request):
        req = make_request(status="assigned")
        store = RequestStore()

        with pytest.raises(ConcurrentModificationError):
            store.update(req.id, {"status": "in_progress"}, expected_status="new")

        assert store.get_status(req.id) == "assigned"

    def test_store_update_missing_row(self):
        with pytest.raises(NotFoundError):
            RequestStore().update("missing", {"status": "assigned"}, expected_status="new")

    def test_store_unconditional_update(self, make_request):
        req = make_request(status="in_progress")
        updated = RequestStore().update(req.id, {"parts_used": "belt"})
        assert updated.parts_used == "belt"
        assert updated.status == "in_progress"
