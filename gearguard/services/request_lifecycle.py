"""
Maintenance Request Lifecycle Service

Owns every status change of a MaintenanceRequest:
  - Transition validation against REQUEST_TRANSITIONS
  - Role checks (create / assign / update status / verify)
  - Field side effects (started_at, completed_at, verified_*, cancelled_*)
  - Best-effort audit trail in maintenance_logs

Order of work for every mutation:
    validate input → read current → validate transition → conditional write
    (commit) → audit append (never raises)

A failed audit write is reported in the result (``audit_log_success`` /
``audit_log_error``) and logged, but the primary change stays committed.

Usage:
    from gearguard.services.request_lifecycle import update_status

    result = update_status(
        request_id="abc",
        new_status="in_progress",
        acting_user_id="tech-1",
        actor_role="technician",
    )
"""

import logging
import math
from datetime import datetime, timezone

from gearguard.core.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    ValidationError,
)
from gearguard.models.maintenance import REQUEST_TRANSITIONS
from gearguard.services.permission import check_permission, permission_for_status
from gearguard.services.request_store import AuditSink, RequestStore

logger = logging.getLogger(__name__)

# Target status → log action; anything not listed is a plain "status_changed".
_STATUS_LOG_ACTION = {
    "completed": "completed",
    "verified": "verified",
    "cancelled": "cancelled",
}


def _utcnow():
    return datetime.now(timezone.utc)


def get_available_transitions(status: str) -> list[str]:
    """Allowed target statuses for *status*; empty for terminal or unknown."""
    return list(REQUEST_TRANSITIONS.get(status, []))


def can_transition(current: str, new: str) -> bool:
    return new in REQUEST_TRANSITIONS.get(current, [])


def validate_transition(current: str, new: str) -> None:
    """
    Raise InvalidTransitionError unless current → new is an edge of the table.

    Pure: no I/O. Self-transitions are not edges.
    """
    if not can_transition(current, new):
        raise InvalidTransitionError(current, new, get_available_transitions(current))


def _log_action_for(previous: str, new: str) -> str:
    if previous == "completed" and new == "in_progress":
        return "reopened"
    return _STATUS_LOG_ACTION.get(new, "status_changed")


def _require_text(value, field: str, message: str) -> None:
    if value is None or not str(value).strip():
        raise ValidationError(message, details={field: "required"})


def _require_non_negative(value, field: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number", details={field: "invalid"})
    if value < 0:
        raise ValidationError(f"{field} cannot be negative", details={field: "negative"})


class RequestLifecycle:
    """
    Lifecycle engine over an injected record store, audit sink and clock.

    Args:
        store: Object with ``get(id)`` and ``update(id, fields, *, expected_status)``.
        audit_sink: Object with ``append(entry_dict)``; may raise.
        clock: Zero-arg callable returning an aware UTC datetime.
    """

    def __init__(self, store=None, audit_sink=None, clock=None):
        self.store = store or RequestStore()
        self.audit_sink = audit_sink or AuditSink()
        self.clock = clock or _utcnow

    # ── Audit ────────────────────────────────────────────────────────────

    def log_action(
        self,
        request_id: str,
        user_id: str,
        action: str,
        *,
        field_changed: str | None = None,
        old_value=None,
        new_value=None,
        notes: str | None = None,
    ) -> dict:
        """
        Append one audit entry. Never raises.

        Returns:
            {"success": bool, "error": str | None}
        """
        entry = {
            "request_id": request_id,
            "user_id": user_id,
            "action": action,
            "field_changed": field_changed,
            "old_value": None if old_value is None else str(old_value),
            "new_value": None if new_value is None else str(new_value),
            "notes": notes,
            "created_at": self.clock(),
        }
        try:
            self.audit_sink.append(entry)
        except Exception as exc:
            logger.warning(
                "Audit log write failed for request %s (%s)", request_id, action,
                exc_info=True,
                extra={"request_id": request_id, "event_type": "audit_failure"},
            )
            return {"success": False, "error": str(exc) or exc.__class__.__name__}
        return {"success": True, "error": None}

    @staticmethod
    def _result(snapshot: dict, previous_status: str, audit: dict) -> dict:
        return {
            "request": snapshot,
            "previous_status": previous_status,
            "new_status": snapshot["status"],
            "audit_log_success": audit["success"],
            "audit_log_error": audit["error"],
        }

    # ── Operations ───────────────────────────────────────────────────────

    def update_status(
        self,
        request_id: str,
        new_status: str,
        acting_user_id: str,
        notes: str | None = None,
        *,
        actor_role: str | None = None,
    ) -> dict:
        """
        Move a request along one edge of the transition table.

        Side effects by target:
            in_progress → started_at (first time only)
            completed   → completed_at; ``notes`` seeds resolution_notes if none
            verified    → verified_at, verified_by_id
            cancelled   → cancelled_at, cancelled_by_id, cancellation_reason

        Raises:
            ValidationError, PermissionDenied, NotFoundError,
            InvalidTransitionError, ConcurrentModificationError
        """
        _require_text(acting_user_id, "acting_user_id", "Acting user is required")
        check_permission(acting_user_id, actor_role, permission_for_status(new_status))

        req = self.store.get(request_id)
        previous_status = req.status
        validate_transition(previous_status, new_status)

        now = self.clock()
        fields = {"status": new_status, "updated_at": now}
        if new_status == "in_progress":
            if req.started_at is None:
                fields["started_at"] = now
        elif new_status == "completed":
            fields["completed_at"] = now
            if notes and not (req.resolution_notes or "").strip():
                fields["resolution_notes"] = notes
        elif new_status == "verified":
            fields["verified_at"] = now
            fields["verified_by_id"] = acting_user_id
        elif new_status == "cancelled":
            fields["cancelled_at"] = now
            fields["cancelled_by_id"] = acting_user_id
            if notes:
                fields["cancellation_reason"] = notes
        elif new_status == "new":
            fields["assigned_to_id"] = None
            fields["assigned_by_id"] = None

        updated = self.store.update(request_id, fields, expected_status=previous_status)
        snapshot = updated.to_dict()
        logger.info(
            "Request %s: %s → %s by %s",
            updated.request_number, previous_status, new_status, acting_user_id,
            extra={"request_id": request_id, "user_id": acting_user_id,
                   "event_type": "status_changed"},
        )

        audit = self.log_action(
            request_id, acting_user_id, _log_action_for(previous_status, new_status),
            field_changed="status", old_value=previous_status, new_value=new_status,
            notes=notes,
        )
        return self._result(snapshot, previous_status, audit)

    def assign_request(
        self,
        request_id: str,
        technician_id: str,
        assigned_by_id: str,
        team_id: str | None = None,
        *,
        actor_role: str | None = None,
    ) -> dict:
        """
        Assign a technician (and optionally a team) to a 'new' request.

        Only 'new' requests are assignable; any other status raises
        InvalidStateError even where the table would allow a move.
        """
        _require_text(technician_id, "technician_id", "Technician is required")
        _require_text(assigned_by_id, "assigned_by_id", "Assigning user is required")
        check_permission(assigned_by_id, actor_role, "assign_request")

        req = self.store.get(request_id)
        if req.status != "new":
            raise InvalidStateError("assign", req.status, "new")
        validate_transition(req.status, "assigned")

        previous_assignee = req.assigned_to_id
        fields = {
            "status": "assigned",
            "assigned_to_id": technician_id,
            "assigned_by_id": assigned_by_id,
            "updated_at": self.clock(),
        }
        if team_id:
            fields["assigned_team_id"] = team_id

        updated = self.store.update(request_id, fields, expected_status="new")
        snapshot = updated.to_dict()
        logger.info(
            "Request %s assigned to %s by %s",
            updated.request_number, technician_id, assigned_by_id,
            extra={"request_id": request_id, "user_id": assigned_by_id,
                   "event_type": "assigned"},
        )

        audit = self.log_action(
            request_id, assigned_by_id, "assigned",
            field_changed="assigned_to_id",
            old_value=previous_assignee, new_value=technician_id,
        )
        return self._result(snapshot, "new", audit)

    def complete_request(
        self,
        request_id: str,
        acting_user_id: str,
        resolution_notes: str,
        labor_hours: float | None = None,
        parts_used: str | None = None,
        actual_cost: float | None = None,
        *,
        actor_role: str | None = None,
    ) -> dict:
        """
        Complete an in-progress request with its work record.

        Resolution notes are mandatory here; the check runs before any read.
        """
        _require_text(resolution_notes, "resolution_notes",
                      "Resolution notes are required to complete a request")
        _require_non_negative(labor_hours, "labor_hours")
        _require_non_negative(actual_cost, "actual_cost")
        _require_text(acting_user_id, "acting_user_id", "Acting user is required")
        check_permission(acting_user_id, actor_role, "update_request_status")

        req = self.store.get(request_id)
        previous_status = req.status
        validate_transition(previous_status, "completed")

        now = self.clock()
        fields = {
            "status": "completed",
            "completed_at": now,
            "resolution_notes": resolution_notes,
            "updated_at": now,
        }
        if parts_used is not None:
            fields["parts_used"] = parts_used
        if labor_hours is not None:
            fields["labor_hours"] = labor_hours
        if actual_cost is not None:
            fields["actual_cost"] = actual_cost

        updated = self.store.update(request_id, fields, expected_status=previous_status)
        snapshot = updated.to_dict()
        logger.info(
            "Request %s completed by %s",
            updated.request_number, acting_user_id,
            extra={"request_id": request_id, "user_id": acting_user_id,
                   "event_type": "completed"},
        )

        audit = self.log_action(
            request_id, acting_user_id, "completed",
            field_changed="status", old_value=previous_status, new_value="completed",
            notes=resolution_notes,
        )
        return self._result(snapshot, previous_status, audit)

    def add_work_log(
        self,
        request_id: str,
        user_id: str,
        notes: str,
        labor_hours: float | None = None,
        parts_used: str | None = None,
        *,
        actor_role: str | None = None,
    ) -> dict:
        """
        Record work on a request without changing its status.

        Returns:
            {"request_id", "audit_log_success", "audit_log_error"}
        """
        _require_text(notes, "notes", "Work log notes are required")
        _require_text(user_id, "user_id", "User is required")
        _require_non_negative(labor_hours, "labor_hours")
        check_permission(user_id, actor_role, "update_request_status")

        self.store.get(request_id)

        fields = {"updated_at": self.clock()}
        if labor_hours is not None:
            fields["labor_hours"] = labor_hours
        if parts_used is not None:
            fields["parts_used"] = parts_used
        self.store.update(request_id, fields)

        audit = self.log_action(request_id, user_id, "note_added", notes=notes)
        return {
            "request_id": request_id,
            "audit_log_success": audit["success"],
            "audit_log_error": audit["error"],
        }


# ── Module-level API ────────────────────────────────────────────────────────
# Default collaborators (SQLAlchemy store + sink, wall clock).

def update_status(request_id, new_status, acting_user_id, notes=None, *, actor_role=None):
    return RequestLifecycle().update_status(
        request_id, new_status, acting_user_id, notes, actor_role=actor_role,
    )


def assign_request(request_id, technician_id, assigned_by_id, team_id=None, *, actor_role=None):
    return RequestLifecycle().assign_request(
        request_id, technician_id, assigned_by_id, team_id, actor_role=actor_role,
    )


def complete_request(
    request_id, acting_user_id, resolution_notes,
    labor_hours=None, parts_used=None, actual_cost=None, *, actor_role=None,
):
    return RequestLifecycle().complete_request(
        request_id, acting_user_id, resolution_notes,
        labor_hours, parts_used, actual_cost, actor_role=actor_role,
    )


def add_work_log(request_id, user_id, notes, labor_hours=None, parts_used=None, *, actor_role=None):
    return RequestLifecycle().add_work_log(
        request_id, user_id, notes, labor_hours, parts_used, actor_role=actor_role,
    )


def log_action(request_id, user_id, action, **kwargs):
    return RequestLifecycle().log_action(request_id, user_id, action, **kwargs)
