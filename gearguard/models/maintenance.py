"""
GearGuard: Maintenance request domain model.

Models:
    - MaintenanceRequest: the mutable work item under lifecycle control
    - MaintenanceLog: append-only audit trail, one row per action

The allowed-edge table lives here next to the model it governs so that the
lifecycle service, the API and the tests all read the same source.
"""

import uuid
from datetime import datetime, timezone

from gearguard.models import db

__all__ = [
    "REQUEST_STATUSES",
    "REQUEST_TRANSITIONS",
    "TERMINAL_STATUSES",
    "CLOSED_STATUSES",
    "BOARD_STATUSES",
    "REQUEST_TYPES",
    "PRIORITIES",
    "LOG_ACTIONS",
    "MaintenanceRequest",
    "MaintenanceLog",
]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

REQUEST_STATUSES = (
    "new",
    "assigned",
    "in_progress",
    "on_hold",
    "completed",
    "verified",
    "cancelled",
)

# status → allowed target statuses
REQUEST_TRANSITIONS = {
    "new":         ["assigned", "cancelled"],
    "assigned":    ["in_progress", "new", "cancelled"],   # "new" = un-assign
    "in_progress": ["completed", "on_hold", "cancelled"],
    "on_hold":     ["in_progress", "cancelled"],
    "completed":   ["verified", "in_progress"],           # reopen if verification fails
    "verified":    [],
    "cancelled":   [],
}

TERMINAL_STATUSES = frozenset(s for s, targets in REQUEST_TRANSITIONS.items() if not targets)

# Work is finished (or abandoned); such requests are never overdue.
CLOSED_STATUSES = frozenset({"completed", "verified", "cancelled"})

# Kanban columns, in display order
BOARD_STATUSES = ("new", "assigned", "in_progress", "on_hold", "completed")

REQUEST_TYPES = {"corrective", "preventive"}
PRIORITIES = {"low", "medium", "high", "critical"}

LOG_ACTIONS = {
    "created",
    "status_changed",
    "assigned",
    "reassigned",
    "note_added",
    "priority_changed",
    "due_date_changed",
    "completed",
    "verified",
    "cancelled",
    "reopened",
    "equipment_scrapped",
}


class MaintenanceRequest(db.Model):
    """
    A corrective or preventive maintenance request against one piece of
    equipment.

    Lifecycle: new → assigned → in_progress ⇄ on_hold → completed → verified,
    with cancellation from any non-terminal state except completed.
    Status changes go through ``gearguard.services.request_lifecycle`` only.

    Number auto-generated: MR-{seq} (5-digit, global).
    """

    __tablename__ = "maintenance_requests"
    __table_args__ = (
        db.Index("idx_mr_status", "status"),
        db.Index("idx_mr_due_status", "due_date", "status"),
        db.Index("idx_mr_assignee", "assigned_to_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    request_number = db.Column(db.String(20), nullable=False, unique=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")

    request_type = db.Column(
        db.String(20), nullable=False, default="corrective",
        comment="corrective | preventive",
    )
    priority = db.Column(
        db.String(20), nullable=False, default="medium",
        comment="low | medium | high | critical",
    )
    status = db.Column(
        db.String(20), nullable=False, default="new",
        comment="new | assigned | in_progress | on_hold | completed | verified | cancelled",
    )

    # References (users are external; ids are opaque strings)
    equipment_id = db.Column(
        db.String(36), db.ForeignKey("equipment.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    requester_id = db.Column(db.String(150), nullable=False)
    assigned_team_id = db.Column(
        db.String(36), db.ForeignKey("maintenance_teams.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    assigned_to_id = db.Column(db.String(150), nullable=True)
    assigned_by_id = db.Column(db.String(150), nullable=True)
    schedule_id = db.Column(
        db.String(36), db.ForeignKey("preventive_schedules.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    due_date = db.Column(db.Date, nullable=True)

    # Lifecycle stamps
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_by_id = db.Column(db.String(150), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_id = db.Column(db.String(150), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # Work record
    resolution_notes = db.Column(db.Text, nullable=True)
    parts_used = db.Column(db.Text, nullable=True)
    labor_hours = db.Column(db.Float, nullable=True)
    cost_estimate = db.Column(db.Float, nullable=True)
    actual_cost = db.Column(db.Float, nullable=True)
    scrap_recommended = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    equipment = db.relationship("Equipment", lazy="joined")
    assigned_team = db.relationship("MaintenanceTeam", lazy="joined")

    @property
    def is_overdue(self) -> bool:
        if self.due_date is None or self.status in CLOSED_STATUSES:
            return False
        return self.due_date < _utcnow().date()

    def to_dict(self):
        return {
            "id": self.id,
            "request_number": self.request_number,
            "title": self.title,
            "description": self.description,
            "request_type": self.request_type,
            "priority": self.priority,
            "status": self.status,
            "equipment_id": self.equipment_id,
            "equipment_name": self.equipment.name if self.equipment else None,
            "requester_id": self.requester_id,
            "assigned_team_id": self.assigned_team_id,
            "assigned_team_name": self.assigned_team.name if self.assigned_team else None,
            "assigned_to_id": self.assigned_to_id,
            "assigned_by_id": self.assigned_by_id,
            "schedule_id": self.schedule_id,
            "due_date": _iso(self.due_date),
            "is_overdue": self.is_overdue,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "verified_at": _iso(self.verified_at),
            "verified_by_id": self.verified_by_id,
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_by_id": self.cancelled_by_id,
            "cancellation_reason": self.cancellation_reason,
            "resolution_notes": self.resolution_notes,
            "parts_used": self.parts_used,
            "labor_hours": self.labor_hours,
            "cost_estimate": self.cost_estimate,
            "actual_cost": self.actual_cost,
            "scrap_recommended": self.scrap_recommended,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<MaintenanceRequest {self.request_number} [{self.status}]>"


class MaintenanceLog(db.Model):
    """
    Append-only trail of actions taken on a request.

    Written by the lifecycle service after the primary change has been
    committed; never updated or deleted. ``old_value`` / ``new_value`` are
    stored as strings whatever the type of the changed field.
    """

    __tablename__ = "maintenance_logs"
    __table_args__ = (
        db.Index("idx_mlog_request_ts", "request_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    request_id = db.Column(
        db.String(36), db.ForeignKey("maintenance_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(db.String(150), nullable=False)
    action = db.Column(
        db.String(30), nullable=False,
        comment="created | status_changed | assigned | note_added | completed | …",
    )
    field_changed = db.Column(db.String(60), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "action": self.action,
            "field_changed": self.field_changed,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<MaintenanceLog {self.action} on {self.request_id}>"
