"""
GearGuard: Equipment registry models.

Models:
    - MaintenanceTeam: a group of technicians with an optional leader
    - Equipment: a maintainable asset, optionally owned by a default team
    - PreventiveSchedule: recurring maintenance plan for one piece of equipment

These tables are plain registries; the only behaviour here is the
next-due-date arithmetic used by the preventive generator job.
"""

import calendar
import uuid
from datetime import date, datetime, timedelta, timezone

from gearguard.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

FREQUENCY_TYPES = {"daily", "weekly", "monthly", "quarterly", "yearly"}


def _add_months(d: date, months: int) -> date:
    """Add calendar months, clamping to the last day of the target month."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def advance_due_date(current_due: date, frequency_type: str, frequency_value: int) -> date:
    """
    Return the next due date after *current_due* for a schedule frequency.

    Examples:
        weekly × 2   : 2025-01-01 → 2025-01-15
        monthly × 1  : 2025-01-31 → 2025-02-28
        quarterly × 1: 2025-01-15 → 2025-04-15
    """
    if frequency_type not in FREQUENCY_TYPES:
        raise ValueError(f"Unknown frequency_type: {frequency_type}")

    if frequency_type == "daily":
        return current_due + timedelta(days=frequency_value)
    if frequency_type == "weekly":
        return current_due + timedelta(weeks=frequency_value)
    if frequency_type == "monthly":
        return _add_months(current_due, frequency_value)
    if frequency_type == "quarterly":
        return _add_months(current_due, frequency_value * 3)
    return _add_months(current_due, frequency_value * 12)


class MaintenanceTeam(db.Model):
    __tablename__ = "maintenance_teams"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(150), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    specialization = db.Column(db.String(100), nullable=True)
    leader_id = db.Column(db.String(150), nullable=True, comment="User id of the team leader")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "specialization": self.specialization,
            "leader_id": self.leader_id,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<MaintenanceTeam {self.name}>"


class Equipment(db.Model):
    """A maintainable asset. Scrapped equipment no longer receives preventive work."""

    __tablename__ = "equipment"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    serial_number = db.Column(db.String(100), nullable=True, unique=True)
    asset_tag = db.Column(db.String(100), nullable=True)
    category = db.Column(db.String(100), nullable=False, default="general")
    location = db.Column(db.String(200), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | under_maintenance | scrapped",
    )
    criticality = db.Column(db.String(20), nullable=False, default="medium")
    scrapped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    scrapped_by_id = db.Column(db.String(150), nullable=True)
    scrap_reason = db.Column(db.Text, nullable=True)
    default_team_id = db.Column(
        db.String(36), db.ForeignKey("maintenance_teams.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    default_team = db.relationship("MaintenanceTeam")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "serial_number": self.serial_number,
            "asset_tag": self.asset_tag,
            "category": self.category,
            "location": self.location,
            "status": self.status,
            "criticality": self.criticality,
            "scrapped_at": self.scrapped_at.isoformat() if self.scrapped_at else None,
            "scrapped_by_id": self.scrapped_by_id,
            "scrap_reason": self.scrap_reason,
            "default_team_id": self.default_team_id,
        }

    def __repr__(self):
        return f"<Equipment {self.name} [{self.status}]>"


class PreventiveSchedule(db.Model):
    """
    Recurring preventive maintenance plan.

    The generator job creates one open request per schedule at a time and
    moves ``next_due`` forward by ``frequency_value`` × ``frequency_type``.
    """

    __tablename__ = "preventive_schedules"
    __table_args__ = (
        db.Index("idx_ps_active_due", "is_active", "next_due"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    equipment_id = db.Column(
        db.String(36), db.ForeignKey("equipment.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    frequency_type = db.Column(
        db.String(20), nullable=False,
        comment="daily | weekly | monthly | quarterly | yearly",
    )
    frequency_value = db.Column(db.Integer, nullable=False, default=1)
    estimated_hours = db.Column(db.Float, nullable=True)
    last_generated = db.Column(db.Date, nullable=True)
    next_due = db.Column(db.Date, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(150), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    equipment = db.relationship("Equipment")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "equipment_id": self.equipment_id,
            "frequency_type": self.frequency_type,
            "frequency_value": self.frequency_value,
            "estimated_hours": self.estimated_hours,
            "last_generated": self.last_generated.isoformat() if self.last_generated else None,
            "next_due": self.next_due.isoformat() if self.next_due else None,
            "is_active": self.is_active,
            "created_by": self.created_by,
        }

    def __repr__(self):
        return f"<PreventiveSchedule {self.name} next={self.next_due}>"
