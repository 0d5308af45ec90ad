"""
GearGuard maintenance service
Scheduled Jobs.

Jobs:
    - check_overdue: notifies assignees and team leaders of overdue requests
    - generate_preventive: turns due preventive schedules into requests
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any

from gearguard.models import db
from gearguard.models.equipment import PreventiveSchedule, advance_due_date
from gearguard.models.maintenance import CLOSED_STATUSES, MaintenanceRequest
from gearguard.services.notification import NotificationService
from gearguard.services.request_service import create_request
from gearguard.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def overdue_message(req: MaintenanceRequest, today: date) -> str:
    days = (today - req.due_date).days
    return f"Request {req.request_number} is {days} day(s) overdue: {req.title}"


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Overdue checker
# ═══════════════════════════════════════════════════════════════════════════

@register_job("check_overdue")
def check_overdue(app, today: date | None = None) -> dict[str, Any]:
    """Notify assignees and team leaders about overdue open requests."""
    today = today or _today()
    results = {"overdue_count": 0, "notifications_sent": 0}

    overdue = (
        MaintenanceRequest.query
        .filter(
            MaintenanceRequest.due_date.isnot(None),
            MaintenanceRequest.due_date < today,
            MaintenanceRequest.status.notin_(CLOSED_STATUSES),
        )
        .order_by(MaintenanceRequest.due_date)
        .all()
    )

    for req in overdue:
        results["overdue_count"] += 1
        message = overdue_message(req, today)

        if req.assigned_to_id:
            NotificationService.create(
                user_id=req.assigned_to_id,
                type="request_overdue",
                title="Overdue Request",
                message=message,
                reference_type="maintenance_request",
                reference_id=req.id,
                commit=False,
            )
            results["notifications_sent"] += 1

        leader_id = req.assigned_team.leader_id if req.assigned_team else None
        if leader_id and leader_id != req.assigned_to_id:
            NotificationService.create(
                user_id=leader_id,
                type="request_overdue",
                title="Team Request Overdue",
                message=message,
                reference_type="maintenance_request",
                reference_id=req.id,
                commit=False,
            )
            results["notifications_sent"] += 1

    db.session.commit()
    logger.info("Overdue check: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Preventive request generator
# ═══════════════════════════════════════════════════════════════════════════

def _has_open_request(schedule_id: str) -> bool:
    return db.session.query(
        MaintenanceRequest.query
        .filter(
            MaintenanceRequest.schedule_id == schedule_id,
            MaintenanceRequest.status.notin_(CLOSED_STATUSES),
        )
        .exists()
    ).scalar()


def _generate_for_schedule(schedule: PreventiveSchedule, today: date) -> bool:
    """
    Create the next request for one schedule and advance it.

    Returns False when the schedule was skipped.
    """
    equipment = schedule.equipment
    if equipment is None or equipment.status == "scrapped":
        return False
    if _has_open_request(schedule.id):
        return False

    created = create_request(
        {
            "title": f"Preventive: {schedule.name}",
            "description": schedule.description
            or f"Scheduled preventive maintenance for {equipment.name}",
            "request_type": "preventive",
            "priority": "medium",
            "equipment_id": schedule.equipment_id,
            "due_date": schedule.next_due,
            "schedule_id": schedule.id,
        },
        schedule.created_by,
    )
    request_id = created["request"]["id"]

    schedule.next_due = advance_due_date(
        schedule.next_due, schedule.frequency_type, schedule.frequency_value or 1,
    )
    schedule.last_generated = today

    team = equipment.default_team
    if team is not None and team.leader_id:
        NotificationService.create(
            user_id=team.leader_id,
            type="request_created",
            title="New Preventive Maintenance",
            message=f"Preventive maintenance generated: {schedule.name}",
            reference_type="maintenance_request",
            reference_id=request_id,
            commit=False,
        )
    db.session.commit()
    return True


@register_job("generate_preventive")
def generate_preventive(app, today: date | None = None) -> dict[str, Any]:
    """Create preventive requests for schedules due within the lookahead window."""
    today = today or _today()
    horizon = today + timedelta(days=app.config.get("PREVENTIVE_LOOKAHEAD_DAYS", 30))

    schedules = (
        PreventiveSchedule.query
        .filter(
            PreventiveSchedule.is_active.is_(True),
            PreventiveSchedule.next_due <= horizon,
        )
        .order_by(PreventiveSchedule.next_due)
        .all()
    )
    results = {
        "schedules_processed": len(schedules),
        "requests_created": 0,
        "schedules_updated": 0,
    }

    for schedule in schedules:
        schedule_id = schedule.id
        try:
            if _generate_for_schedule(schedule, today):
                results["requests_created"] += 1
                results["schedules_updated"] += 1
        except Exception:
            db.session.rollback()
            logger.exception("Preventive generation failed for schedule %s", schedule_id)

    logger.info("Preventive generation: %s", results)
    return results
