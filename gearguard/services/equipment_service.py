"""
Equipment lifecycle: scrapping.

Scrapping retires an asset for good. Its preventive schedules stop
generating work, and every request still open against it gets an
``equipment_scrapped`` audit entry so the people working it can decide
whether to finish or cancel. Open requests are not closed automatically.
"""

import logging
from datetime import datetime, timezone

from gearguard.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from gearguard.models import db
from gearguard.models.equipment import Equipment, PreventiveSchedule
from gearguard.models.maintenance import CLOSED_STATUSES, MaintenanceRequest
from gearguard.services.notification import NotificationService
from gearguard.services.permission import check_permission
from gearguard.services.request_lifecycle import RequestLifecycle

logger = logging.getLogger(__name__)


def scrap_equipment(
    equipment_id: str,
    reason: str,
    acting_user_id: str,
    *,
    actor_role: str | None = None,
    lifecycle: RequestLifecycle | None = None,
) -> dict:
    """
    Mark equipment as scrapped and deactivate its preventive schedules.

    Returns:
        {"equipment", "schedules_deactivated", "open_request_ids",
         "audit_log_success", "audit_log_error"}

    Raises:
        ValidationError, PermissionDenied, NotFoundError, InvalidStateError
    """
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("A scrap reason is required", details={"reason": "required"})
    if not isinstance(acting_user_id, str) or not acting_user_id.strip():
        raise ValidationError("Acting user is required", details={"acting_user_id": "required"})
    check_permission(acting_user_id, actor_role, "scrap_equipment")

    lifecycle = lifecycle or RequestLifecycle()
    equipment = db.session.get(Equipment, equipment_id)
    if equipment is None:
        raise NotFoundError("Equipment", equipment_id)
    if equipment.status == "scrapped":
        raise InvalidStateError("scrap", "scrapped", "active")

    previous_status = equipment.status
    equipment.status = "scrapped"
    equipment.scrapped_at = lifecycle.clock()
    equipment.scrapped_by_id = acting_user_id
    equipment.scrap_reason = reason.strip()

    schedules_deactivated = (
        PreventiveSchedule.query
        .filter_by(equipment_id=equipment_id, is_active=True)
        .update({"is_active": False}, synchronize_session=False)
    )
    open_request_ids = [
        row.id for row in
        db.session.query(MaintenanceRequest.id)
        .filter(
            MaintenanceRequest.equipment_id == equipment_id,
            MaintenanceRequest.status.notin_(CLOSED_STATUSES),
        )
        .order_by(MaintenanceRequest.created_at)
    ]
    db.session.commit()

    snapshot = equipment.to_dict()
    leader_id = equipment.default_team.leader_id if equipment.default_team else None
    logger.info(
        "Equipment %s scrapped by %s (%d schedules off, %d open requests)",
        snapshot["name"], acting_user_id, schedules_deactivated, len(open_request_ids),
        extra={"user_id": acting_user_id, "event_type": "equipment_scrapped"},
    )

    audit_errors = []
    for request_id in open_request_ids:
        audit = lifecycle.log_action(
            request_id, acting_user_id, "equipment_scrapped",
            field_changed="equipment_status", old_value=previous_status,
            new_value="scrapped", notes=snapshot["scrap_reason"],
        )
        if not audit["success"]:
            audit_errors.append(audit["error"])

    if leader_id:
        try:
            NotificationService.create(
                user_id=leader_id,
                type="equipment_scrapped",
                title="Equipment Scrapped",
                message=f"{snapshot['name']} was scrapped: {snapshot['scrap_reason']}",
                reference_type="equipment",
                reference_id=equipment_id,
            )
        except Exception:
            db.session.rollback()
            logger.warning("Scrap notification for %s failed", leader_id, exc_info=True)

    return {
        "equipment": snapshot,
        "schedules_deactivated": schedules_deactivated,
        "open_request_ids": open_request_ids,
        "audit_log_success": not audit_errors,
        "audit_log_error": audit_errors[0] if audit_errors else None,
    }
