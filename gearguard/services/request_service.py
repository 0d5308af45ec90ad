"""
Maintenance request creation, detail edits and read-side queries.

Status changes are not made here; see ``request_lifecycle``. Creation and
edits go through the same best-effort audit wrapper, so every request starts
its trail with a ``created`` entry and priority, due date and technician
changes are recorded with their old and new values.
"""

import logging
import math
from datetime import date, datetime, timezone

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from gearguard.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from gearguard.models import db
from gearguard.models.equipment import Equipment, MaintenanceTeam, PreventiveSchedule
from gearguard.models.maintenance import (
    BOARD_STATUSES,
    CLOSED_STATUSES,
    PRIORITIES,
    REQUEST_TYPES,
    MaintenanceLog,
    MaintenanceRequest,
)
from gearguard.services.code_generator import generate_request_number
from gearguard.services.notification import NotificationService
from gearguard.services.permission import check_permission
from gearguard.services.request_lifecycle import RequestLifecycle
from gearguard.services.request_store import RequestStore
from gearguard.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

_NUMBER_RETRIES = 3


def _today():
    return datetime.now(timezone.utc).date()


def _overdue_clause(today=None):
    today = today or _today()
    return and_(
        MaintenanceRequest.due_date.isnot(None),
        MaintenanceRequest.due_date < today,
        MaintenanceRequest.status.notin_(CLOSED_STATUSES),
    )


def _blank(value) -> bool:
    return value is None or not str(value).strip()


def _non_negative_number(value) -> bool:
    return (
        not isinstance(value, bool)
        and isinstance(value, (int, float))
        and math.isfinite(value)
        and value >= 0
    )


def _choice(data: dict, field: str, allowed, default: str, errors: dict):
    value = data.get(field) or default
    if not isinstance(value, str) or value not in allowed:
        errors[field] = f"must be one of: {', '.join(sorted(allowed))}"
    return value


def _lookup(model, value, field: str, label: str, errors: dict):
    """Resolve an id field to its row, recording a field error when it does not."""
    if not isinstance(value, str):
        errors[field] = "must be a string id"
        return None
    row = db.session.get(model, value)
    if row is None:
        errors[field] = f"{label} not found"
    return row


def _validate_create(data: dict) -> tuple[dict, dict]:
    """Return (clean_fields, field_errors) for a create payload."""
    errors = {}
    clean = {}

    for field in ("title", "description"):
        if _blank(data.get(field)):
            errors[field] = "required"
        else:
            clean[field] = str(data[field]).strip()

    clean["request_type"] = _choice(data, "request_type", REQUEST_TYPES, "corrective", errors)
    clean["priority"] = _choice(data, "priority", PRIORITIES, "medium", errors)

    try:
        clean["due_date"] = parse_date_input(data.get("due_date"))
    except ValueError as exc:
        errors["due_date"] = str(exc)

    cost = data.get("cost_estimate")
    if cost is not None:
        if not _non_negative_number(cost):
            errors["cost_estimate"] = "must be a non-negative number"
        else:
            clean["cost_estimate"] = cost

    equipment_id = data.get("equipment_id")
    if _blank(equipment_id):
        errors["equipment_id"] = "required"
    else:
        equipment = _lookup(Equipment, equipment_id, "equipment_id", "equipment", errors)
        if equipment is not None:
            clean["equipment_id"] = equipment.id
            clean["assigned_team_id"] = equipment.default_team_id

    team_id = data.get("assigned_team_id")
    if team_id:
        if _lookup(MaintenanceTeam, team_id, "assigned_team_id", "team", errors) is not None:
            clean["assigned_team_id"] = team_id

    schedule_id = data.get("schedule_id")
    if schedule_id:
        if _lookup(PreventiveSchedule, schedule_id, "schedule_id", "schedule", errors) is not None:
            clean["schedule_id"] = schedule_id

    return clean, errors


def create_request(data: dict, requester_id: str, *, actor_role: str | None = None) -> dict:
    """
    Create a maintenance request in status 'new'.

    Args:
        data: title, description, equipment_id, and optionally request_type,
            priority, due_date (ISO), assigned_team_id, cost_estimate,
            schedule_id.
        requester_id: User raising the request.
        actor_role: Checked against 'create_request' when given.

    Returns:
        {"request", "previous_status": None, "new_status": "new",
         "audit_log_success", "audit_log_error"}

    Raises:
        PermissionDenied, ValidationError (field errors in ``details``)
    """
    check_permission(requester_id, actor_role, "create_request")
    if _blank(requester_id):
        raise ValidationError("Requester is required", details={"requester_id": "required"})
    if data is not None and not isinstance(data, dict):
        raise ValidationError("Request body must be an object")

    clean, errors = _validate_create(data or {})
    if errors:
        raise ValidationError("Invalid maintenance request", details=errors)

    req = _insert_with_number(requester_id, clean)
    snapshot = req.to_dict()

    logger.info(
        "Request %s created by %s", snapshot["request_number"], requester_id,
        extra={"request_id": snapshot["id"], "user_id": requester_id, "event_type": "created"},
    )
    audit = RequestLifecycle().log_action(
        snapshot["id"], requester_id, "created", field_changed="status", new_value="new",
    )
    return {
        "request": snapshot,
        "previous_status": None,
        "new_status": snapshot["status"],
        "audit_log_success": audit["success"],
        "audit_log_error": audit["error"],
    }


def _is_number_collision(exc: IntegrityError) -> bool:
    return "request_number" in str(exc.orig)


def _insert_with_number(requester_id: str, clean: dict) -> MaintenanceRequest:
    """Insert a new request, drawing a fresh number while the unique index rejects it."""
    for attempt in range(1, _NUMBER_RETRIES + 1):
        req = MaintenanceRequest(
            request_number=generate_request_number(),
            status="new",
            requester_id=requester_id,
            **clean,
        )
        db.session.add(req)
        try:
            db.session.commit()
            return req
        except IntegrityError as exc:
            db.session.rollback()
            if not _is_number_collision(exc) or attempt == _NUMBER_RETRIES:
                raise
            logger.warning("Request number collision on %s, retrying", req.request_number)


def get_request(request_id: str) -> MaintenanceRequest:
    req = db.session.get(MaintenanceRequest, request_id)
    if req is None:
        raise NotFoundError("MaintenanceRequest", request_id)
    return req


def list_requests(filters: dict | None = None) -> list[MaintenanceRequest]:
    """
    Filtered request list, newest first.

    Supported filters: status (str, comma list or list), priority,
    request_type, assigned_team_id, assigned_to_id, requester_id,
    equipment_id, is_overdue (bool), search (title / number / description).
    """
    filters = filters or {}
    q = MaintenanceRequest.query

    status = filters.get("status")
    if status:
        statuses = status.split(",") if isinstance(status, str) else list(status)
        q = q.filter(MaintenanceRequest.status.in_([s.strip() for s in statuses if s.strip()]))

    for key in ("priority", "request_type", "assigned_team_id",
                "assigned_to_id", "requester_id", "equipment_id"):
        value = filters.get(key)
        if value:
            q = q.filter(getattr(MaintenanceRequest, key) == value)

    if filters.get("is_overdue"):
        q = q.filter(_overdue_clause())

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(
            MaintenanceRequest.title.ilike(like),
            MaintenanceRequest.request_number.ilike(like),
            MaintenanceRequest.description.ilike(like),
        ))

    return q.order_by(MaintenanceRequest.created_at.desc()).all()


def requests_by_status() -> dict[str, list[dict]]:
    """Board view: requests grouped into the kanban columns, in column order."""
    board = {status: [] for status in BOARD_STATUSES}
    rows = (
        MaintenanceRequest.query
        .filter(MaintenanceRequest.status.in_(BOARD_STATUSES))
        .order_by(MaintenanceRequest.created_at.desc())
        .all()
    )
    for req in rows:
        board[req.status].append(req.to_dict())
    return board


def get_request_logs(request_id: str) -> list[MaintenanceLog]:
    """Audit timeline for one request, newest first."""
    get_request(request_id)
    return (
        MaintenanceLog.query
        .filter_by(request_id=request_id)
        .order_by(MaintenanceLog.created_at.desc())
        .all()
    )


def overdue_count(today=None) -> int:
    return MaintenanceRequest.query.filter(_overdue_clause(today)).count()


# ═════════════════════════════════════════════════════════════════════════════
# Editing an open request
# ═════════════════════════════════════════════════════════════════════════════

# Field → permission needed to change it
_EDITABLE_FIELDS = {
    "title": "edit_request",
    "description": "edit_request",
    "priority": "edit_request",
    "due_date": "edit_request",
    "cost_estimate": "edit_request",
    "assigned_to_id": "assign_request",
    "scrap_recommended": "update_request_status",
}

# Edits that get their own audit entry
_EDIT_LOG_ACTION = {
    "priority": "priority_changed",
    "due_date": "due_date_changed",
    "assigned_to_id": "reassigned",
}


def _validate_edit(fields: dict) -> tuple[dict, dict]:
    errors = {}
    clean = {}
    for field, value in fields.items():
        if field not in _EDITABLE_FIELDS:
            errors[field] = "not editable"
        elif field in ("title", "description", "assigned_to_id"):
            if not isinstance(value, str) or not value.strip():
                errors[field] = "required"
            else:
                clean[field] = value.strip()
        elif field == "priority":
            clean[field] = _choice(fields, field, PRIORITIES, "", errors)
        elif field == "due_date":
            try:
                clean[field] = parse_date_input(value)
            except ValueError as exc:
                errors[field] = str(exc)
        elif field == "cost_estimate":
            if value is not None and not _non_negative_number(value):
                errors[field] = "must be a non-negative number"
            else:
                clean[field] = value
        elif not isinstance(value, bool):
            errors[field] = "must be true or false"
        else:
            clean[field] = value
    return clean, errors


def update_request(
    request_id: str,
    fields: dict,
    acting_user_id: str,
    *,
    actor_role: str | None = None,
    store: RequestStore | None = None,
    lifecycle: RequestLifecycle | None = None,
) -> dict:
    """
    Edit the details of an open request. Status is not editable here.

    Priority, due date and technician changes each append an audit entry
    carrying the old and new value. Reassignment is accepted once a request
    has an assignee; the first assignment goes through ``assign_request``.

    Returns:
        {"request", "changes": [{"field", "old_value", "new_value"}],
         "audit_log_success", "audit_log_error"}

    Raises:
        ValidationError, PermissionDenied, NotFoundError, InvalidStateError,
        ConcurrentModificationError
    """
    if _blank(acting_user_id):
        raise ValidationError("Acting user is required", details={"acting_user_id": "required"})
    if not isinstance(fields, dict) or not fields:
        raise ValidationError("No fields to update")

    clean, errors = _validate_edit(fields)
    if errors:
        raise ValidationError("Invalid request update", details=errors)
    for field in clean:
        check_permission(acting_user_id, actor_role, _EDITABLE_FIELDS[field])

    store = store or RequestStore()
    lifecycle = lifecycle or RequestLifecycle(store=store)

    req = store.get(request_id)
    if req.status in CLOSED_STATUSES:
        raise InvalidStateError("edit", req.status, "open")
    if "assigned_to_id" in clean and req.status == "new":
        raise InvalidStateError("reassign", req.status, "assigned")

    changes = [
        {"field": field, "old_value": getattr(req, field), "new_value": value}
        for field, value in clean.items()
        if getattr(req, field) != value
    ]
    if not changes:
        return {"request": req.to_dict(), "changes": [],
                "audit_log_success": True, "audit_log_error": None}

    values = {c["field"]: c["new_value"] for c in changes}
    values["updated_at"] = lifecycle.clock()
    if "assigned_to_id" in values:
        values["assigned_by_id"] = acting_user_id

    updated = store.update(request_id, values, expected_status=req.status)
    snapshot = updated.to_dict()
    logger.info(
        "Request %s edited by %s: %s", snapshot["request_number"], acting_user_id,
        ", ".join(c["field"] for c in changes),
        extra={"request_id": request_id, "user_id": acting_user_id, "event_type": "updated"},
    )

    audit_errors = []
    for change in changes:
        action = _EDIT_LOG_ACTION.get(change["field"])
        if action is None:
            continue
        audit = lifecycle.log_action(
            request_id, acting_user_id, action, field_changed=change["field"],
            old_value=change["old_value"], new_value=change["new_value"],
        )
        if not audit["success"]:
            audit_errors.append(audit["error"])

    if "assigned_to_id" in values:
        _notify(
            user_id=values["assigned_to_id"],
            type="request_assigned",
            title="Request Reassigned",
            message=f"Request {snapshot['request_number']} was reassigned to you: {snapshot['title']}",
            reference_id=request_id,
        )

    return {
        "request": snapshot,
        "changes": [
            {"field": c["field"],
             "old_value": _plain(c["old_value"]),
             "new_value": _plain(c["new_value"])}
            for c in changes
        ],
        "audit_log_success": not audit_errors,
        "audit_log_error": audit_errors[0] if audit_errors else None,
    }


def _plain(value):
    return value.isoformat() if isinstance(value, date) else value


def _notify(**kwargs) -> bool:
    """Best-effort in-app notification; the edit it follows is already committed."""
    try:
        NotificationService.create(reference_type="maintenance_request", **kwargs)
    except Exception:
        db.session.rollback()
        logger.warning("Notification for %s failed", kwargs.get("user_id"), exc_info=True)
        return False
    return True
