"""
Maintenance request endpoints: create, query, edit, lifecycle transitions,
work logs and equipment scrapping.

Endpoints (under /api/v1):
  - POST               /requests
  - GET                /requests                      (?status=&priority=&is_overdue=&search=…)
  - GET                /requests/board
  - GET                /requests/overdue-count
  - GET                /requests/<id>
  - PATCH              /requests/<id>                 (priority, due_date, assignee, ...)
  - POST               /requests/<id>/status
  - POST               /requests/<id>/assign
  - POST               /requests/<id>/complete
  - POST               /requests/<id>/work-logs
  - GET                /requests/<id>/logs
  - POST               /equipment/<id>/scrap

The acting user comes from the JSON body (``user_id``, ``role``) or the
``X-User-Id`` / ``X-User-Role`` headers. Mutations answer with the advisory
``audit_log_success`` / ``audit_log_error`` pair.
"""

import logging

from flask import Blueprint, jsonify, request

from gearguard.core.exceptions import (
    ConcurrentModificationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from gearguard.services import equipment_service, request_lifecycle, request_service
from gearguard.utils.errors import E, api_error

logger = logging.getLogger(__name__)

maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api/v1")

_DOMAIN_ERRORS = (
    NotFoundError,
    ValidationError,
    InvalidTransitionError,
    InvalidStateError,
    ConcurrentModificationError,
    PermissionDenied,
)

_ACTOR_KEYS = ("user_id", "role")

_LIST_FILTERS = (
    "status", "priority", "request_type", "assigned_team_id",
    "assigned_to_id", "requester_id", "equipment_id", "search",
)


def _error_response(exc):
    """Map a service exception to the standard error body."""
    if isinstance(exc, NotFoundError):
        return api_error(E.NOT_FOUND, str(exc))
    if isinstance(exc, ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details)
    if isinstance(exc, InvalidTransitionError):
        return api_error(E.CONFLICT_STATE, str(exc), details={
            "current_status": exc.current_status,
            "requested_status": exc.requested_status,
            "allowed": exc.allowed,
        })
    if isinstance(exc, InvalidStateError):
        return api_error(E.CONFLICT_STATE, str(exc), details={
            "current_status": exc.current_status,
            "required_status": exc.required_status,
        })
    if isinstance(exc, ConcurrentModificationError):
        return api_error(E.CONFLICT_CONCURRENT, str(exc))
    return api_error(E.FORBIDDEN, str(exc))


def _actor(data):
    """(user_id, role) of the caller; body wins over headers."""
    user_id = data.get("user_id") or request.headers.get("X-User-Id")
    role = data.get("role") or request.headers.get("X-User-Role")
    return user_id, role


def _json_body():
    """The JSON object body, or None when the body is not an object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _flag(value) -> bool:
    return str(value).lower() in ("1", "true", "yes")


# ═════════════════════════════════════════════════════════════════════════════
# Create / query
# ═════════════════════════════════════════════════════════════════════════════


@maintenance_bp.route("/requests", methods=["POST"])
def create_request_endpoint():
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON object body is required")
    user_id, role = _actor(data)
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")

    try:
        result = request_service.create_request(data, user_id, actor_role=role)
    except _DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return jsonify(result), 201


@maintenance_bp.route("/requests", methods=["GET"])
def list_requests_endpoint():
    filters = {k: request.args.get(k) for k in _LIST_FILTERS if request.args.get(k)}
    if _flag(request.args.get("is_overdue")):
        filters["is_overdue"] = True

    items = request_service.list_requests(filters)
    return jsonify({"items": [r.to_dict() for r in items], "total": len(items)})


@maintenance_bp.route("/requests/board", methods=["GET"])
def board_endpoint():
    """Kanban board: requests grouped by status column."""
    columns = request_service.requests_by_status()
    return jsonify({
        "columns": columns,
        "counts": {status: len(items) for status, items in columns.items()},
    })


@maintenance_bp.route("/requests/overdue-count", methods=["GET"])
def overdue_count_endpoint():
    return jsonify({"overdue_count": request_service.overdue_count()})


@maintenance_bp.route("/requests/<req_id>", methods=["GET"])
def get_request_endpoint(req_id):
    try:
        req = request_service.get_request(req_id)
    except NotFoundError as exc:
        return _error_response(exc)

    d = req.to_dict()
    d["available_transitions"] = request_lifecycle.get_available_transitions(req.status)
    return jsonify(d)


@maintenance_bp.route("/requests/<req_id>", methods=["PATCH"])
def update_request_endpoint(req_id):
    """Edit details of an open request; every key except user_id / role is a field."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON object body is required")
    user_id, role = _actor(data)
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")

    fields = {k: v for k, v in data.items() if k not in _ACTOR_KEYS}
    try:
        result = request_service.update_request(req_id, fields, user_id, actor_role=role)
    except _DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return jsonify(result)


@maintenance_bp.route("/requests/<req_id>/logs", methods=["GET"])
def request_logs_endpoint(req_id):
    try:
        logs = request_service.get_request_logs(req_id)
    except NotFoundError as exc:
        return _error_response(exc)
    return jsonify({"items": [log.to_dict() for log in logs], "total": len(logs)})


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


@maintenance_bp.route("/requests/<req_id>/status", methods=["POST"])
def update_status_endpoint(req_id):
    """Move a request to another status along the transition table."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON object body is required")
    user_id, role = _actor(data)
    new_status = data.get("status")

    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    if not new_status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")

    try:
        result = request_lifecycle.update_status(
            req_id, new_status, user_id, data.get("notes"), actor_role=role,
        )
    except _DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return jsonify(result)


@maintenance_bp.route("/requests/<req_id>/assign", methods=["POST"])
def assign_request_endpoint(req_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON object body is required")
    user_id, role = _actor(data)

    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    if not data.get("technician_id"):
        return api_error(E.VALIDATION_REQUIRED, "technician_id is required")

    try:
        result = request_lifecycle.assign_request(
            req_id, data["technician_id"], user_id, data.get("team_id"), actor_role=role,
        )
    except _DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return jsonify(result)


@maintenance_bp.route("/requests/<req_id>/complete", methods=["POST"])
def complete_request_endpoint(req_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON object body is required")
    user_id, role = _actor(data)
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")

    try:
        result = request_lifecycle.complete_request(
            req_id, user_id, data.get("resolution_notes"),
            labor_hours=data.get("labor_hours"),
            parts_used=data.get("parts_used"),
            actual_cost=data.get("actual_cost"),
            actor_role=role,
        )
    except _DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return jsonify(result)


@maintenance_bp.route("/requests/<req_id>/work-logs", methods=["POST"])
def add_work_log_endpoint(req_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON object body is required")
    user_id, role = _actor(data)
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")

    try:
        result = request_lifecycle.add_work_log(
            req_id, user_id, data.get("notes"),
            labor_hours=data.get("labor_hours"),
            parts_used=data.get("parts_used"),
            actor_role=role,
        )
    except _DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════════
# Equipment
# ═════════════════════════════════════════════════════════════════════════════


@maintenance_bp.route("/equipment/<equipment_id>/scrap", methods=["POST"])
def scrap_equipment_endpoint(equipment_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON object body is required")
    user_id, role = _actor(data)
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")

    try:
        result = equipment_service.scrap_equipment(
            equipment_id, data.get("reason"), user_id, actor_role=role,
        )
    except _DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return jsonify(result)
