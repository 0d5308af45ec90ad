"""JSON error bodies shared by every blueprint.

Body shape: ``{"error": <message>, "code": <ERR_...>, "details": {...}?}``.

    return api_error(E.NOT_FOUND, "MaintenanceRequest id=abc not found")
    return api_error(E.CONFLICT_STATE, str(exc), details={"allowed": exc.allowed})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes returned by the maintenance API."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    NOT_FOUND = "ERR_NOT_FOUND"
    FORBIDDEN = "ERR_FORBIDDEN"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_CONCURRENT = "ERR_CONFLICT_CONCURRENT"


# Missing fields are a 400; well-formed input that breaks a rule is a 422.
_STATUS_BY_CODE = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.FORBIDDEN: 403,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_CONCURRENT: 409,
}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """Build ``(response, status)`` for *code*; *status* overrides the default."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)
