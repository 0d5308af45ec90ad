"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register one mapping from type to
HTTP status and error code. Nothing here depends on Flask.

Usage:
    from gearguard.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="MaintenanceRequest", resource_id=request_id)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model name (e.g. "MaintenanceRequest").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when required input is missing or violates a business rule.

    Always raised before any store access, so a ValidationError means
    nothing was written. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a status change is not an edge of the transition table.

    The message always carries the current status, the requested status and
    the allowed targets (or "none (terminal state)"). Maps to HTTP 409.
    """

    def __init__(self, current: str, requested: str, allowed: list[str] | None = None) -> None:
        self.current_status = current
        self.requested_status = requested
        self.allowed = list(allowed or [])
        allowed_msg = ", ".join(self.allowed) or "none (terminal state)"
        super().__init__(
            f"Cannot transition from '{current}' to '{requested}'. Allowed: {allowed_msg}"
        )


class InvalidStateError(Exception):
    """Raised when an operation-specific status precondition fails.

    Example: assignment is accepted only from 'new', even though the
    generic table would allow other moves. Maps to HTTP 409.
    """

    def __init__(self, operation: str, current: str, required: str) -> None:
        self.operation = operation
        self.current_status = current
        self.required_status = required
        super().__init__(
            f"Cannot {operation} request in '{current}' status. "
            f"Required status: '{required}'."
        )


class ConcurrentModificationError(Exception):
    """Raised when a conditional update finds the row changed underneath it.

    The record store compares the status read at the start of an operation
    with the stored one at write time; a mismatch means another writer won
    and nothing was persisted. Maps to HTTP 409.
    """

    def __init__(self, resource: str, resource_id: str, expected_status: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_status = expected_status
        super().__init__(
            f"{resource} id={resource_id} was modified concurrently "
            f"(expected status '{expected_status}')"
        )


class PermissionDenied(Exception):
    """Raised when the caller's role lacks the permission for an action. Maps to HTTP 403."""

    def __init__(self, user_id: str, action: str, role: str | None = None) -> None:
        role_msg = f" (role={role})" if role else ""
        super().__init__(
            f"User {user_id}{role_msg} does not have permission for '{action}'"
        )
        self.user_id = user_id
        self.action = action
        self.role = role
