"""
Role-Based Access Control for maintenance requests.

The caller supplies the acting user's role explicitly; there is no ambient
session. A missing role means an internal/system call and skips the check.

Usage:
    from gearguard.services.permission import check_permission

    # Raises PermissionDenied if not allowed
    check_permission("user-7", "technician", "assign_request")
"""

from gearguard.core.exceptions import PermissionDenied

ROLES = ("admin", "manager", "team_leader", "technician", "requester")

# Permission → roles allowed to perform it
PERMISSION_MATRIX = {
    "create_request": {"admin", "manager", "team_leader", "technician", "requester"},
    "assign_request": {"admin", "manager", "team_leader"},
    "update_request_status": {"admin", "manager", "team_leader", "technician"},
    "verify_request": {"admin", "manager", "requester"},
    "edit_request": {"admin", "manager", "team_leader"},
    "scrap_equipment": {"admin", "manager"},
}


def has_permission(role: str | None, action: str) -> bool:
    """True when *role* is granted *action*. Unknown roles get nothing."""
    if role not in ROLES:
        return False
    return role in PERMISSION_MATRIX.get(action, set())


def check_permission(user_id: str, role: str | None, action: str) -> None:
    """Raise PermissionDenied unless *role* may perform *action*.

    ``role=None`` is treated as a trusted internal caller.
    """
    if role is None:
        return
    if not has_permission(role, action):
        raise PermissionDenied(user_id, action, role)


def permission_for_status(new_status: str) -> str:
    """Permission required to move a request into *new_status*."""
    if new_status == "verified":
        return "verify_request"
    return "update_request_status"
