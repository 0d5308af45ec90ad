"""
Auto-Code Generator Service

Generates sequential request numbers: MR-{seq}, 5-digit, global
(e.g. MR-00001, MR-00042).

The next number follows the highest one issued, so gaps left by deleted
rows are never reused. Uniqueness is enforced by the column; callers retry
on collision.
"""

from sqlalchemy import func

from gearguard.models import db
from gearguard.models.maintenance import MaintenanceRequest

REQUEST_NUMBER_PREFIX = "MR"


def _parse_seq(number: str | None) -> int:
    if not number:
        return 0
    try:
        return int(number.rsplit("-", 1)[-1])
    except ValueError:
        return 0


def generate_request_number() -> str:
    """Generate next request number: MR-00001, MR-00002, ..."""
    # Zero-padded numbers sort lexically in issue order
    latest = db.session.query(func.max(MaintenanceRequest.request_number)).scalar()
    return f"{REQUEST_NUMBER_PREFIX}-{_parse_seq(latest) + 1:05d}"
