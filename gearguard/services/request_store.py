"""
Persistence collaborators for the request lifecycle engine.

RequestStore
    Partial-field, conditional UPDATEs on ``maintenance_requests``. Passing
    ``expected_status`` turns the write into a compare-and-set on the status
    column: if another writer moved the request first, nothing is written
    and ConcurrentModificationError is raised.

AuditSink
    Appends one ``maintenance_logs`` row per call in its own commit. It may
    raise; ``RequestLifecycle.log_action`` is the layer that contains it.

Both commit on success so that the primary change is durable before the
audit write starts.
"""

import logging

from sqlalchemy import select, update

from gearguard.core.exceptions import ConcurrentModificationError, NotFoundError
from gearguard.models import db
from gearguard.models.maintenance import MaintenanceLog, MaintenanceRequest

logger = logging.getLogger(__name__)


class RequestStore:
    """Record store over the maintenance_requests table."""

    def get(self, request_id: str) -> MaintenanceRequest:
        """Fresh read of one request; never trusts the identity map."""
        req = db.session.get(MaintenanceRequest, request_id, populate_existing=True)
        if req is None:
            raise NotFoundError("MaintenanceRequest", request_id)
        return req

    def get_status(self, request_id: str) -> str:
        status = db.session.execute(
            select(MaintenanceRequest.status).where(MaintenanceRequest.id == request_id)
        ).scalar_one_or_none()
        if status is None:
            raise NotFoundError("MaintenanceRequest", request_id)
        return status

    def update(
        self,
        request_id: str,
        fields: dict,
        *,
        expected_status: str | None = None,
    ) -> MaintenanceRequest:
        """
        Apply *fields* to one request and commit.

        Args:
            request_id: Primary key of the request.
            fields: Column → new value. Only these columns are written.
            expected_status: When given, the row is updated only if its
                stored status still equals this value.

        Returns:
            The refreshed MaintenanceRequest.

        Raises:
            NotFoundError: the id does not resolve.
            ConcurrentModificationError: the status precondition failed.
        """
        stmt = update(MaintenanceRequest).where(MaintenanceRequest.id == request_id)
        if expected_status is not None:
            stmt = stmt.where(MaintenanceRequest.status == expected_status)
        stmt = stmt.values(**fields).execution_options(synchronize_session=False)

        try:
            result = db.session.execute(stmt)
            matched = result.rowcount
            if matched == 0:
                db.session.rollback()
            else:
                db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        if matched == 0:
            exists = db.session.execute(
                select(MaintenanceRequest.id).where(MaintenanceRequest.id == request_id)
            ).first()
            if exists is None:
                raise NotFoundError("MaintenanceRequest", request_id)
            logger.warning(
                "Conditional update lost race on request %s (expected status %s)",
                request_id, expected_status,
            )
            raise ConcurrentModificationError("MaintenanceRequest", request_id, expected_status)

        return self.get(request_id)


class AuditSink:
    """Append-only writer for maintenance_logs."""

    def append(self, entry: dict) -> MaintenanceLog:
        log = MaintenanceLog(**entry)
        try:
            db.session.add(log)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return log
