"""
Notification Service.

Creates and queries per-user in-app notifications. Used by the scheduled
jobs (overdue reminders, preventive request creation).
"""

from gearguard.models import db
from gearguard.models.notification import NOTIFICATION_TYPES, Notification


class NotificationService:
    """Stateless service class for notification operations."""

    @staticmethod
    def create(*, user_id, title, message="", type="system",
               reference_type=None, reference_id=None, commit=True):
        """
        Create a single notification record.

        Pass ``commit=False`` to batch several inserts into the caller's
        transaction.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type}")
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        return notif

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50):
        """Notifications for *user_id*, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

