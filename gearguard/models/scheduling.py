"""
GearGuard: Scheduled job registry model.

One ``ScheduledJob`` row per job registered with ``@register_job``. The row
holds the cron fields the ticker matches against, the enable flag and a
summary of the most recent run.
"""

from datetime import datetime, timezone

from gearguard.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="cron")
    schedule_config = db.Column(
        db.JSON, default=dict,
        comment="Cron fields matched by the ticker: hour, minute",
    )
    status = db.Column(db.String(20), default="active", comment="active | paused | failed")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    error_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    _SERIALIZED = (
        "id", "job_name", "description", "schedule_type", "schedule_config",
        "status", "is_enabled", "last_run_status", "last_run_duration_ms",
        "last_run_result", "run_count", "error_count", "last_error",
    )

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Store the outcome of one execution and bump the counters."""
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        d = {name: getattr(self, name) for name in self._SERIALIZED}
        d["last_run_at"] = self.last_run_at.isoformat() if self.last_run_at else None
        return d

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} enabled={self.is_enabled}>"
