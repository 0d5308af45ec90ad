"""
GearGuard maintenance service
Scheduler Service.

Small in-process job scheduler. Jobs are plain functions registered with
``@register_job``; each has a persisted ``ScheduledJob`` row carrying its
cron-style config, enable flag and run history.

Jobs run three ways:
    - ``SchedulerService.run_job(name)``: manual trigger (API, tests)
    - ``SchedulerService.run_due_jobs(now)``: every enabled job whose
      hour/minute matches ``now`` and has not already run that minute
    - the background ticker started by ``init_app`` when SCHEDULER_ENABLED,
      which calls ``run_due_jobs`` once a minute
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Callable

from flask import Flask, current_app, has_app_context

from gearguard.models import db
from gearguard.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}

_DEFAULT_SCHEDULES = {
    "check_overdue": {"hour": "8", "minute": "0", "description": "Daily at 08:00"},
    "generate_preventive": {"hour": "6", "minute": "0", "description": "Daily at 06:00"},
}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("check_overdue")
        def check_overdue(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _get_default_schedule(job_name: str) -> dict:
    return dict(_DEFAULT_SCHEDULES.get(
        job_name, {"hour": "0", "minute": "0", "description": "Daily at midnight"},
    ))


def _field_matches(field, value: int) -> bool:
    """Match one cron field: '*', '*/n', 'a,b' or a plain number."""
    field = str(field if field is not None else "*").strip()
    if field == "*":
        return True
    if field.startswith("*/"):
        step = int(field[2:])
        return step > 0 and value % step == 0
    return value in {int(part) for part in field.split(",") if part.strip()}


def schedule_matches(config: dict | None, now: datetime) -> bool:
    config = config or {}
    return (_field_matches(config.get("hour"), now.hour)
            and _field_matches(config.get("minute"), now.minute))


class SchedulerService:
    """
    Job registration, persistence and execution.

    Jobs are executed within the Flask app context.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))
        if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
            cls.start()

    @classmethod
    def _context(cls):
        """Reuse the active app context (and its session) when it is ours."""
        if has_app_context() and current_app._get_current_object() is cls._app:
            return nullcontext()
        return cls._app.app_context()

    @classmethod
    def _get_or_create_record(cls, job_name: str) -> ScheduledJob:
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if record is None:
            fn = _job_registry[job_name]
            record = ScheduledJob(
                job_name=job_name,
                description=(fn.__doc__ or f"Scheduled job: {job_name}").strip().splitlines()[0],
                schedule_type="cron",
                schedule_config=_get_default_schedule(job_name),
                status="active",
                is_enabled=True,
            )
            db.session.add(record)
            db.session.commit()
        return record

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        existing = {j.job_name for j in ScheduledJob.query.all()}
        created = [cls._get_or_create_record(name) for name in _job_registry if name not in existing]
        if created:
            logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name and record the run.

        A job exception is caught and reported as ``status="failed"``; it
        never escapes to the caller.

        Returns:
            {"job_name", "status", "duration_ms", "result", "error"}
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        with cls._context():
            try:
                result = fn(cls._app)
            except Exception as exc:
                db.session.rollback()
                status = "failed"
                error = str(exc)
                logger.exception("Job %s failed", job_name, extra={"job_name": job_name})

            duration_ms = int((time.monotonic() - start) * 1000)

            try:
                record = cls._get_or_create_record(job_name)
                record.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Failed to update job record for %s", job_name)

        logger.info("Job %s finished: %s (%dms)", job_name, status, duration_ms,
                    extra={"job_name": job_name, "duration_ms": duration_ms})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def run_due_jobs(cls, now: datetime | None = None) -> list[dict]:
        """Run every enabled job scheduled for *now* (minute resolution)."""
        now = now or datetime.now(timezone.utc)
        due = []
        with cls._context():
            cls.ensure_jobs_registered()
            for record in ScheduledJob.query.filter_by(is_enabled=True).all():
                if record.job_name not in _job_registry:
                    continue
                if not schedule_matches(record.schedule_config, now):
                    continue
                last = record.last_run_at
                if last is not None:
                    if last.tzinfo is None:
                        last = last.replace(tzinfo=timezone.utc)
                    if last.replace(second=0, microsecond=0) == now.replace(second=0, microsecond=0):
                        continue
                due.append(record.job_name)
        return [cls.run_job(name) for name in due]

    @classmethod
    def start(cls, interval_seconds: int = 60) -> None:
        """Start the background ticker thread (idempotent)."""
        if cls._thread and cls._thread.is_alive():
            return
        cls._stop = threading.Event()

        def _loop():
            while not cls._stop.wait(interval_seconds):
                try:
                    cls.run_due_jobs()
                except Exception:
                    logger.exception("Scheduler tick failed")

        cls._thread = threading.Thread(target=_loop, name="gearguard-scheduler", daemon=True)
        cls._thread.start()
        logger.info("Scheduler ticker started (every %ds)", interval_seconds)

    @classmethod
    def stop(cls) -> None:
        if cls._stop:
            cls._stop.set()
        cls._thread = None

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """All registered jobs with their DB record (if any)."""
        jobs = []
        for name in _job_registry:
            record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "default_schedule": _get_default_schedule(name),
                "db_record": record.to_dict() if record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a job. None when the name is not registered."""
        if job_name not in _job_registry:
            return None
        record = cls._get_or_create_record(job_name)
        record.is_enabled = enabled
        record.status = "active" if enabled else "paused"
        db.session.commit()
        return record.to_dict()
