"""
Health checks.

    GET /api/v1/health/ready   process is up (no dependency checks)
    GET /api/v1/health/live    database round-trip and scheduler state;
                               503 when the database is unreachable
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gearguard.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _scheduler_check() -> dict:
    scheduler = current_app.extensions.get("scheduler")
    if scheduler is None:
        return {"status": "not_initialized", "ticker_running": False}
    thread = scheduler._thread
    return {"status": "ok", "ticker_running": bool(thread and thread.is_alive())}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"})


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _database_check(), "scheduler": _scheduler_check()}
    healthy = checks["database"]["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
