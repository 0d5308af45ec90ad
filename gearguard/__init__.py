"""
GearGuard maintenance service
Flask Application Factory.

Usage:
    from gearguard import create_app
    app = create_app()           # APP_ENV, or "development"
    app = create_app("testing")
"""

import importlib
import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

from gearguard.config import config
from gearguard.middleware.logging_config import configure_logging
from gearguard.middleware.rate_limiter import init_rate_limits
from gearguard.middleware.timing import init_request_timing
from gearguard.models import db

logger = logging.getLogger(__name__)

_MODEL_MODULES = (
    "gearguard.models.equipment",
    "gearguard.models.maintenance",
    "gearguard.models.notification",
    "gearguard.models.scheduling",
)


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY constraints unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Storage comes from RATELIMIT_STORAGE_URI at init_app time
limiter = Limiter(key_func=get_remote_address, default_limits=[])


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS") or "*"
    if origins == "*":
        CORS(app)
    else:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])


def _init_database(app):
    """Register every model and create missing tables."""
    for module in _MODEL_MODULES:
        importlib.import_module(module)

    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(app.instance_path, exist_ok=True)

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            # Schema may already be managed by Flask-Migrate
            logger.warning("create_all skipped: %s", exc)


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "code": "ERR_METHOD_NOT_ALLOWED"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "code": "ERR_RATE_LIMITED",
                "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error on %s: %s", request.path, e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500


def create_app(config_name=None):
    """
    Build a configured GearGuard app.

    Args:
        config_name: "development", "testing" or "production".
            Defaults to APP_ENV, then "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _init_database(app)

    from gearguard.blueprints.health_bp import health_bp
    from gearguard.blueprints.maintenance_bp import maintenance_bp
    from gearguard.blueprints.scheduler_bp import scheduler_bp

    for bp in (health_bp, maintenance_bp, scheduler_bp):
        app.register_blueprint(bp)

    _register_error_handlers(app)
    init_rate_limits(app, limiter)

    # Importing the jobs module registers them with the scheduler
    importlib.import_module("gearguard.services.scheduled_jobs")
    from gearguard.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    logger.info("GearGuard app created (config=%s)", config_name)
    return app
