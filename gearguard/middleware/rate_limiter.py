"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in gearguard/__init__.py with no default limits; this module
applies granular limits per route category.

Usage:
    from gearguard.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

MAINTENANCE_LIMIT = "60/minute"
SCHEDULER_LIMIT = "10/minute"


def rate_limit_key():
    """Acting user when the caller identifies one, else remote IP."""
    user_id = flask_request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Maintenance requests: 60/minute
        - Scheduler triggers:   10/minute (jobs scan whole tables)
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("maintenance")
    if bp:
        limiter.limit(MAINTENANCE_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("scheduler")
    if bp:
        limiter.limit(SCHEDULER_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: maintenance: %s, scheduler: %s",
        MAINTENANCE_LIMIT, SCHEDULER_LIMIT,
    )
