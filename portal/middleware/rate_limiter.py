"""
HTTP rate limiting.

Applies per-blueprint request limits using Flask-Limiter. The Limiter
instance is created in portal/__init__.py with no default limits; this
module applies granular limits per route category.

This is request throttling only. The weekly client change-request quota
is a business rule and lives in portal.services.change_request_quota.

Usage:
    from portal.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)


def actor_or_ip_key():
    """Rate limit key: acting user id if resolved, else remote IP."""
    user = getattr(g, "current_user", None)
    if user is not None:
        return f"user:{user.id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per acting user, falling back to remote IP):
        - Change requests:  20/minute  (each create runs the hour estimator)
        - Write endpoints:  60/minute
        - Notifications:    200/minute (polled by the UI)
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("change_requests")
    if bp:
        limiter.limit("20/minute", key_func=actor_or_ip_key)(bp)

    for bp_name in ("projects", "deliverables", "milestones", "epics", "sprints"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("60/minute", key_func=actor_or_ip_key)(bp)

    bp = app.blueprints.get("notifications")
    if bp:
        limiter.limit("200/minute", key_func=actor_or_ip_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: change requests 20/min, write 60/min, notifications 200/min"
    )
