"""
Studio Portal
Blueprint registry and shared request helpers.

Layer contract:
    - Blueprint: parse JSON, resolve the acting user, call the transition
      engine, return JSON.
    - NO db.session writes here; the engine owns every commit.
    - Domain exceptions are mapped to HTTP once, in register_error_handlers.
"""

import logging

from flask import g, request
from werkzeug.exceptions import BadRequest

from portal.core.exceptions import (
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    ValidationError,
)
from portal.models import db
from portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)


class MalformedBody(BadRequest):
    """Request body is not a JSON object."""


def json_body():
    """Return the request body as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None and not request.data:
        return {}
    if not isinstance(data, dict):
        raise MalformedBody("Request body must be a JSON object")
    return data


def current_actor():
    return getattr(g, "current_user", None)


def register_error_handlers(app):
    """Map domain exceptions to the standard error envelope.

    Every handler discards the request's uncommitted changes first.
    """

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(exc))

    @app.errorhandler(ValidationError)
    def _validation(exc):
        db.session.rollback()
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details)

    @app.errorhandler(UnauthorizedError)
    def _unauthorized(exc):
        db.session.rollback()
        return api_error(E.FORBIDDEN, str(exc))

    @app.errorhandler(RateLimitedError)
    def _rate_limited(exc):
        db.session.rollback()
        return api_error(E.RATE_LIMITED, str(exc),
                         details={"retry_after": exc.retry_after.isoformat()})

    @app.errorhandler(MalformedBody)
    def _malformed(exc):
        return api_error(E.VALIDATION_INVALID, exc.description)

    @app.errorhandler(404)
    def _route_not_found(exc):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(exc):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def _server_error(exc):
        db.session.rollback()
        logger.error("500 error: %s", exc, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
