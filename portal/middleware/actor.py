"""
Actor context middleware. Resolves the acting user for API requests.

Session issuance is handled upstream (gateway / SSO proxy). By the time a
request reaches the portal it carries an already-authenticated user id in
the ``X-User-Id`` header. This middleware:
  1. Loads the User row and checks it is active
  2. Sets g.current_user for blueprints and the transition engine
  3. Rejects API requests that name an unknown or inactive user

Requests without the header get g.current_user = None; the blueprint
decides whether an actor is required.
"""

import logging

from flask import g, request

from portal.models import db
from portal.models.auth import User
from portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-User-Id"

ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_actor_context(app):
    """Register the actor resolution hook as a before_request handler."""

    @app.before_request
    def _actor_context():
        g.current_user = None

        if not request.path.startswith("/api/v1/"):
            return None

        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        raw = request.headers.get(ACTOR_HEADER)
        if not raw:
            return None
        if not raw.isdigit():
            return api_error(E.UNAUTHENTICATED, f"{ACTOR_HEADER} must be a user id")

        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            logger.warning("Rejected request for unknown or inactive user %s", raw,
                           extra={"path": request.path})
            return api_error(E.UNAUTHENTICATED, "Unknown or inactive user")

        g.current_user = user
        return None

    logger.info("Actor context middleware installed")
