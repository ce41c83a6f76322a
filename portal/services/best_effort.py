"""
Best-effort side-effect dispatch.

Every cascade the transition engine triggers after committing a primary
mutation (feed entries, notifications, emails, phase milestones, release
notes) runs through ``best_effort`` or ``attempt``. Each call is its own
unit of work:

    - success  → the session is committed, the callable's result returned
    - failure  → the session is rolled back and the error logged with
                 ``logger.exception``; nothing is raised

The primary mutation must already be committed before the first
best-effort call, so a rollback here can only discard the side effect's
own pending writes.

Usage:
    from portal.services.best_effort import best_effort

    best_effort("phase_milestone", ensure_phase_milestone, project.id, phase,
                project_id=project.id)
"""

import logging

from portal.core.exceptions import DependencyFailedError
from portal.models import db

logger = logging.getLogger(__name__)


def attempt(event_type, fn, *args, project_id=None, **kwargs):
    """Run ``fn(*args, **kwargs)`` as an independent, failure-tolerant unit.

    Args:
        event_type: Short label for logs (e.g. "phase_update").
        fn: The side effect. It may add/flush rows but must not commit.
        project_id: Logged with the failure, if given.

    Returns:
        ``(True, result)`` on success, ``(False, DependencyFailedError)``
        on failure.
    """
    try:
        result = fn(*args, **kwargs)
        db.session.commit()
        return True, result
    except Exception as exc:
        db.session.rollback()
        failure = exc if isinstance(exc, DependencyFailedError) else DependencyFailedError(event_type, exc)
        logger.exception(
            "Best-effort side effect failed: %s", failure,
            extra={"project_id": project_id, "event_type": event_type},
        )
        return False, failure


def best_effort(event_type, fn, *args, project_id=None, **kwargs):
    """Like ``attempt`` but returns the result, or None if ``fn`` raised."""
    ok, value = attempt(event_type, fn, *args, project_id=project_id, **kwargs)
    return value if ok else None
