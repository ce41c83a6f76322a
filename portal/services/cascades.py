"""
Studio Portal
Cascade side effects triggered by the transition engine.

    - ensure_phase_milestone: idempotent "<Label> Phase" milestone
    - generate_release_notes: LAUNCH feed entry for a finished sprint

Both add + flush only; the engine runs them through best-effort units.
Idempotency relies on case-sensitive substring matches against existing
titles/bodies (see DESIGN.md, "Substring idempotency").
"""

import logging

from portal.models import db
from portal.models.delivery import Deliverable, Milestone
from portal.models.project import phase_label
from portal.services import project_updates

logger = logging.getLogger(__name__)


def find_phase_milestone(project_id, phase):
    """First milestone whose title contains the phase label, or None."""
    label = phase_label(phase)
    for milestone in Milestone.query.filter_by(project_id=project_id).order_by(Milestone.id):
        if label in milestone.title:
            return milestone
    return None


def next_milestone_order(project_id):
    """order_index that appends to the end of the project's milestone list."""
    last = (
        Milestone.query.filter_by(project_id=project_id)
        .order_by(Milestone.order_index.desc())
        .first()
    )
    return last.order_index + 1 if last else 0


def ensure_phase_milestone(project_id, phase):
    """Return the project's milestone for ``phase``, creating it if missing."""
    existing = find_phase_milestone(project_id, phase)
    if existing is not None:
        return existing

    label = phase_label(phase)
    milestone = Milestone(
        project_id=project_id,
        title=f"{label} Phase",
        description=f"Project entered the {label} phase.",
        status="NOT_STARTED",
        order_index=next_milestone_order(project_id),
        client_visible=True,
    )
    db.session.add(milestone)
    db.session.flush()
    logger.info("Phase milestone created: %s", milestone.title,
                extra={"project_id": project_id, "event_type": "phase_milestone"})
    return milestone


def completed_deliverables(sprint_id):
    """DONE deliverables of a sprint, most recently updated first."""
    return (
        Deliverable.query
        .filter_by(sprint_id=sprint_id, status="DONE")
        .order_by(Deliverable.updated_at.desc(), Deliverable.id.desc())
        .all()
    )


def release_notes_exist(sprint):
    return project_updates.find_release_notes(sprint.project_id, sprint.name) is not None


def generate_release_notes(sprint, author_id=None):
    """Write the release-notes entry for ``sprint`` (no existence check)."""
    return project_updates.release_notes_update(
        sprint.project_id,
        sprint.name,
        completed_deliverables(sprint.id),
        author_id=author_id,
    )
