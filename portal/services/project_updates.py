"""
Studio Portal
Event ledger writer: append-only project update feed.

``create_project_update`` is the only code path that inserts
ProjectUpdate rows. The typed helpers below compose the title and
markdown body for each engine event; they add + flush but never commit
(the caller's best-effort unit owns the commit).
"""

import logging

from portal.core.exceptions import ValidationError
from portal.models import db
from portal.models.delivery import DELIVERABLE_STATUS_LABELS
from portal.models.project import phase_label
from portal.models.project_update import UPDATE_TYPES, ProjectUpdate

logger = logging.getLogger(__name__)

# Idempotency marker searched by the sprint completion check.
RELEASE_NOTES_MARKER = "Sprint Completed"


def _day_word(n):
    return "day" if n == 1 else "days"


def _format_hours(hours):
    if hours is None:
        return None
    return int(hours) if float(hours).is_integer() else hours


def create_project_update(project_id, body, *, type="GENERAL", title=None,
                          author_id=None, client_visible=True):
    """Append one immutable feed entry.

    Raises:
        ValidationError: empty body or unknown type.
    """
    if not body or not str(body).strip():
        raise ValidationError("Project update body is required", details={"body": "empty"})
    if type not in UPDATE_TYPES:
        raise ValidationError(f"Invalid update type: {type}",
                              details={"type": f"must be one of {sorted(UPDATE_TYPES)}"})

    update = ProjectUpdate(
        project_id=project_id,
        author_id=author_id,
        type=type,
        title=title,
        body=body,
        client_visible=client_visible,
    )
    db.session.add(update)
    db.session.flush()
    logger.info("Project update recorded: %s", title or type,
                extra={"project_id": project_id, "event_type": "project_update"})
    return update


# ── Typed helpers ────────────────────────────────────────────────────────────


def phase_change_update(project_id, old_phase, new_phase, author_id=None):
    return create_project_update(
        project_id,
        f"Project phase changed from **{phase_label(old_phase)}** to **{phase_label(new_phase)}**.",
        title="Project Phase Changed",
        author_id=author_id,
    )


def deliverable_status_update(project_id, deliverable_title, old_status, new_status,
                              author_id=None):
    """LAUNCH entry on completion, GENERAL otherwise; None for a no-op move."""
    if old_status == new_status:
        return None

    if new_status == "DONE":
        return create_project_update(
            project_id,
            f"Deliverable **{deliverable_title}** has been completed! 🎉",
            type="LAUNCH",
            title="Deliverable Completed",
            author_id=author_id,
        )

    old_label = DELIVERABLE_STATUS_LABELS.get(old_status, old_status)
    new_label = DELIVERABLE_STATUS_LABELS.get(new_status, new_status)
    return create_project_update(
        project_id,
        f"Deliverable **{deliverable_title}** moved from **{old_label}** to **{new_label}**.",
        title="Deliverable Status Changed",
        author_id=author_id,
    )


def change_request_submitted_update(project_id, title, author_id=None,
                                    ai_hours=None, delay_days=None):
    body = f"New change request submitted: **{title}**."
    if ai_hours:
        body += f"\n\nAI-estimated effort: **{_format_hours(ai_hours)}** hours."
    if delay_days and delay_days > 0:
        body += f"\n\nEstimated timeline impact: **{delay_days}** {_day_word(delay_days)} delay."
    return create_project_update(project_id, body, title="Change Request Submitted",
                                 author_id=author_id)


def change_request_approved_update(project_id, title, author_id=None,
                                   hours=None, delay_days=None):
    body = f"Change request **{title}** has been approved."
    if delay_days and delay_days > 0:
        body += f"\n\nThis will delay the project by **{delay_days}** {_day_word(delay_days)}."
    if hours:
        body += f"\n\nEstimated effort: **{_format_hours(hours)}** hours."
    return create_project_update(project_id, body, title="Change Request Approved",
                                 author_id=author_id)


def change_request_status_update(project_id, title, new_status, author_id=None):
    return create_project_update(
        project_id,
        f"Change request **{title}** status changed to **{new_status}**.",
        title="Change Request Status Updated",
        author_id=author_id,
    )


def member_added_update(project_id, member_name, author_id=None):
    return create_project_update(
        project_id,
        f"**{member_name}** has been added to the project team.",
        title="Team Member Added",
        author_id=author_id,
    )


def release_notes_update(project_id, sprint_name, done_deliverables, author_id=None):
    """LAUNCH entry listing the DONE deliverables of a finished sprint.

    ``done_deliverables`` may be empty; the entry is still written with an
    explicit "nothing completed" body.
    """
    title = f"{RELEASE_NOTES_MARKER}: {sprint_name}"

    if not done_deliverables:
        body = (
            f"**{RELEASE_NOTES_MARKER}**\n\n"
            f"Sprint **{sprint_name}** has been completed.\n\n"
            "*No deliverables were marked as done during this sprint.*"
        )
        return create_project_update(project_id, body, type="LAUNCH", title=title,
                                     author_id=author_id)

    lines = []
    for d in done_deliverables:
        assignee = d.assignee.display_name if d.assignee else "Unassigned"
        desc = f" - {d.description}" if d.description else ""
        lines.append(f"- **{d.title}**{desc} (by {assignee})")

    body = (
        f"**{RELEASE_NOTES_MARKER}**\n\n"
        f"Sprint **{sprint_name}** has been completed! 🎉\n\n"
        "## Completed Deliverables\n\n"
        + "\n".join(lines)
        + f"\n\n**Total Items Completed:** {len(done_deliverables)}"
    )
    return create_project_update(project_id, body, type="LAUNCH", title=title,
                                 author_id=author_id)


def find_release_notes(project_id, sprint_name):
    """Existing release-notes entry for ``sprint_name``, or None.

    Matches on case-sensitive substrings: LAUNCH type, title containing the
    sprint name, body containing RELEASE_NOTES_MARKER. Filtered in Python
    because SQLite LIKE ignores case.
    """
    candidates = (
        ProjectUpdate.query
        .filter_by(project_id=project_id, type="LAUNCH")
        .order_by(ProjectUpdate.id)
        .all()
    )
    for update in candidates:
        if sprint_name in (update.title or "") and RELEASE_NOTES_MARKER in update.body:
            return update
    return None


def list_updates(project_id, *, client_visible_only=False, limit=50):
    """Feed entries for a project, newest first."""
    q = ProjectUpdate.query.filter_by(project_id=project_id)
    if client_visible_only:
        q = q.filter_by(client_visible=True)
    return q.order_by(ProjectUpdate.created_at.desc(), ProjectUpdate.id.desc()).limit(limit).all()
