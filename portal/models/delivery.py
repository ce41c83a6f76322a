"""
Studio Portal
Delivery domain models.

Models:
    - Milestone: client-facing checkpoint, optionally requiring client approval
    - Epic: ordered grouping of deliverables
    - Sprint: fixed 14-day execution window
    - Deliverable: kanban work item
    - DeliverableComment: threaded discussion on a deliverable
    - DeliverableTask: checklist item inside a deliverable

Milestone and sprint progress are never stored; see
portal.services.progress for the derived values.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import validates

from portal.models import db

# ── Shared constants ─────────────────────────────────────────────────────

MILESTONE_STATUSES = {"NOT_STARTED", "IN_PROGRESS", "DONE"}
APPROVAL_STATUSES = {"PENDING", "APPROVED", "CHANGES_REQUESTED"}

# Any-to-any: the board has no forbidden edges.
DELIVERABLE_STATUSES = ("BACKLOG", "PLANNED", "IN_PROGRESS", "QA", "BLOCKED", "DONE")
DELIVERABLE_STATUS_LABELS = {
    "BACKLOG": "Backlog",
    "PLANNED": "Planned",
    "IN_PROGRESS": "In Progress",
    "QA": "QA",
    "BLOCKED": "Blocked",
    "DONE": "Done",
}
PRIORITIES = {"LOW", "MED", "HIGH", "URGENT"}
EPIC_STATUSES = {"NOT_STARTED", "IN_PROGRESS", "DONE", "CANCELLED"}

SPRINT_LENGTH_DAYS = 14


def _iso(value):
    return value.isoformat() if value else None


class Milestone(db.Model):
    """
    Client-facing checkpoint.

    approval_status is non-null exactly when requires_client_approval is set.
    completed_at tracks the most recent entry into DONE.
    """

    __tablename__ = "milestones"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="NOT_STARTED",
        comment="NOT_STARTED | IN_PROGRESS | DONE",
    )
    order_index = db.Column(db.Integer, nullable=False, default=0)
    due_date = db.Column(db.Date, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    client_visible = db.Column(db.Boolean, nullable=False, default=True)
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    requires_client_approval = db.Column(db.Boolean, nullable=False, default=False)
    approval_status = db.Column(
        db.String(30), nullable=True,
        comment="PENDING | APPROVED | CHANGES_REQUESTED (null unless approval required)",
    )
    approval_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    deliverables = db.relationship("Deliverable", backref="milestone", lazy="select")
    assigned_to = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "order_index": self.order_index,
            "due_date": _iso(self.due_date),
            "completed_at": _iso(self.completed_at),
            "client_visible": self.client_visible,
            "assigned_to_id": self.assigned_to_id,
            "requires_client_approval": self.requires_client_approval,
            "approval_status": self.approval_status,
            "approval_notes": self.approval_notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Milestone {self.id}: {self.title} [{self.status}]>"


class Epic(db.Model):
    """Ordered grouping of deliverables within a project."""

    __tablename__ = "epics"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="NOT_STARTED",
        comment="NOT_STARTED | IN_PROGRESS | DONE | CANCELLED",
    )
    priority = db.Column(db.String(10), nullable=False, default="MED")
    assignee_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    due_date = db.Column(db.Date, nullable=True)
    client_visible = db.Column(db.Boolean, nullable=False, default=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignee = db.relationship("User")
    deliverables = db.relationship("Deliverable", backref="epic", lazy="select")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "assignee": self.assignee.to_dict() if self.assignee else None,
            "due_date": _iso(self.due_date),
            "client_visible": self.client_visible,
            "order_index": self.order_index,
            "deliverable_count": len(self.deliverables),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Epic {self.id}: {self.title} [{self.status}]>"


class Sprint(db.Model):
    """
    Fixed-length execution window.

    end_date is derived from start_date and cannot be set on its own;
    windows of one project never overlap (enforced by the transition engine).
    """

    __tablename__ = "sprints"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    deliverables = db.relationship("Deliverable", backref="sprint", lazy="select")

    @validates("start_date")
    def _derive_end_date(self, key, value):
        self.end_date = value + timedelta(days=SPRINT_LENGTH_DAYS) if value else None
        return value

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Sprint {self.id}: {self.name} {self.start_date}..{self.end_date}>"


class Deliverable(db.Model):
    """
    Atomic unit of work on the kanban board.

    order_index orders cards within one status column.
    """

    __tablename__ = "deliverables"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sprint_id = db.Column(
        db.Integer, db.ForeignKey("sprints.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    milestone_id = db.Column(
        db.Integer, db.ForeignKey("milestones.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    epic_id = db.Column(
        db.Integer, db.ForeignKey("epics.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    assignee_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="BACKLOG",
        comment="BACKLOG | PLANNED | IN_PROGRESS | QA | BLOCKED | DONE",
    )
    priority = db.Column(db.String(10), nullable=False, default="MED")
    order_index = db.Column(db.Integer, nullable=False, default=0)
    due_date = db.Column(db.Date, nullable=True)
    estimate_days = db.Column(db.Integer, nullable=True)
    client_visible = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignee = db.relationship("User")
    comments = db.relationship(
        "DeliverableComment", backref="deliverable", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    tasks = db.relationship(
        "DeliverableTask", backref="deliverable", lazy="dynamic",
        cascade="all, delete-orphan", order_by="DeliverableTask.order_index",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "sprint_id": self.sprint_id,
            "milestone_id": self.milestone_id,
            "epic_id": self.epic_id,
            "assignee_id": self.assignee_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "order_index": self.order_index,
            "due_date": _iso(self.due_date),
            "estimate_days": self.estimate_days,
            "client_visible": self.client_visible,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Deliverable {self.id}: {self.title} [{self.status}]>"


class DeliverableComment(db.Model):
    """Comment on a deliverable; parent_id links replies."""

    __tablename__ = "deliverable_comments"

    id = db.Column(db.Integer, primary_key=True)
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    author_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    parent_id = db.Column(
        db.Integer, db.ForeignKey("deliverable_comments.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    content = db.Column(db.Text, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    author = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "deliverable_id": self.deliverable_id,
            "parent_id": self.parent_id,
            "content": self.content,
            "author": self.author.to_dict() if self.author else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<DeliverableComment {self.id} on deliverable {self.deliverable_id}>"


class DeliverableTask(db.Model):
    """Checklist item on a deliverable; completed_at follows ``completed``."""

    __tablename__ = "deliverable_tasks"

    id = db.Column(db.Integer, primary_key=True)
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "deliverable_id": self.deliverable_id,
            "title": self.title,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
            "order_index": self.order_index,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<DeliverableTask {self.id} on deliverable {self.deliverable_id}>"
