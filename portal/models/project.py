"""
Studio Portal
Project domain models.

Models:
    - Project: client engagement with a lifecycle phase and a due date
    - ProjectMember: user <-> project membership
"""

from datetime import datetime, timezone

from portal.models import db

# Ordered, but phase changes are not forward-only.
PROJECT_PHASES = ("DISCOVERY", "DESIGN", "BUILD", "QA", "LAUNCH", "SUPPORT")

PHASE_LABELS = {
    "DISCOVERY": "Discovery",
    "DESIGN": "Design",
    "BUILD": "Build",
    "QA": "QA",
    "LAUNCH": "Launch",
    "SUPPORT": "Support",
}

DEFAULT_WEEKLY_CAPACITY_HOURS = 40


def phase_label(phase: str) -> str:
    return PHASE_LABELS.get(phase, phase)


class Project(db.Model):
    """
    Client engagement.

    due_date is moved by approved change requests; phase changes cascade
    into the milestone list and the update feed.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    phase = db.Column(
        db.String(20),
        nullable=False,
        default="DISCOVERY",
        comment="DISCOVERY | DESIGN | BUILD | QA | LAUNCH | SUPPORT",
    )
    status = db.Column(db.String(30), nullable=False, default="active")
    start_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=False)
    weekly_capacity_hours = db.Column(
        db.Integer, nullable=True,
        comment="Team capacity used for change-request delay; 40 when unset",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships
    members = db.relationship(
        "ProjectMember", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    milestones = db.relationship(
        "Milestone", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Milestone.order_index",
    )
    epics = db.relationship(
        "Epic", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Epic.order_index",
    )
    sprints = db.relationship(
        "Sprint", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Sprint.start_date",
    )
    deliverables = db.relationship(
        "Deliverable", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    change_requests = db.relationship(
        "ChangeRequest", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    updates = db.relationship(
        "ProjectUpdate", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def effective_weekly_capacity(self) -> int:
        cap = self.weekly_capacity_hours
        if not cap or cap <= 0:
            return DEFAULT_WEEKLY_CAPACITY_HOURS
        return cap

    def to_dict(self) -> dict:
        """Serialize core project fields for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "phase": self.phase,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "weekly_capacity_hours": self.weekly_capacity_hours,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name} [{self.phase}]>"


class ProjectMember(db.Model):
    """Membership row; the notification audience is drawn from here."""

    __tablename__ = "project_members"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    role = db.Column(db.String(50), default="member")

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    user = db.relationship("User")

    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
        }

    def __repr__(self):
        return f"<ProjectMember project={self.project_id} user={self.user_id}>"
