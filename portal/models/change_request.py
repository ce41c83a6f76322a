"""
Studio Portal
Change request model.

A client-submitted scope change. The hour estimate drives a projected
delay and a new project due date, both stored denormalized so the list
views never recompute them.
"""

from datetime import datetime, timezone

from portal.models import db

CHANGE_REQUEST_STATUSES = {
    "NEW", "IN_REVIEW", "ESTIMATED", "APPROVED", "REJECTED", "SCHEDULED", "DONE",
}
CHANGE_REQUEST_TYPES = {"BUG", "ENHANCEMENT", "NEW_FEATURE", "CONTENT", "OTHER"}
CHANGE_REQUEST_SCOPES = {"IN_SCOPE", "OUT_OF_SCOPE", "UNKNOWN"}


class ChangeRequest(db.Model):
    """
    Scope-change proposal.

    estimate_hours (set by staff) is authoritative once present;
    ai_estimated_hours is only used until then.
    """

    __tablename__ = "change_requests"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    author_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=False)
    type = db.Column(
        db.String(20), nullable=False, default="OTHER",
        comment="BUG | ENHANCEMENT | NEW_FEATURE | CONTENT | OTHER",
    )
    status = db.Column(db.String(20), nullable=False, default="NEW")
    scope = db.Column(db.String(20), nullable=False, default="UNKNOWN")
    priority = db.Column(db.String(10), nullable=False, default="MED")
    impact_notes = db.Column(db.Text, nullable=True)

    estimate_hours = db.Column(db.Float, nullable=True, comment="Human estimate")
    estimate_cost_cents = db.Column(db.Integer, nullable=True)
    ai_estimated_hours = db.Column(db.Float, nullable=True, comment="Estimator output")
    estimated_timeline_delay_days = db.Column(db.Integer, nullable=True)
    new_project_due_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    author = db.relationship("User")

    @property
    def authoritative_hours(self):
        if self.estimate_hours is not None:
            return self.estimate_hours
        return self.ai_estimated_hours

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "author_id": self.author_id,
            "author": self.author.to_dict() if self.author else None,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "status": self.status,
            "scope": self.scope,
            "priority": self.priority,
            "impact_notes": self.impact_notes,
            "estimate_hours": self.estimate_hours,
            "estimate_cost_cents": self.estimate_cost_cents,
            "ai_estimated_hours": self.ai_estimated_hours,
            "estimated_timeline_delay_days": self.estimated_timeline_delay_days,
            "new_project_due_date": (
                self.new_project_due_date.isoformat() if self.new_project_due_date else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ChangeRequest {self.id}: {self.title[:40]} [{self.status}]>"
