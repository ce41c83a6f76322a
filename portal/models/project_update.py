"""
Studio Portal
Project update feed model.

ProjectUpdate rows are APPEND-ONLY. They are written by the event ledger
(portal.services.project_updates) and never edited afterwards; a flush that
tries to modify a persisted row is rejected.
"""

from datetime import datetime, timezone

from sqlalchemy import event as _sa_event

from portal.core.exceptions import ValidationError
from portal.models import db

UPDATE_TYPES = {"GENERAL", "LAUNCH", "DECISION", "RISK", "WEEKLY"}


class ProjectUpdate(db.Model):
    """Immutable feed entry describing a notable project event."""

    __tablename__ = "project_updates"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    author_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    type = db.Column(
        db.String(20), nullable=False, default="GENERAL",
        comment="GENERAL | LAUNCH | DECISION | RISK | WEEKLY",
    )
    title = db.Column(db.String(300), nullable=True)
    body = db.Column(db.Text, nullable=False)
    client_visible = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    author = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "author_id": self.author_id,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "client_visible": self.client_visible,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ProjectUpdate {self.id}: {self.type} {self.title or ''}>"


@_sa_event.listens_for(ProjectUpdate, "before_update")
def _reject_update(mapper, connection, target):
    raise ValidationError(
        "Project updates are immutable once created",
        details={"project_update_id": target.id},
    )
