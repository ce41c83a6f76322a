"""
Studio Portal
Identity models.

Models:
    - User: internal staff member or client contact

Session issuance lives outside this package; requests arrive with an
already-authenticated user id (see portal.middleware.actor).
"""

from datetime import datetime, timezone

from portal.models import db

USER_TYPES = {"INTERNAL", "CLIENT"}


class User(db.Model):
    """Person who can act on projects: studio staff or a client contact."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    user_type = db.Column(
        db.String(20),
        nullable=False,
        default="INTERNAL",
        comment="INTERNAL | CLIENT",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_client(self) -> bool:
        return self.user_type == "CLIENT"

    @property
    def is_internal(self) -> bool:
        return self.user_type == "INTERNAL"

    @property
    def display_name(self) -> str:
        """First + last name, or the email address when both are blank."""
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "user_type": self.user_type,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.user_type})>"
