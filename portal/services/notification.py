"""
Studio Portal
Notification Service.

Central service for computing notification audiences, fanning out
per-user notifications (plus one email each), and the pull-based inbox
(list, unread count, mark read).

Fan-out runs each member in its own best-effort unit, so one failing
recipient never blocks the others or the action that triggered it.
"""

import logging
from datetime import datetime, timezone

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.auth import User
from portal.models.notification import NOTIFICATION_TYPES, Notification
from portal.models.project import ProjectMember
from portal.services.best_effort import best_effort

logger = logging.getLogger(__name__)

INBOX_LIMIT = 50


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Audience ──────────────────────────────────────────────────────────

    @staticmethod
    def compute_audience(*, actor_id, member_ids=(), assignee_id=None, parent_author_id=None):
        """Deduplicated recipient ids, actor excluded, in first-seen order.

        Sources: the assignee, the given (active) member ids and, for
        replies, the parent item's author.
        """
        seen = {}
        for uid in (assignee_id, *member_ids, parent_author_id):
            if uid is None or uid == actor_id:
                continue
            seen.setdefault(uid, None)
        return list(seen)

    @staticmethod
    def active_member_ids(project_id):
        rows = (
            db.session.query(ProjectMember.user_id)
            .join(User, User.id == ProjectMember.user_id)
            .filter(ProjectMember.project_id == project_id, User.is_active.is_(True))
            .order_by(ProjectMember.id)
            .all()
        )
        return [r[0] for r in rows]

    @classmethod
    def project_audience(cls, project_id, *, actor_id, assignee_id=None, parent_author_id=None):
        return cls.compute_audience(
            actor_id=actor_id,
            member_ids=cls.active_member_ids(project_id),
            assignee_id=assignee_id,
            parent_author_id=parent_author_id,
        )

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, type, title, message="", link=None, metadata=None,
               project_id=None, update_id=None):
        """
        Add a single notification record.

        Returns:
            The Notification instance (flushed, not committed).
        """
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Invalid notification type: {type}")
        notif = Notification(
            user_id=user_id,
            project_id=project_id,
            update_id=update_id,
            type=type,
            title=title,
            message=message,
            link=link,
            meta=metadata,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    @classmethod
    def notify(cls, audience, *, type, title, message="", link=None, metadata=None,
               project_id=None, update_id=None, email_sender=None,
               email_template=None, email_context=None):
        """
        Fan out one notification and one email per audience member.

        Each member's notification and each email is an independent
        best-effort unit; failures are logged and skipped.

        Returns:
            List of the Notification rows that were created.
        """
        created = []
        for user_id in audience:
            notif = best_effort(
                "notification", cls._notify_member, user_id,
                dict(type=type, title=title, message=message, link=link,
                     metadata=metadata, project_id=project_id, update_id=update_id),
                project_id=project_id,
            )
            if notif is None:
                continue
            created.append(notif)

            if email_sender is not None and email_template:
                best_effort(
                    "notification_email", cls._email_member, email_sender, notif,
                    email_template, dict(email_context or {}),
                    project_id=project_id,
                )

        logger.info("Notified %d/%d users: %s", len(created), len(audience), title,
                    extra={"project_id": project_id, "event_type": "notify"})
        return created

    @classmethod
    def _notify_member(cls, user_id, fields):
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return cls.create(user_id=user.id, **fields)

    @staticmethod
    def _email_member(email_sender, notif, template_name, context):
        user = db.session.get(User, notif.user_id)
        context.setdefault("notification_title", notif.title)
        return email_sender.send_from_template(
            to_email=user.email,
            to_name=user.display_name,
            template_name=template_name,
            context=context,
            notification_id=notif.id,
            project_id=notif.project_id,
        )

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, limit=INBOX_LIMIT):
        """Newest ``limit`` notifications for a user."""
        return (
            Notification.query.filter_by(user_id=user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's notifications as read.

        Raises:
            NotFoundError: missing, or owned by another user.
        """
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if not notif.read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark every unread notification of the user as read; returns the count."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, read=False)
            .update({"read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
