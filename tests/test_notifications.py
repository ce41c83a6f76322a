"""
Notification service tests.

Tests cover:
  - audience computation (dedupe, actor exclusion, inactive members)
  - per-member fan-out with one email each
  - failing email sender does not block notifications
  - inbox: list, unread count, mark read, mark all read
"""
import pytest

from portal.core.exceptions import NotFoundError
from portal.models import db
from portal.models.notification import EmailLog, Notification
from portal.services.email_service import EmailService
from portal.services.notification import NotificationService

from conftest import FailingEmailSender, RecordingEmailSender


class TestAudience:
    def test_union_minus_actor_deduplicated(self):
        audience = NotificationService.compute_audience(
            actor_id=1, member_ids=[1, 2, 3, 2], assignee_id=3, parent_author_id=4,
        )
        assert audience == [3, 2, 4]

    def test_actor_as_assignee_is_excluded(self):
        assert NotificationService.compute_audience(actor_id=5, assignee_id=5) == []

    def test_inactive_members_are_not_in_project_audience(self, project, make_user, staff):
        from portal.models.project import ProjectMember
        gone = make_user("CLIENT", is_active=False)
        db.session.add(ProjectMember(project_id=project.id, user_id=gone.id))
        db.session.commit()
        audience = NotificationService.project_audience(project.id, actor_id=staff.id)
        assert gone.id not in audience
        assert staff.id not in audience


class TestNotify:
    def test_one_notification_and_email_per_member(self, project, staff, client_user, make_user):
        other = make_user("INTERNAL", first_name="Olive")
        sender = RecordingEmailSender()
        created = NotificationService.notify(
            [client_user.id, other.id],
            type="PROJECT_UPDATE",
            title="Sprint Completed: Sprint 1",
            message="preview",
            link="/portal/projects/1/updates",
            project_id=project.id,
            email_sender=sender,
            email_template="project_update",
            email_context={"project_name": project.name},
        )
        assert len(created) == 2
        assert Notification.query.count() == 2
        assert [s["to_email"] for s in sender.sent] == [client_user.email, other.email]
        assert sender.sent[0]["context"]["notification_title"] == "Sprint Completed: Sprint 1"
        assert sender.sent[0]["notification_id"] == created[0].id

    def test_failing_email_keeps_notifications(self, project, client_user, staff):
        created = NotificationService.notify(
            [client_user.id, staff.id],
            type="COMMENT", title="t", project_id=project.id,
            email_sender=FailingEmailSender(), email_template="comment_notification",
        )
        assert len(created) == 2
        assert Notification.query.count() == 2

    def test_missing_user_is_skipped(self, project, client_user):
        created = NotificationService.notify(
            [999, client_user.id], type="COMMENT", title="t", project_id=project.id,
        )
        assert [n.user_id for n in created] == [client_user.id]

    def test_email_service_logs_in_dev_mode(self, project, client_user):
        NotificationService.notify(
            [client_user.id], type="PROJECT_UPDATE", title="Heads up", project_id=project.id,
            email_sender=EmailService, email_template="project_update",
            email_context={"project_name": project.name, "body": "b", "url": "u"},
        )
        log = EmailLog.query.one()
        assert log.status == "sent"
        assert log.subject == f"[{project.name}] Heads up"
        assert log.recipient_email == client_user.email


class TestInbox:
    def _seed(self, user, n):
        for i in range(n):
            NotificationService.create(user_id=user.id, type="COMMENT", title=f"n{i}")
        db.session.commit()

    def test_list_and_unread_count(self, client_user):
        self._seed(client_user, 3)
        assert len(NotificationService.list_for_user(client_user.id)) == 3
        assert NotificationService.unread_count(client_user.id) == 3

    def test_mark_read(self, client_user):
        self._seed(client_user, 2)
        notif = NotificationService.list_for_user(client_user.id)[0]
        NotificationService.mark_read(notif.id, client_user.id)
        assert NotificationService.unread_count(client_user.id) == 1
        assert db.session.get(Notification, notif.id).read_at is not None

    def test_mark_read_of_someone_else_is_not_found(self, client_user, staff):
        self._seed(client_user, 1)
        notif = NotificationService.list_for_user(client_user.id)[0]
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(notif.id, staff.id)

    def test_mark_all_read(self, client_user, staff):
        self._seed(client_user, 3)
        self._seed(staff, 1)
        assert NotificationService.mark_all_read(client_user.id) == 3
        assert NotificationService.unread_count(client_user.id) == 0
        assert NotificationService.unread_count(staff.id) == 1
