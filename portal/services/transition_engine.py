"""
Studio Portal
Transition Engine: state machines and cascades for the delivery core.

Owns every mutation of Project phase, Milestone, Epic, Sprint, Deliverable and
ChangeRequest. Each operation follows the same shape:

    1. load + authorise (NotFoundError / UnauthorizedError)
    2. validate (ValidationError, RateLimitedError)
    3. apply and COMMIT the primary mutation
    4. run the transition's side effects through best-effort units

Side effects never roll back or fail the primary mutation; see
portal.services.best_effort.

Collaborators (hour estimator, email sender, clock) are injected by the
application factory and stored on ``app.extensions["transition_engine"]``.

Usage:
    from portal.services.transition_engine import get_engine

    engine = get_engine()
    engine.move_deliverable(g.current_user, project_id, deliverable_id,
                            status="DONE", order_index=0)
"""

import logging
import math
from datetime import datetime, timedelta, timezone

from flask import current_app

from portal.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from portal.models import db
from portal.models.auth import User
from portal.models.change_request import (
    CHANGE_REQUEST_SCOPES,
    CHANGE_REQUEST_STATUSES,
    CHANGE_REQUEST_TYPES,
    ChangeRequest,
)
from portal.models.delivery import (
    DELIVERABLE_STATUSES,
    EPIC_STATUSES,
    MILESTONE_STATUSES,
    PRIORITIES,
    SPRINT_LENGTH_DAYS,
    Deliverable,
    DeliverableComment,
    DeliverableTask,
    Epic,
    Milestone,
    Sprint,
)
from portal.models.project import PROJECT_PHASES, Project, ProjectMember
from portal.services import cascades, project_updates
from portal.services.best_effort import attempt, best_effort
from portal.services.change_request_quota import check_quota, resolve_timezone
from portal.services.comments import build_comment_tree, comment_notification, preview
from portal.services.estimation import MAX_HOURS, MIN_HOURS, build_estimator
from portal.services.notification import NotificationService
from portal.services.progress import find_active_sprint, milestone_progress, sprint_progress
from portal.services.timeline_impact import impact_for_project
from portal.utils.helpers import get_or_raise, require_choice, require_date

logger = logging.getLogger(__name__)

EXTENSION_KEY = "transition_engine"


def utc_now():
    return datetime.now(timezone.utc)


def get_engine():
    """The engine bound to the current Flask app."""
    return current_app.extensions[EXTENSION_KEY]


def _required_text(data, field):
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={field: "empty"})
    return value.strip()


def _optional_bool(data, field, current):
    if field not in data:
        return current
    value = data[field]
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean", details={field: repr(value)})
    return value


def _optional_int(data, field, current, *, minimum=None, nullable=True):
    if field not in data:
        return current
    value = data[field]
    if value is None and nullable:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", details={field: repr(value)})
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={field: value})
    return value


class TransitionEngine:
    """
    Cross-entity consistency and propagation engine.

    Request-scoped and stateless: every call loads what it needs from the
    session. The only instance state is the injected collaborators and
    settings.
    """

    def __init__(self, *, estimator, email_sender=None, clock=None,
                 quota_timezone="local", completion_lookback_days=7):
        self.estimator = estimator
        self.email_sender = email_sender
        self.clock = clock or utc_now
        self.quota_timezone = resolve_timezone(quota_timezone)
        self.completion_lookback_days = completion_lookback_days

    @classmethod
    def from_config(cls, config, *, estimator=None, email_sender=None, clock=None):
        return cls(
            estimator=estimator or build_estimator(config),
            email_sender=email_sender,
            clock=clock,
            quota_timezone=config.get("CHANGE_REQUEST_QUOTA_TIMEZONE", "local"),
            completion_lookback_days=config.get("SPRINT_COMPLETION_LOOKBACK_DAYS", 7),
        )

    # ═════════════════════════════════════════════════════════════════════
    #  Shared plumbing
    # ═════════════════════════════════════════════════════════════════════

    def now(self):
        now = self.clock()
        return now if now.tzinfo else now.replace(tzinfo=timezone.utc)

    def today(self):
        return self.now().astimezone(timezone.utc).date()

    @staticmethod
    def _require_actor(actor):
        if actor is None:
            raise UnauthorizedError("Authentication required")
        return actor

    @classmethod
    def _require_internal(cls, actor):
        cls._require_actor(actor)
        if not actor.is_internal:
            raise UnauthorizedError("Only internal users can perform this action")

    @classmethod
    def _require_client(cls, actor):
        cls._require_actor(actor)
        if not actor.is_client:
            raise UnauthorizedError("Only client users can perform this action")

    def _project_for(self, actor, project_id):
        """Load a project the actor may see; clients must be members."""
        self._require_actor(actor)
        project = get_or_raise(Project, project_id)
        if actor.is_client:
            member = ProjectMember.query.filter_by(project_id=project.id, user_id=actor.id).first()
            if member is None:
                raise NotFoundError(resource="Project", resource_id=project_id)
        return project

    @staticmethod
    def _child(model, project, child_id, label=None):
        obj = db.session.get(model, child_id) if child_id is not None else None
        if obj is None or obj.project_id != project.id:
            raise NotFoundError(resource=label or model.__name__, resource_id=child_id)
        return obj

    def _validate_links(self, project, data):
        """sprint_id / milestone_id / epic_id / assignee_id must reference real rows of this project."""
        if data.get("sprint_id") is not None:
            sprint = db.session.get(Sprint, data["sprint_id"])
            if sprint is None or sprint.project_id != project.id:
                raise ValidationError("Sprint does not belong to this project",
                                      details={"sprint_id": data["sprint_id"]})
        if data.get("milestone_id") is not None:
            milestone = db.session.get(Milestone, data["milestone_id"])
            if milestone is None or milestone.project_id != project.id:
                raise ValidationError("Milestone does not belong to this project",
                                      details={"milestone_id": data["milestone_id"]})
        if data.get("epic_id") is not None:
            epic = db.session.get(Epic, data["epic_id"])
            if epic is None or epic.project_id != project.id:
                raise ValidationError("Epic does not belong to this project",
                                      details={"epic_id": data["epic_id"]})
        for field in ("assignee_id", "assigned_to_id"):
            if data.get(field) is not None and db.session.get(User, data[field]) is None:
                raise ValidationError("Unknown user", details={field: data[field]})

    def _publish(self, event_type, builder, project_id, *args, actor=None, **kwargs):
        """Write one feed entry best-effort, then fan it out to the project audience."""
        update = best_effort(event_type, builder, project_id, *args,
                             author_id=actor.id if actor else None,
                             project_id=project_id, **kwargs)
        if update is not None and update.client_visible:
            self._fan_out_update(update, actor)
        return update

    def _fan_out_update(self, update, actor):
        audience = best_effort(
            "notification_audience", NotificationService.project_audience, update.project_id,
            actor_id=actor.id if actor else None, project_id=update.project_id,
        )
        if not audience:
            return
        project = db.session.get(Project, update.project_id)
        NotificationService.notify(
            audience,
            type="PROJECT_UPDATE",
            title=update.title or "Project update",
            message=preview(update.body),
            link=f"/portal/projects/{update.project_id}/updates",
            metadata={"projectId": update.project_id, "updateId": update.id},
            project_id=update.project_id,
            update_id=update.id,
            email_sender=self.email_sender,
            email_template="project_update",
            email_context={
                "project_name": project.name if project else "",
                "body": update.body,
                "url": self._absolute_url(f"/portal/projects/{update.project_id}/updates"),
            },
        )

    def _absolute_url(self, path):
        if self.email_sender is not None and hasattr(self.email_sender, "absolute_url"):
            return self.email_sender.absolute_url(path)
        return path

    # ═════════════════════════════════════════════════════════════════════
    #  Views (entity dict + derived progress)
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def milestone_view(milestone):
        data = milestone.to_dict()
        data.update(milestone_progress(milestone.deliverables))
        return data

    def sprint_view(self, sprint):
        data = sprint.to_dict()
        data.update(sprint_progress(sprint, self.now()))
        return data

    # ═════════════════════════════════════════════════════════════════════
    #  Projects + phase cascade
    # ═════════════════════════════════════════════════════════════════════

    def get_project(self, actor, project_id):
        return self._project_for(actor, project_id).to_dict()

    def create_project(self, actor, data):
        self._require_internal(actor)
        project = Project(
            name=_required_text(data, "name"),
            description=data.get("description"),
            phase=require_choice(data.get("phase", "DISCOVERY"), PROJECT_PHASES, "phase"),
            start_date=require_date(data.get("start_date"), "start_date"),
            due_date=require_date(data.get("due_date"), "due_date"),
            weekly_capacity_hours=_optional_int(data, "weekly_capacity_hours", None, minimum=1),
        )
        if project.due_date is None:
            raise ValidationError("due_date is required", details={"due_date": "empty"})
        db.session.add(project)
        db.session.flush()
        db.session.add(ProjectMember(project_id=project.id, user_id=actor.id, role="owner"))
        db.session.commit()
        logger.info("Project created: %s", project.name, extra={"project_id": project.id})
        return project.to_dict()

    def add_member(self, actor, project_id, user_id, role="member"):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        user = db.session.get(User, user_id)
        if user is None:
            raise ValidationError("Unknown user", details={"user_id": user_id})
        if ProjectMember.query.filter_by(project_id=project.id, user_id=user.id).first():
            raise ValidationError("User is already a project member", details={"user_id": user_id})

        member = ProjectMember(project_id=project.id, user_id=user.id, role=role or "member")
        db.session.add(member)
        db.session.commit()

        self._publish("member_added", project_updates.member_added_update, project.id,
                      user.display_name, actor=actor)
        return member.to_dict()

    def update_project(self, actor, project_id, data):
        """Edit project fields; a phase change triggers the phase cascade."""
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        old_phase = project.phase

        if "name" in data:
            project.name = _required_text(data, "name")
        if "description" in data:
            project.description = data["description"]
        if "status" in data:
            project.status = _required_text(data, "status")
        if "start_date" in data:
            project.start_date = require_date(data["start_date"], "start_date")
        if "due_date" in data:
            due = require_date(data["due_date"], "due_date")
            if due is None:
                raise ValidationError("due_date is required", details={"due_date": "empty"})
            project.due_date = due
        project.weekly_capacity_hours = _optional_int(
            data, "weekly_capacity_hours", project.weekly_capacity_hours, minimum=1,
        )
        if "phase" in data:
            project.phase = require_choice(data["phase"], PROJECT_PHASES, "phase")

        db.session.commit()

        new_phase = project.phase
        if old_phase != new_phase:
            logger.info("Project phase changed %s -> %s", old_phase, new_phase,
                        extra={"project_id": project.id, "event_type": "phase_change"})
            self._phase_cascade(project.id, old_phase, new_phase, actor)

        return project.to_dict()

    def change_phase(self, actor, project_id, phase):
        return self.update_project(actor, project_id, {"phase": phase})

    def _phase_cascade(self, project_id, old_phase, new_phase, actor):
        # Independent units: either may fail without affecting the other.
        best_effort("phase_milestone", cascades.ensure_phase_milestone, project_id, new_phase,
                    project_id=project_id)
        self._publish("phase_update", project_updates.phase_change_update, project_id,
                      old_phase, new_phase, actor=actor)

    # ═════════════════════════════════════════════════════════════════════
    #  Deliverables
    # ═════════════════════════════════════════════════════════════════════

    def list_deliverables(self, actor, project_id):
        project = self._project_for(actor, project_id)
        q = Deliverable.query.filter_by(project_id=project.id)
        if actor.is_client:
            q = q.filter_by(client_visible=True)
        return [d.to_dict() for d in q.order_by(Deliverable.status, Deliverable.order_index)]

    @staticmethod
    def _next_column_index(project_id, status):
        last = (
            Deliverable.query.filter_by(project_id=project_id, status=status)
            .order_by(Deliverable.order_index.desc())
            .first()
        )
        return last.order_index + 1 if last else 0

    def create_deliverable(self, actor, project_id, data):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        status = require_choice(data.get("status", "BACKLOG"), DELIVERABLE_STATUSES, "status")
        self._validate_links(project, data)

        order_index = _optional_int(data, "order_index", None, minimum=0)
        if order_index is None:
            order_index = self._next_column_index(project.id, status)

        deliverable = Deliverable(
            project_id=project.id,
            title=_required_text(data, "title"),
            description=data.get("description"),
            status=status,
            priority=require_choice(data.get("priority", "MED"), PRIORITIES, "priority"),
            order_index=order_index,
            sprint_id=data.get("sprint_id"),
            milestone_id=data.get("milestone_id"),
            epic_id=data.get("epic_id"),
            assignee_id=data.get("assignee_id"),
            due_date=require_date(data.get("due_date"), "due_date"),
            estimate_days=_optional_int(data, "estimate_days", None, minimum=0),
            client_visible=_optional_bool(data, "client_visible", True),
        )
        db.session.add(deliverable)
        db.session.commit()
        logger.info("Deliverable created: %s", deliverable.title,
                    extra={"project_id": project.id, "entity_id": deliverable.id})
        return deliverable.to_dict()

    def update_deliverable(self, actor, project_id, deliverable_id, data):
        """Edit fields; a real status change emits a feed entry."""
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        deliverable = self._child(Deliverable, project, deliverable_id)
        self._validate_links(project, data)
        old_status = deliverable.status

        if "title" in data:
            deliverable.title = _required_text(data, "title")
        if "description" in data:
            deliverable.description = data["description"]
        if "status" in data:
            deliverable.status = require_choice(data["status"], DELIVERABLE_STATUSES, "status")
        if "priority" in data:
            deliverable.priority = require_choice(data["priority"], PRIORITIES, "priority")
        for field in ("sprint_id", "milestone_id", "epic_id", "assignee_id"):
            if field in data:
                setattr(deliverable, field, data[field])
        if "due_date" in data:
            deliverable.due_date = require_date(data["due_date"], "due_date")
        deliverable.order_index = _optional_int(data, "order_index", deliverable.order_index,
                                                minimum=0, nullable=False)
        deliverable.estimate_days = _optional_int(data, "estimate_days", deliverable.estimate_days,
                                                  minimum=0)
        deliverable.client_visible = _optional_bool(data, "client_visible", deliverable.client_visible)

        db.session.commit()
        self._deliverable_status_cascade(project.id, deliverable, old_status, actor)
        return deliverable.to_dict()

    def move_deliverable(self, actor, project_id, deliverable_id, status, order_index):
        """Kanban move: new column and position in one write."""
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        deliverable = self._child(Deliverable, project, deliverable_id)
        status = require_choice(status, DELIVERABLE_STATUSES, "status")
        order_index = _optional_int({"order_index": order_index}, "order_index", None,
                                    minimum=0, nullable=False)
        old_status = deliverable.status

        deliverable.status = status
        deliverable.order_index = order_index
        db.session.commit()

        self._deliverable_status_cascade(project.id, deliverable, old_status, actor)
        return deliverable.to_dict()

    def _deliverable_status_cascade(self, project_id, deliverable, old_status, actor):
        new_status = deliverable.status
        if old_status == new_status:
            return None
        return self._publish(
            "deliverable_status_update", project_updates.deliverable_status_update, project_id,
            deliverable.title, old_status, new_status, actor=actor,
        )

    def delete_deliverable(self, actor, project_id, deliverable_id):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        deliverable = self._child(Deliverable, project, deliverable_id)
        db.session.delete(deliverable)
        db.session.commit()
        return {"deleted": True, "id": deliverable_id}

    # ── Comments ─────────────────────────────────────────────────────────

    def _visible_deliverable(self, actor, project, deliverable_id):
        deliverable = self._child(Deliverable, project, deliverable_id)
        if actor.is_client and not deliverable.client_visible:
            raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)
        return deliverable

    def comment_tree(self, actor, project_id, deliverable_id):
        project = self._project_for(actor, project_id)
        deliverable = self._visible_deliverable(actor, project, deliverable_id)
        comments = (
            deliverable.comments
            .order_by(DeliverableComment.created_at, DeliverableComment.id)
            .all()
        )
        return build_comment_tree(comments)

    def add_comment(self, actor, project_id, deliverable_id, content, parent_id=None):
        """Create a comment, then notify assignee, members and (for replies) the parent author."""
        project = self._project_for(actor, project_id)
        deliverable = self._visible_deliverable(actor, project, deliverable_id)
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("content is required", details={"content": "empty"})

        parent = None
        if parent_id is not None:
            parent = db.session.get(DeliverableComment, parent_id)
            if parent is None or parent.deliverable_id != deliverable.id:
                raise ValidationError("Parent comment does not belong to this deliverable",
                                      details={"parent_id": parent_id})

        comment = DeliverableComment(
            deliverable_id=deliverable.id,
            author_id=actor.id,
            parent_id=parent.id if parent else None,
            content=content,
        )
        db.session.add(comment)
        db.session.commit()

        audience = best_effort(
            "notification_audience", NotificationService.project_audience, project.id,
            actor_id=actor.id,
            assignee_id=deliverable.assignee_id,
            parent_author_id=parent.author_id if parent else None,
            project_id=project.id,
        )
        if audience:
            fields = comment_notification(
                author_name=actor.display_name,
                deliverable=deliverable,
                content=content,
                is_reply=parent is not None,
                project_id=project.id,
            )
            NotificationService.notify(
                audience,
                metadata={"deliverableId": deliverable.id, "commentId": comment.id,
                          "projectId": project.id},
                project_id=project.id,
                email_sender=self.email_sender,
                email_template="comment_notification",
                email_context={
                    "project_name": project.name,
                    "deliverable_title": deliverable.title,
                    "comment_author": actor.display_name,
                    "comment_content": content,
                    "url": self._absolute_url(fields["link"]),
                },
                **fields,
            )

        data = comment.to_dict()
        data["replies"] = []
        return data

    # ── Deliverable tasks ────────────────────────────────────────────────

    @staticmethod
    def _task(deliverable, task_id):
        task = db.session.get(DeliverableTask, task_id) if task_id is not None else None
        if task is None or task.deliverable_id != deliverable.id:
            raise NotFoundError(resource="Task", resource_id=task_id)
        return task

    def list_tasks(self, actor, project_id, deliverable_id):
        project = self._project_for(actor, project_id)
        deliverable = self._visible_deliverable(actor, project, deliverable_id)
        return [t.to_dict() for t in deliverable.tasks.order_by(DeliverableTask.order_index,
                                                               DeliverableTask.id)]

    def create_task(self, actor, project_id, deliverable_id, data):
        """Append a checklist item after the deliverable's last task."""
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        deliverable = self._child(Deliverable, project, deliverable_id)
        last = deliverable.tasks.order_by(DeliverableTask.order_index.desc()).first()
        task = DeliverableTask(
            deliverable_id=deliverable.id,
            title=_required_text(data, "title"),
            order_index=last.order_index + 1 if last else 0,
        )
        db.session.add(task)
        db.session.commit()
        return task.to_dict()

    def update_task(self, actor, project_id, deliverable_id, task_id, data):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        deliverable = self._child(Deliverable, project, deliverable_id)
        task = self._task(deliverable, task_id)

        if "title" in data:
            task.title = _required_text(data, "title")
        if "completed" in data:
            completed = _optional_bool(data, "completed", task.completed)
            task.completed = completed
            task.completed_at = self.now() if completed else None

        db.session.commit()
        return task.to_dict()

    def delete_task(self, actor, project_id, deliverable_id, task_id):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        deliverable = self._child(Deliverable, project, deliverable_id)
        task = self._task(deliverable, task_id)
        db.session.delete(task)
        db.session.commit()
        return {"deleted": True, "id": task_id}

    # ═════════════════════════════════════════════════════════════════════
    #  Milestones
    # ═════════════════════════════════════════════════════════════════════

    def list_milestones(self, actor, project_id):
        project = self._project_for(actor, project_id)
        q = Milestone.query.filter_by(project_id=project.id)
        if actor.is_client:
            q = q.filter_by(client_visible=True)
        q = q.order_by(Milestone.order_index, Milestone.created_at)
        return [self.milestone_view(m) for m in q]

    def get_milestone(self, actor, project_id, milestone_id):
        project = self._project_for(actor, project_id)
        milestone = self._child(Milestone, project, milestone_id)
        if actor.is_client and not milestone.client_visible:
            raise NotFoundError(resource="Milestone", resource_id=milestone_id)
        return self.milestone_view(milestone)

    def milestone_progress(self, actor, project_id, milestone_id):
        view = self.get_milestone(actor, project_id, milestone_id)
        return {k: view[k] for k in ("id", "progress", "deliverables_count",
                                     "completed_deliverables_count")}

    def create_milestone(self, actor, project_id, data):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        self._validate_links(project, data)
        status = require_choice(data.get("status", "NOT_STARTED"), MILESTONE_STATUSES, "status")
        requires_approval = _optional_bool(data, "requires_client_approval", False)

        order_index = _optional_int(data, "order_index", None)
        if order_index is None:
            order_index = cascades.next_milestone_order(project.id)

        milestone = Milestone(
            project_id=project.id,
            title=_required_text(data, "title"),
            description=data.get("description"),
            status=status,
            due_date=require_date(data.get("due_date"), "due_date"),
            assigned_to_id=data.get("assigned_to_id"),
            client_visible=_optional_bool(data, "client_visible", True),
            order_index=order_index,
            requires_client_approval=requires_approval,
            approval_status="PENDING" if requires_approval else None,
            completed_at=self.now() if status == "DONE" else None,
        )
        db.session.add(milestone)
        db.session.commit()
        return self.milestone_view(milestone)

    def update_milestone(self, actor, project_id, milestone_id, data):
        """Edit fields; maintains completed_at and the approval invariant."""
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        milestone = self._child(Milestone, project, milestone_id)
        self._validate_links(project, data)

        if "title" in data:
            milestone.title = _required_text(data, "title")
        if "description" in data:
            milestone.description = data["description"]
        if "due_date" in data:
            milestone.due_date = require_date(data["due_date"], "due_date")
        if "assigned_to_id" in data:
            milestone.assigned_to_id = data["assigned_to_id"]
        milestone.client_visible = _optional_bool(data, "client_visible", milestone.client_visible)
        milestone.order_index = _optional_int(data, "order_index", milestone.order_index,
                                              nullable=False)

        if "status" in data:
            new_status = require_choice(data["status"], MILESTONE_STATUSES, "status")
            if new_status == "DONE" and milestone.status != "DONE":
                milestone.completed_at = self.now()
            elif new_status != "DONE" and milestone.status == "DONE":
                milestone.completed_at = None
            milestone.status = new_status

        if "requires_client_approval" in data:
            requires = _optional_bool(data, "requires_client_approval", False)
            if requires and not milestone.requires_client_approval:
                milestone.approval_status = "PENDING"
            elif not requires:
                milestone.approval_status = None
                milestone.approval_notes = None
            milestone.requires_client_approval = requires

        db.session.commit()
        return self.milestone_view(milestone)

    def delete_milestone(self, actor, project_id, milestone_id):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        milestone = self._child(Milestone, project, milestone_id)
        for deliverable in milestone.deliverables:
            deliverable.milestone_id = None
        db.session.delete(milestone)
        db.session.commit()
        return {"deleted": True, "id": milestone_id}

    def _approvable_milestone(self, actor, project_id, milestone_id):
        """Client-side lookup; anything not approvable is reported as missing."""
        self._require_client(actor)
        project = self._project_for(actor, project_id)
        milestone = db.session.get(Milestone, milestone_id)
        if (
            milestone is None
            or milestone.project_id != project.id
            or not milestone.requires_client_approval
            or not milestone.approval_status
            or not milestone.client_visible
        ):
            raise NotFoundError(resource="Milestone", resource_id=milestone_id)
        return milestone

    def approve_milestone(self, actor, project_id, milestone_id, notes=None):
        milestone = self._approvable_milestone(actor, project_id, milestone_id)
        milestone.approval_status = "APPROVED"
        milestone.approval_notes = notes or None
        db.session.commit()
        logger.info("Milestone %s approved by user %s", milestone.id, actor.id,
                    extra={"project_id": milestone.project_id, "event_type": "milestone_approval"})
        return self.milestone_view(milestone)

    def request_milestone_changes(self, actor, project_id, milestone_id, notes):
        if not isinstance(notes, str) or not notes.strip():
            self._require_client(actor)
            raise ValidationError("Notes are required when requesting changes",
                                  details={"notes": "empty"})
        milestone = self._approvable_milestone(actor, project_id, milestone_id)
        milestone.approval_status = "CHANGES_REQUESTED"
        milestone.approval_notes = notes
        db.session.commit()
        logger.info("Changes requested on milestone %s by user %s", milestone.id, actor.id,
                    extra={"project_id": milestone.project_id, "event_type": "milestone_approval"})
        return self.milestone_view(milestone)

    # ═════════════════════════════════════════════════════════════════════
    #  Epics
    # ═════════════════════════════════════════════════════════════════════

    def _visible_epic(self, actor, project, epic_id):
        epic = self._child(Epic, project, epic_id)
        if actor.is_client and not epic.client_visible:
            raise NotFoundError(resource="Epic", resource_id=epic_id)
        return epic

    def list_epics(self, actor, project_id):
        project = self._project_for(actor, project_id)
        q = Epic.query.filter_by(project_id=project.id)
        if actor.is_client:
            q = q.filter_by(client_visible=True)
        return [e.to_dict() for e in q.order_by(Epic.order_index, Epic.id)]

    def get_epic(self, actor, project_id, epic_id):
        """Epic with its (visible) deliverables as id / title / status."""
        project = self._project_for(actor, project_id)
        epic = self._visible_epic(actor, project, epic_id)
        data = epic.to_dict()
        data["deliverables"] = [
            {"id": d.id, "title": d.title, "status": d.status}
            for d in epic.deliverables
            if d.client_visible or not actor.is_client
        ]
        return data

    def create_epic(self, actor, project_id, data):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        self._validate_links(project, data)
        last = (
            Epic.query.filter_by(project_id=project.id)
            .order_by(Epic.order_index.desc())
            .first()
        )
        epic = Epic(
            project_id=project.id,
            title=_required_text(data, "title"),
            description=data.get("description"),
            status=require_choice(data.get("status", "NOT_STARTED"), EPIC_STATUSES, "status"),
            priority=require_choice(data.get("priority", "MED"), PRIORITIES, "priority"),
            assignee_id=data.get("assignee_id"),
            due_date=require_date(data.get("due_date"), "due_date"),
            client_visible=_optional_bool(data, "client_visible", True),
            order_index=last.order_index + 1 if last else 0,
        )
        db.session.add(epic)
        db.session.commit()
        logger.info("Epic created: %s", epic.title,
                    extra={"project_id": project.id, "entity_id": epic.id})
        return epic.to_dict()

    def update_epic(self, actor, project_id, epic_id, data):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        epic = self._child(Epic, project, epic_id)
        self._validate_links(project, data)

        if "title" in data:
            epic.title = _required_text(data, "title")
        if "description" in data:
            epic.description = data["description"]
        if "status" in data:
            epic.status = require_choice(data["status"], EPIC_STATUSES, "status")
        if "priority" in data:
            epic.priority = require_choice(data["priority"], PRIORITIES, "priority")
        if "assignee_id" in data:
            epic.assignee_id = data["assignee_id"]
        if "due_date" in data:
            epic.due_date = require_date(data["due_date"], "due_date")
        epic.client_visible = _optional_bool(data, "client_visible", epic.client_visible)
        epic.order_index = _optional_int(data, "order_index", epic.order_index, nullable=False)

        db.session.commit()
        return epic.to_dict()

    def delete_epic(self, actor, project_id, epic_id):
        """Delete the epic; its deliverables stay, unassigned."""
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        epic = self._child(Epic, project, epic_id)
        for deliverable in epic.deliverables:
            deliverable.epic_id = None
        db.session.delete(epic)
        db.session.commit()
        return {"deleted": True, "id": epic_id}

    # ═════════════════════════════════════════════════════════════════════
    #  Sprints
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def _check_overlap(project_id, start, end, exclude_id=None):
        """Reject a window that intersects another sprint of the project.

        Windows are half-open [start, end): a sprint may start on the day
        the previous one ends.
        """
        q = Sprint.query.filter(
            Sprint.project_id == project_id,
            Sprint.start_date < end,
            Sprint.end_date > start,
        )
        if exclude_id is not None:
            q = q.filter(Sprint.id != exclude_id)
        clash = q.first()
        if clash is not None:
            raise ValidationError(
                "Sprint dates overlap with an existing sprint",
                details={"sprint_id": clash.id, "start_date": clash.start_date.isoformat(),
                         "end_date": clash.end_date.isoformat()},
            )

    def list_sprints(self, actor, project_id):
        project = self._project_for(actor, project_id)
        sprints = Sprint.query.filter_by(project_id=project.id).order_by(Sprint.start_date.desc())
        return [self.sprint_view(s) for s in sprints]

    def get_sprint(self, actor, project_id, sprint_id):
        project = self._project_for(actor, project_id)
        return self.sprint_view(self._child(Sprint, project, sprint_id))

    def active_sprint(self, actor, project_id):
        """The sprint whose window contains today, or None."""
        project = self._project_for(actor, project_id)
        sprints = Sprint.query.filter_by(project_id=project.id).order_by(Sprint.start_date.desc()).all()
        sprint = find_active_sprint(sprints, self.today())
        return self.sprint_view(sprint) if sprint else None

    def create_sprint(self, actor, project_id, data):
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        name = _required_text(data, "name")
        start = require_date(data.get("start_date"), "start_date")
        if start is None:
            raise ValidationError("start_date is required", details={"start_date": "empty"})

        sprint = Sprint(project_id=project.id, name=name, start_date=start)
        self._check_overlap(project.id, sprint.start_date, sprint.end_date)
        db.session.add(sprint)
        db.session.commit()
        logger.info("Sprint created: %s %s..%s", sprint.name, sprint.start_date, sprint.end_date,
                    extra={"project_id": project.id, "entity_id": sprint.id})
        return self.sprint_view(sprint)

    def update_sprint(self, actor, project_id, sprint_id, data):
        """Rename and/or retime. A retime that ends in the past completes the sprint."""
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        sprint = self._child(Sprint, project, sprint_id)

        if "name" in data:
            sprint.name = _required_text(data, "name")

        retimed = False
        if "start_date" in data:
            start = require_date(data["start_date"], "start_date")
            if start is None:
                raise ValidationError("start_date is required", details={"start_date": "empty"})
            end = start + timedelta(days=SPRINT_LENGTH_DAYS)
            self._check_overlap(project.id, start, end, exclude_id=sprint.id)
            retimed = start != sprint.start_date
            sprint.start_date = start

        db.session.commit()

        view = self.sprint_view(sprint)
        if retimed and sprint.end_date <= self.today():
            view["completion"] = self._complete_sprint(project, sprint, actor)
        return view

    def retime_sprint(self, actor, project_id, sprint_id, start_date):
        return self.update_sprint(actor, project_id, sprint_id, {"start_date": start_date})

    def delete_sprint(self, actor, project_id, sprint_id):
        """Delete a sprint; its deliverables return to the unscheduled pool."""
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        sprint = self._child(Sprint, project, sprint_id)
        for deliverable in sprint.deliverables:
            deliverable.sprint_id = None
        db.session.delete(sprint)
        db.session.commit()
        return {"deleted": True, "id": sprint_id}

    def check_sprint_completion(self, actor, project_id):
        """Generate release notes for recently ended sprints that lack them.

        Considers sprints whose end_date falls within the lookback window
        ending today. Safe to call repeatedly.
        """
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        today = self.today()
        window_start = today - timedelta(days=self.completion_lookback_days)

        sprints = (
            Sprint.query
            .filter(
                Sprint.project_id == project.id,
                Sprint.end_date <= today,
                Sprint.end_date >= window_start,
            )
            .order_by(Sprint.end_date)
            .all()
        )

        results = []
        for sprint in sprints:
            outcome = self._complete_sprint(project, sprint, actor)
            if outcome is not None:
                results.append(outcome)

        return {
            "checked": len(sprints),
            "processed": sum(1 for r in results if r["success"]),
            "results": results,
        }

    def _complete_sprint(self, project, sprint, actor):
        """Release notes + phase milestone for one ended sprint.

        Returns None when release notes already exist, else a result dict.
        """
        sprint_id, sprint_name, project_id = sprint.id, sprint.name, project.id
        if cascades.release_notes_exist(sprint):
            logger.debug("Release notes already exist for sprint %s", sprint_id,
                         extra={"project_id": project_id})
            return None

        ok, value = attempt(
            "release_notes", cascades.generate_release_notes, sprint,
            author_id=actor.id if actor else None, project_id=project_id,
        )
        if not ok:
            return {
                "sprint_id": sprint_id,
                "sprint_name": sprint_name,
                "success": False,
                "error": str(value.cause or value),
            }

        release_notes_id = value.id
        if value.client_visible:
            self._fan_out_update(value, actor)
        best_effort("phase_milestone", cascades.ensure_phase_milestone, project_id,
                    db.session.get(Project, project_id).phase, project_id=project_id)
        return {
            "sprint_id": sprint_id,
            "sprint_name": sprint_name,
            "release_notes_id": release_notes_id,
            "success": True,
        }

    # ═════════════════════════════════════════════════════════════════════
    #  Change requests
    # ═════════════════════════════════════════════════════════════════════

    def list_change_requests(self, actor, project_id):
        """Internal users see all; clients see their own."""
        project = self._project_for(actor, project_id)
        q = ChangeRequest.query.filter_by(project_id=project.id)
        if actor.is_client:
            q = q.filter_by(author_id=actor.id)
        return [cr.to_dict() for cr in q.order_by(ChangeRequest.created_at.desc(), ChangeRequest.id.desc())]

    def get_change_request(self, actor, project_id, change_request_id):
        project = self._project_for(actor, project_id)
        cr = self._child(ChangeRequest, project, change_request_id, label="Change request")
        if actor.is_client and cr.author_id != actor.id:
            raise NotFoundError(resource="Change request", resource_id=change_request_id)
        return cr.to_dict()

    def _estimate_hours(self, title, description, type):
        hours = float(self.estimator.estimate(title, description, type))
        if math.isnan(hours) or math.isinf(hours):
            raise ValueError(f"estimator returned {hours!r}")
        return max(MIN_HOURS, min(MAX_HOURS, hours))

    def create_change_request(self, actor, project_id, data):
        """Quota-checked creation with a failure-tolerant AI estimate."""
        project = self._project_for(actor, project_id)
        title = _required_text(data, "title")
        description = _required_text(data, "description")
        cr_type = require_choice(data.get("type", "OTHER"), CHANGE_REQUEST_TYPES, "type")

        now = self.now()
        check_quota(project.id, actor, now, self.quota_timezone)

        ai_hours = best_effort("hour_estimate", self._estimate_hours, title, description, cr_type,
                               project_id=project.id)
        delay_days = new_due_date = None
        if ai_hours is not None:
            impact = impact_for_project(ai_hours, project)
            delay_days, new_due_date = impact.delay_days, impact.new_due_date

        cr = ChangeRequest(
            project_id=project.id,
            author_id=actor.id,
            title=title,
            description=description,
            type=cr_type,
            status="NEW",
            ai_estimated_hours=ai_hours,
            estimated_timeline_delay_days=delay_days,
            new_project_due_date=new_due_date,
            created_at=now.astimezone(timezone.utc),
        )
        db.session.add(cr)
        db.session.commit()
        logger.info("Change request created: %s (ai_hours=%s)", cr.title, ai_hours,
                    extra={"project_id": project.id, "entity_id": cr.id})

        self._publish("change_request_submitted", project_updates.change_request_submitted_update,
                      project.id, title, actor=actor, ai_hours=ai_hours, delay_days=delay_days)
        return cr.to_dict()

    def update_change_request(self, actor, project_id, change_request_id, data):
        """Internal triage: estimate, status, scope, priority, notes.

        A new human estimate overwrites delay / new due date. Entering
        APPROVED with a new due date moves the project's due date in the
        same commit.
        """
        self._require_internal(actor)
        project = self._project_for(actor, project_id)
        cr = self._child(ChangeRequest, project, change_request_id, label="Change request")
        old_status = cr.status

        if "estimate_hours" in data:
            hours = data["estimate_hours"]
            if hours is not None and (isinstance(hours, bool) or not isinstance(hours, (int, float)) or hours < 0):
                raise ValidationError("estimate_hours must be a non-negative number",
                                      details={"estimate_hours": repr(hours)})
            cr.estimate_hours = hours
            if hours is not None:
                impact = impact_for_project(hours, project)
                cr.estimated_timeline_delay_days = impact.delay_days
                cr.new_project_due_date = impact.new_due_date

        cr.estimate_cost_cents = _optional_int(data, "estimate_cost_cents", cr.estimate_cost_cents,
                                               minimum=0)
        if "status" in data:
            cr.status = require_choice(data["status"], CHANGE_REQUEST_STATUSES, "status")
        if "scope" in data:
            cr.scope = require_choice(data["scope"], CHANGE_REQUEST_SCOPES, "scope")
        if "priority" in data:
            cr.priority = require_choice(data["priority"], PRIORITIES, "priority")
        if "impact_notes" in data:
            cr.impact_notes = data["impact_notes"]

        new_status = cr.status
        approved_with_date = (
            new_status == "APPROVED" and old_status != "APPROVED" and cr.new_project_due_date is not None
        )
        if approved_with_date:
            project.due_date = cr.new_project_due_date

        db.session.commit()

        if approved_with_date:
            logger.info("Change request %s approved; project due date -> %s",
                        cr.id, project.due_date.isoformat(),
                        extra={"project_id": project.id, "event_type": "change_request_approved"})
            self._publish(
                "change_request_approved", project_updates.change_request_approved_update,
                project.id, cr.title, actor=actor,
                hours=cr.authoritative_hours, delay_days=cr.estimated_timeline_delay_days,
            )
        elif new_status != old_status and new_status != "APPROVED":
            self._publish(
                "change_request_status", project_updates.change_request_status_update,
                project.id, cr.title, new_status, actor=actor,
            )

        return cr.to_dict()
