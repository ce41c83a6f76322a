"""
Shared pytest fixtures for the Studio Portal test suite.

Provides:
    - app: Flask application (session-scoped) with an injected fixed clock
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - clock: the app's FakeClock, reset to FIXED_NOW before every test
    - engine: the app's TransitionEngine
    - ORM factories: make_user / make_project / make_sprint / ...
    - Failing collaborators for the best-effort contract
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from portal import create_app
from portal.models import db as _db
from portal.models.auth import User
from portal.models.delivery import Deliverable, Milestone, Sprint
from portal.models.project import Project, ProjectMember
from portal.services.transition_engine import TransitionEngine, get_engine

# Wednesday of ISO week 2, 2025.
FIXED_NOW = datetime(2025, 1, 8, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests can set and advance."""

    def __init__(self, now=FIXED_NOW):
        self.current = now

    def __call__(self):
        return self.current

    def set(self, value):
        if isinstance(value, date) and not isinstance(value, datetime):
            value = datetime(value.year, value.month, value.day, 12, 0, tzinfo=timezone.utc)
        self.current = value

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FailingEstimator:
    def __init__(self):
        self.calls = 0

    def estimate(self, title, description, type):
        self.calls += 1
        raise RuntimeError("estimator unavailable")


class FixedEstimator:
    def __init__(self, hours):
        self.hours = hours

    def estimate(self, title, description, type):
        return self.hours


class RecordingEmailSender:
    """Email sender double that records every templated send."""

    def __init__(self):
        self.sent = []

    @staticmethod
    def absolute_url(path):
        return f"https://portal.test{path}"

    def send_from_template(self, **kwargs):
        self.sent.append(kwargs)
        return kwargs


class FailingEmailSender(RecordingEmailSender):
    def send_from_template(self, **kwargs):
        raise OSError("SMTP connection refused")


_CLOCK = FakeClock()


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing", clock=_CLOCK)


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    _CLOCK.set(FIXED_NOW)
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def clock():
    return _CLOCK


@pytest.fixture()
def engine():
    return get_engine()


@pytest.fixture()
def email_sender():
    return RecordingEmailSender()


@pytest.fixture()
def make_engine(clock):
    """Build an engine with custom collaborators sharing the test clock."""

    def _make(estimator=None, email_sender=None, **kwargs):
        return TransitionEngine(
            estimator=estimator or FixedEstimator(40),
            email_sender=email_sender,
            clock=clock,
            quota_timezone=kwargs.pop("quota_timezone", "UTC"),
            **kwargs,
        )

    return _make


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(user_type="INTERNAL", first_name=None, last_name=None, email=None, is_active=True):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            first_name=first_name,
            last_name=last_name,
            user_type=user_type,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_project():
    def _make(members=(), name="Website Relaunch", phase="DISCOVERY",
              due_date=date(2025, 3, 1), weekly_capacity_hours=None):
        project = Project(name=name, phase=phase, due_date=due_date,
                          weekly_capacity_hours=weekly_capacity_hours)
        _db.session.add(project)
        _db.session.flush()
        for user in members:
            _db.session.add(ProjectMember(project_id=project.id, user_id=user.id))
        _db.session.commit()
        return project

    return _make


@pytest.fixture()
def make_sprint():
    def _make(project, start_date, name="Sprint 1"):
        sprint = Sprint(project_id=project.id, name=name, start_date=start_date)
        _db.session.add(sprint)
        _db.session.commit()
        return sprint

    return _make


@pytest.fixture()
def make_deliverable():
    def _make(project, title="Homepage", status="BACKLOG", sprint=None, milestone=None,
              assignee=None, description=None, order_index=0, client_visible=True):
        deliverable = Deliverable(
            project_id=project.id,
            title=title,
            description=description,
            status=status,
            order_index=order_index,
            sprint_id=sprint.id if sprint else None,
            milestone_id=milestone.id if milestone else None,
            assignee_id=assignee.id if assignee else None,
            client_visible=client_visible,
        )
        _db.session.add(deliverable)
        _db.session.commit()
        return deliverable

    return _make


@pytest.fixture()
def make_milestone():
    def _make(project, title="Design sign-off", status="NOT_STARTED", order_index=0,
              requires_client_approval=False, client_visible=True):
        milestone = Milestone(
            project_id=project.id,
            title=title,
            status=status,
            order_index=order_index,
            client_visible=client_visible,
            requires_client_approval=requires_client_approval,
            approval_status="PENDING" if requires_client_approval else None,
        )
        _db.session.add(milestone)
        _db.session.commit()
        return milestone

    return _make


# ── Common actors ────────────────────────────────────────────────────────


@pytest.fixture()
def staff(make_user):
    return make_user("INTERNAL", first_name="Sam", last_name="Staff")


@pytest.fixture()
def client_user(make_user):
    return make_user("CLIENT", first_name="Casey", last_name="Client")


@pytest.fixture()
def project(make_project, staff, client_user):
    return make_project(members=(staff, client_user))


@pytest.fixture()
def as_user():
    """Request headers naming the acting user."""

    def _headers(user):
        return {"X-User-Id": str(user.id)}

    return _headers
