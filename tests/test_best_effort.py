"""Best-effort dispatch: commit on success, rollback + log on failure."""
import logging

from portal.core.exceptions import DependencyFailedError
from portal.models import db
from portal.models.project_update import ProjectUpdate
from portal.services.best_effort import attempt, best_effort
from portal.services.project_updates import create_project_update


def test_success_commits_and_returns_result(project):
    update = best_effort("test_update", create_project_update, project.id, "hello",
                         project_id=project.id)
    assert update is not None
    db.session.rollback()
    assert ProjectUpdate.query.count() == 1


def test_failure_rolls_back_only_its_own_writes(project, caplog):
    def _partial_then_fail():
        create_project_update(project.id, "half-written")
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR):
        assert best_effort("test_update", _partial_then_fail, project_id=project.id) is None

    assert ProjectUpdate.query.count() == 0
    assert db.session.get(type(project), project.id) is not None
    assert any("test_update failed: boom" in r.getMessage() for r in caplog.records)
    failed = [r for r in caplog.records if getattr(r, "event_type", None) == "test_update"]
    assert failed and failed[0].project_id == project.id


def test_attempt_reports_dependency_failure(project):
    ok, err = attempt("estimator", lambda: 1 / 0, project_id=project.id)
    assert ok is False
    assert isinstance(err, DependencyFailedError)
    assert isinstance(err.cause, ZeroDivisionError)
    assert err.dependency == "estimator"


def test_independent_units(project):
    def _fail():
        raise ValueError("nope")

    best_effort("first", create_project_update, project.id, "kept")
    best_effort("second", _fail)
    assert [u.body for u in ProjectUpdate.query.all()] == ["kept"]
