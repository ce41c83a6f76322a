"""Project phase change cascade: phase milestone + feed entry."""
import pytest

from portal.core.exceptions import UnauthorizedError
from portal.models.delivery import Milestone
from portal.models.project_update import ProjectUpdate
from portal.services import cascades


def test_phase_change_creates_milestone_and_update(engine, project, staff):
    engine.change_phase(staff, project.id, "DESIGN")
    milestone = Milestone.query.one()
    assert milestone.title == "Design Phase"
    assert milestone.description == "Project entered the Design phase."
    assert milestone.status == "NOT_STARTED"
    assert milestone.client_visible is True
    update = ProjectUpdate.query.one()
    assert update.title == "Project Phase Changed"
    assert update.body == "Project phase changed from **Discovery** to **Design**."


def test_same_phase_change_twice_creates_one_milestone(engine, project, staff):
    engine.change_phase(staff, project.id, "BUILD")
    engine.change_phase(staff, project.id, "QA")
    engine.change_phase(staff, project.id, "BUILD")
    titles = [m.title for m in Milestone.query.order_by(Milestone.id)]
    assert titles.count("Build Phase") == 1
    assert titles == ["Build Phase", "QA Phase"]


def test_no_change_no_cascade(engine, project, staff):
    engine.update_project(staff, project.id, {"phase": "DISCOVERY", "name": "Renamed"})
    assert Milestone.query.count() == 0
    assert ProjectUpdate.query.count() == 0


def test_existing_milestone_with_label_is_reused(engine, project, staff, make_milestone):
    make_milestone(project, title="Launch Phase sign-off", order_index=0)
    engine.change_phase(staff, project.id, "LAUNCH")
    assert Milestone.query.count() == 1


def test_phase_milestone_appends_order(engine, project, staff, make_milestone):
    make_milestone(project, title="Kick-off", order_index=5)
    engine.change_phase(staff, project.id, "SUPPORT")
    created = Milestone.query.filter_by(title="Support Phase").one()
    assert created.order_index == 6


def test_milestone_failure_does_not_block_update(engine, project, staff, monkeypatch):
    def _broken(project_id, phase):
        raise RuntimeError("db hiccup")

    monkeypatch.setattr(cascades, "ensure_phase_milestone", _broken)
    result = engine.change_phase(staff, project.id, "DESIGN")
    assert result["phase"] == "DESIGN"
    assert Milestone.query.count() == 0
    assert ProjectUpdate.query.count() == 1


def test_clients_cannot_change_phase(engine, project, client_user):
    with pytest.raises(UnauthorizedError):
        engine.change_phase(client_user, project.id, "DESIGN")


def test_add_member_emits_update(engine, project, staff, make_user):
    newcomer = make_user("INTERNAL", first_name="Nia", last_name="New")
    engine.add_member(staff, project.id, newcomer.id)
    update = ProjectUpdate.query.one()
    assert update.body == "**Nia New** has been added to the project team."
