"""Log formatting: context fields and request stamping."""
import json
import logging

from portal.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
)


def _record(msg="Cascade failed", **extra):
    record = logging.LogRecord("portal.services.best_effort", logging.ERROR, __file__, 10,
                               msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_lifts_context_fields():
    entry = json.loads(JSONFormatter().format(
        _record(project_id=4, event_type="phase_milestone", entity_id=9),
    ))
    assert entry["message"] == "Cascade failed"
    assert entry["level"] == "ERROR"
    assert entry["project_id"] == 4
    assert entry["event_type"] == "phase_milestone"
    assert entry["entity_id"] == 9
    assert "user_id" not in entry


def test_readable_shows_event_and_context():
    line = ReadableFormatter().format(_record(project_id=4, event_type="notify"))
    assert "[notify]" in line
    assert "project_id=4" in line
    assert "event_type=" not in line


def test_filter_stamps_request_and_actor(app, staff, as_user):
    record = _record()
    with app.test_request_context("/api/v1/notifications", headers=as_user(staff)):
        app.preprocess_request()
        assert RequestContextFilter().filter(record) is True
    assert record.user_id == staff.id
    assert record.method == "GET"
    assert record.path == "/api/v1/notifications"


def test_filter_outside_request_leaves_record_alone():
    record = _record()
    RequestContextFilter().filter(record)
    assert not hasattr(record, "path")
