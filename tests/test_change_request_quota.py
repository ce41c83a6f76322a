"""Weekly client change-request quota."""
import time
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from portal.core.exceptions import RateLimitedError, ValidationError
from portal.models import db
from portal.models.change_request import ChangeRequest
from portal.services.change_request_quota import (
    check_quota,
    count_this_week,
    next_week_start,
    resolve_timezone,
    week_start,
)

UTC = timezone.utc


def _add_cr(project, user, created_at):
    cr = ChangeRequest(project_id=project.id, author_id=user.id, title="t",
                       description="d", created_at=created_at)
    db.session.add(cr)
    db.session.commit()
    return cr


class TestWeekBoundaries:
    def test_week_starts_monday_midnight(self):
        wed = datetime(2025, 1, 8, 15, 30, tzinfo=UTC)
        assert week_start(wed, UTC) == datetime(2025, 1, 6, tzinfo=UTC)
        assert next_week_start(wed, UTC) == datetime(2025, 1, 13, tzinfo=UTC)

    def test_sunday_belongs_to_previous_monday(self):
        sunday = datetime(2025, 1, 12, 23, 59, tzinfo=UTC)
        assert week_start(sunday, UTC).date().isoformat() == "2025-01-06"

    def test_boundary_follows_configured_zone(self):
        # Monday 01:00 in Istanbul is still Sunday in UTC.
        tz = ZoneInfo("Europe/Istanbul")
        now = datetime(2025, 1, 12, 22, 30, tzinfo=UTC)
        assert week_start(now, tz).date().isoformat() == "2025-01-13"
        assert week_start(now, UTC).date().isoformat() == "2025-01-06"

    def test_resolve_timezone(self):
        assert resolve_timezone("UTC") is UTC
        assert resolve_timezone("local") is None
        assert resolve_timezone("Europe/Berlin") == ZoneInfo("Europe/Berlin")
        with pytest.raises(ValidationError):
            resolve_timezone("Mars/Olympus")


@pytest.fixture()
def new_york_local(monkeypatch):
    """Run with the process zone set to America/New_York (EST/EDT)."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset unavailable")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    if time.tzname[0] != "EST":
        monkeypatch.undo()
        time.tzset()
        pytest.skip("system zone database unavailable")
    yield
    monkeypatch.undo()
    time.tzset()


class TestLocalZoneAcrossDst:
    def test_winter_instant_uses_standard_offset(self, new_york_local):
        # Sunday 23:30 EST; the engine may have been built during EDT.
        tz = resolve_timezone("local")
        now = datetime(2025, 1, 13, 4, 30, tzinfo=UTC)
        start = week_start(now, tz)
        assert start.date().isoformat() == "2025-01-06"
        assert start.utcoffset() == timedelta(hours=-5)
        assert next_week_start(now, tz).astimezone(UTC) == datetime(2025, 1, 13, 5, 0, tzinfo=UTC)

    def test_week_spanning_dst_start(self, new_york_local):
        # DST begins Sunday 2025-03-09; the next Monday is on EDT.
        now = datetime(2025, 3, 5, 12, 0, tzinfo=UTC)
        tz = resolve_timezone("local")
        assert week_start(now, tz).astimezone(UTC) == datetime(2025, 3, 3, 5, 0, tzinfo=UTC)
        assert next_week_start(now, tz).astimezone(UTC) == datetime(2025, 3, 10, 4, 0, tzinfo=UTC)


class TestCheckQuota:
    NOW = datetime(2025, 1, 8, 12, 0, tzinfo=UTC)

    def test_first_request_of_week_passes(self, project, client_user):
        check_quota(project.id, client_user, self.NOW, UTC)

    def test_second_request_same_week_is_rate_limited(self, project, client_user):
        _add_cr(project, client_user, datetime(2025, 1, 6, 0, 0, tzinfo=UTC))
        with pytest.raises(RateLimitedError) as exc:
            check_quota(project.id, client_user, self.NOW, UTC)
        assert exc.value.retry_after == datetime(2025, 1, 13, tzinfo=UTC)

    def test_previous_week_does_not_count(self, project, client_user):
        _add_cr(project, client_user, datetime(2025, 1, 5, 23, 59, tzinfo=UTC))
        assert count_this_week(project.id, client_user.id, self.NOW, UTC) == 0
        check_quota(project.id, client_user, self.NOW, UTC)

    def test_next_monday_succeeds(self, project, client_user):
        _add_cr(project, client_user, self.NOW)
        monday = datetime(2025, 1, 13, 0, 0, tzinfo=UTC)
        check_quota(project.id, client_user, monday, UTC)
        with pytest.raises(RateLimitedError):
            check_quota(project.id, client_user, monday - timedelta(seconds=1), UTC)

    def test_other_project_does_not_count(self, project, client_user, make_project):
        other = make_project(members=(client_user,), name="Other")
        _add_cr(other, client_user, self.NOW)
        check_quota(project.id, client_user, self.NOW, UTC)

    def test_internal_users_exempt(self, project, staff):
        for _ in range(3):
            _add_cr(project, staff, self.NOW)
        check_quota(project.id, staff, self.NOW, UTC)
