"""
Studio Portal
Client change-request quota.

A client user may submit one change request per project per week. The
week starts Monday 00:00:00 in CHANGE_REQUEST_QUOTA_TIMEZONE ("local",
"UTC" or an IANA zone name). Internal users are exempt.

"local" resolves to None: boundaries are then computed per call from the
process time zone, so daylight-saving changes are honoured.
"""

import logging
from datetime import datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from portal.core.exceptions import RateLimitedError, ValidationError
from portal.models import db
from portal.models.change_request import ChangeRequest

logger = logging.getLogger(__name__)

WEEKLY_LIMIT = 1


def resolve_timezone(name) -> tzinfo | None:
    """Map the configured quota time zone name to a tzinfo (None = process local)."""
    if not name or name.lower() == "local":
        return None
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown CHANGE_REQUEST_QUOTA_TIMEZONE: {name}") from exc


def _midnight(day, tz):
    if tz is None:
        # naive local midnight; astimezone() applies that date's offset
        return datetime.combine(day, time.min).astimezone()
    return datetime.combine(day, time.min, tzinfo=tz)


def week_start(now: datetime, tz: tzinfo | None) -> datetime:
    """Most recent Monday 00:00 in ``tz`` at or before ``now`` (tz-aware).

    ``tz=None`` means the process local zone.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    monday = local.date() - timedelta(days=local.weekday())
    return _midnight(monday, tz)


def next_week_start(now: datetime, tz: tzinfo | None) -> datetime:
    start = week_start(now, tz)
    return _midnight(start.date() + timedelta(days=7), tz)


def _to_naive_utc(value: datetime) -> datetime:
    # SQLite stores DateTime(timezone=True) without an offset.
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def count_this_week(project_id, user_id, now, tz) -> int:
    boundary = week_start(now, tz).astimezone(timezone.utc)
    if db.engine.dialect.name == "sqlite":
        boundary = _to_naive_utc(boundary)
    return (
        ChangeRequest.query
        .filter(
            ChangeRequest.project_id == project_id,
            ChangeRequest.author_id == user_id,
            ChangeRequest.created_at >= boundary,
        )
        .count()
    )


def check_quota(project_id, user, now: datetime, tz: tzinfo | None) -> None:
    """Raise RateLimitedError if ``user`` already submitted this week.

    Internal users always pass.
    """
    if not user.is_client:
        return

    submitted = count_this_week(project_id, user.id, now, tz)
    if submitted >= WEEKLY_LIMIT:
        retry_after = next_week_start(now, tz)
        logger.info(
            "Change request quota reached for user %s (retry after %s)",
            user.id, retry_after.isoformat(),
            extra={"project_id": project_id, "event_type": "change_request_quota"},
        )
        raise RateLimitedError(
            "Clients can submit one change request per project per week",
            retry_after=retry_after,
        )
