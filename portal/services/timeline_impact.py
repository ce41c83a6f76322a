"""Timeline impact of a change request.

Converts an hour estimate into a calendar-day delay and a projected due
date, using the project's weekly capacity (40h when unset or non-positive).
Calendar days only; there is no business-day logic.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, timedelta

from portal.models.project import DEFAULT_WEEKLY_CAPACITY_HOURS


@dataclass(frozen=True)
class TimelineImpact:
    delay_days: int
    new_due_date: date


def calculate_timeline_impact(
    hours: float | None,
    due_date: date,
    weekly_capacity_hours: float | None = None,
) -> TimelineImpact:
    """Return the delay and new due date for ``hours`` of extra work.

    delay_days = ceil(hours * 7 / weekly_capacity). Zero or negative hours
    are not a legal estimate but yield a zero delay instead of failing.
    """
    capacity = weekly_capacity_hours
    if not capacity or capacity <= 0:
        capacity = DEFAULT_WEEKLY_CAPACITY_HOURS

    if not hours or hours <= 0:
        delay_days = 0
    else:
        delay_days = math.ceil(hours * 7 / capacity)

    return TimelineImpact(delay_days=delay_days, new_due_date=due_date + timedelta(days=delay_days))


def impact_for_project(hours: float | None, project) -> TimelineImpact:
    """Impact against the project's due date and effective weekly capacity."""
    return calculate_timeline_impact(hours, project.due_date, project.effective_weekly_capacity)


def format_timeline_impact(impact: TimelineImpact) -> dict[str, str]:
    """Human-readable delay ("3 days", "2 weeks") and due date ("March 1, 2025")."""
    days = impact.delay_days
    if days == 1:
        delay_text = "1 day"
    elif days < 7:
        delay_text = f"{days} days"
    elif days < 14:
        delay_text = f"{round(days / 7)} week"
    else:
        delay_text = f"{round(days / 7)} weeks"

    d = impact.new_due_date
    return {
        "delay_text": delay_text,
        "new_due_date_text": f"{d.strftime('%B')} {d.day}, {d.year}",
    }
