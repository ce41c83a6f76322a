"""Progress calculator: derived completion and time-elapsed percentages.

Every function here is pure: callers pass already-loaded children and an
explicit ``now``. Nothing in this module touches the database session, so
it is safe to call on every read of a milestone or sprint.

Conventions:
    - Percentages are integers in [0, 100] (time progress may be fractional
      before rounding, see ``time_progress``).
    - ``NO_PROGRESS`` (None) means "not applicable": the collection is empty.
      It is never reported as 0%.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime, time, timezone

NO_PROGRESS = None

DONE_STATUS = "DONE"


def is_done(item) -> bool:
    return getattr(item, "status", None) == DONE_STATUS


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_datetime(value: date | datetime) -> datetime:
    """Promote a date to midnight UTC; make naive datetimes UTC-aware."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


# ── Completion ───────────────────────────────────────────────────────────────


def completion_progress(
    items: Iterable,
    done: Callable[[object], bool] = is_done,
) -> int | None:
    """Return round(100 * done / total), or NO_PROGRESS for an empty set."""
    items = list(items)
    if not items:
        return NO_PROGRESS
    completed = sum(1 for i in items if done(i))
    return _round_half_up(completed / len(items) * 100)


def completion_counts(items: Iterable, done: Callable[[object], bool] = is_done) -> tuple[int, int]:
    """Return (completed, total)."""
    items = list(items)
    return sum(1 for i in items if done(i)), len(items)


# ── Time window ──────────────────────────────────────────────────────────────


def time_progress(start: date | datetime, end: date | datetime, now: date | datetime) -> float:
    """Percentage of the [start, end] window elapsed at ``now``.

    0 before the window opens, 100 once it has closed (an ended but
    unarchived sprint is normal, not an error). Monotonically
    non-decreasing in ``now``.
    """
    start_dt, end_dt, now_dt = _as_datetime(start), _as_datetime(end), _as_datetime(now)
    if now_dt < start_dt:
        return 0.0
    if now_dt >= end_dt:
        return 100.0
    total = (end_dt - start_dt).total_seconds()
    elapsed = (now_dt - start_dt).total_seconds()
    return min(100.0, max(0.0, elapsed / total * 100))


def days_remaining(end: date | datetime, now: date | datetime) -> int:
    """Whole days left until ``end`` (partial days round up), never negative."""
    diff = (_as_datetime(end) - _as_datetime(now)).total_seconds()
    return max(0, math.ceil(diff / 86400))


# ── Sprint / milestone views ─────────────────────────────────────────────────


def find_active_sprint(sprints: Sequence, now: date | datetime):
    """Return the sprint whose window contains ``now``, or None."""
    now_dt = _as_datetime(now)
    for sprint in sprints:
        if _as_datetime(sprint.start_date) <= now_dt <= _as_datetime(sprint.end_date):
            return sprint
    return None


def sprint_progress(sprint, now: date | datetime, deliverables: Sequence | None = None) -> dict:
    """Derived progress block attached to every sprint response.

    ``deliverables`` defaults to the sprint's already-loaded collection.
    """
    if deliverables is None:
        deliverables = sprint.deliverables
    completed, total = completion_counts(deliverables)
    return {
        "time_progress": _round_half_up(time_progress(sprint.start_date, sprint.end_date, now)),
        "items_progress": completion_progress(deliverables),
        "total_deliverables": total,
        "completed_deliverables": completed,
        "days_remaining": days_remaining(sprint.end_date, now),
    }


def milestone_progress(deliverables: Sequence) -> dict:
    """Derived progress block attached to every milestone response."""
    completed, total = completion_counts(deliverables)
    return {
        "progress": completion_progress(deliverables),
        "deliverables_count": total,
        "completed_deliverables_count": completed,
    }
