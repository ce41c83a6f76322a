"""Shared utility functions for services and blueprints.

get_or_raise:   primary-key lookup that raises NotFoundError
parse_date:     lenient date parsing (None on bad input)
require_date:   strict date parsing (ValidationError on bad input)
require_choice: enum check (ValidationError on unknown or non-string input)
"""
import logging
from datetime import date, datetime

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db

logger = logging.getLogger(__name__)


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError.

    Usage::

        project = get_or_raise(Project, project_id)
    """
    label = label or model.__name__
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return obj


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def require_date(value, field):
    """Like parse_date(), but a present-and-unparseable value is a ValidationError."""
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid date for {field}. Use YYYY-MM-DD or DD.MM.YYYY.",
            details={field: str(value)},
        )
    return parsed


def require_choice(value, choices, field):
    """Raise ValidationError unless ``value`` is one of ``choices``.

    Non-string input (lists, objects from JSON) is rejected before the
    membership test.
    """
    if not isinstance(value, str) or value not in choices:
        raise ValidationError(
            f"Invalid {field}: {value!r}",
            details={field: f"must be one of {sorted(choices)}"},
        )
    return value
