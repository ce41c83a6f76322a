"""
Portal-wide exception hierarchy.

Services raise these types; the blueprint layer maps each one to an HTTP
status once, in portal.blueprints.register_error_handlers.

Propagation policy:
  - NotFoundError, ValidationError, UnauthorizedError and RateLimitedError
    abort the primary mutation and reach the caller.
  - DependencyFailedError marks a best-effort collaborator failure
    (estimator, notifier, email). It is logged by the best-effort
    dispatcher and never surfaced as the primary operation's failure.

Usage:
    from portal.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Milestone", resource_id=42)
    raise ValidationError("Notes are required", details={"notes": "empty"})
"""

from __future__ import annotations

from datetime import datetime


class PortalError(Exception):
    """Base class so callers can catch every core failure in one clause."""


class NotFoundError(PortalError):
    """Raised when a resource does not exist in the caller's scope.

    Also raised when the resource exists but the caller may not act on it
    (e.g. a client approving a milestone that is hidden or not approvable):
    a 403 would confirm existence, a 404 does not.

    Args:
        resource: Entity name (e.g. "Milestone", "Sprint").
        resource_id: The id that was looked up. Logged, not rendered.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(PortalError):
    """Raised when well-formed input violates a business rule.

    Examples: overlapping sprint windows, empty notes on a change request
    for a milestone, unknown status value.

    Args:
        message: Human-readable explanation.
        details: Optional field -> problem mapping for structured responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(PortalError):
    """Raised on a role / user-type mismatch (internal-only or client-only)."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class RateLimitedError(PortalError):
    """Raised when a client exceeds the change-request quota.

    Args:
        message: Human-readable explanation.
        retry_after: First instant at which a new submission is allowed.
    """

    def __init__(self, message: str, retry_after: datetime) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class DependencyFailedError(PortalError):
    """Raised when a best-effort collaborator fails.

    Args:
        dependency: Collaborator name (e.g. "hour_estimator", "email").
        cause: The underlying exception, if any.
    """

    def __init__(self, dependency: str, cause: Exception | None = None) -> None:
        self.dependency = dependency
        self.cause = cause
        msg = f"{dependency} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
