"""Domain errors raised by the messaging and notification services.

Services raise these instead of ``HTTPException`` so they stay usable outside
a request (WebSocket handlers, maintenance scripts). The API layer renders
them through a single exception handler.
"""

from __future__ import annotations

from fastapi import status


class RelayError(RuntimeError):
    """Base class for errors whose detail is safe to show to clients."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationFailedError(RelayError):
    """A required field is missing or malformed."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class InvalidTypeError(ValidationFailedError):
    """Notification type is not one of the known types."""

    default_detail = "Invalid notification type"


class NotFoundError(RelayError):
    """Referenced entity does not exist (or is not visible to the caller)."""

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class ForbiddenError(RelayError):
    """Caller lacks the role or ownership the action requires."""

    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not authorized"


class ConflictError(RelayError):
    """Action conflicts with the current state of the entity."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict"


class AlreadyHandledError(ConflictError):
    """Message request is no longer pending."""

    default_detail = "Request already handled"


class DependencyFailureError(RelayError):
    """A backing store could not be reached."""

    default_detail = "Service temporarily unavailable"


class PresenceUnavailableError(DependencyFailureError):
    """Presence or room membership store failed or timed out."""
