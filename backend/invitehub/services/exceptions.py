"""Typed errors raised by the invitation lifecycle and delivery pipeline."""
from __future__ import annotations

from typing import Optional, Sequence

from invitehub.middleware.error_codes import ErrorCode, get_error_code


class InvitationError(Exception):
    """Base exception carrying the HTTP status and error code it maps to."""

    status_code: int = 500

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.code = code or get_error_code(self.status_code)


class BadRequestError(InvitationError):
    """Malformed or missing input, weak password."""

    status_code = 400


class NotFoundError(InvitationError):
    status_code = 404


class ConflictError(InvitationError):
    """Already accepted, revoked, or already exists."""

    status_code = 409


class InvitationExpiredError(ConflictError):
    """The invitation is no longer pending because it expired."""

    status_code = 410


class ForbiddenError(InvitationError):
    """Revoked after too many attempts, or module disabled."""

    status_code = 403


class TooManyRequestsError(InvitationError):
    """Client exceeded the send rate limit."""

    status_code = 429

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class InfrastructureError(InvitationError):
    """Store, queue or provider failure. Never shown to clients verbatim."""

    status_code = 500


class DeliveryError(InfrastructureError):
    """A notification could not be delivered by any configured provider."""

    def __init__(
        self,
        message: str,
        channel: str = "",
        providers: Sequence[str] = (),
    ):
        super().__init__(message, ErrorCode.DELIVERY_FAILED)
        self.channel = channel
        self.providers = list(providers)
