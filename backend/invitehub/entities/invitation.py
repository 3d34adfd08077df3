"""
Invitation Entity - time-limited invitation identified by a rotating token.

State transitions are pure: each one returns a new Invitation and leaves the
original untouched. Persisting the result is the repository's job.

    pending ──accept──▶ accepted
       │ ──revoke──▶ revoked   (also when failed_attempts reaches max_attempts)
       └──expire──▶ expired
"""

import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .base import BaseEntity, utc_now

DEFAULT_EXPIRY_DAYS = 7
DEFAULT_MAX_ATTEMPTS = 5


class InvitationStatus(str, Enum):
    """Invitation status enum."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


class InviteMethod(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    BOTH = "both"


class InvalidTransitionError(Exception):
    """Raised when a transition is attempted from a state that does not allow it."""

    def __init__(self, invitation: "Invitation", action: str):
        super().__init__(
            f"Cannot {action} invitation in status '{invitation.status}'"
        )
        self.status = invitation.status
        self.action = action


class ChangeLogEntry(BaseModel):
    """Audit record of a single field mutation."""

    date: datetime = Field(default_factory=utc_now)
    field: str
    old_value: Any = None
    new_value: Any = None


def generate_invite_token() -> str:
    return secrets.token_hex(16)


class Invitation(BaseEntity):
    """
    Invitation to join the system.

    Business Rules:
    - Token is unique across all invitations and rotates on every resend
    - Expires after 7 days by default; expires_at never moves backwards
    - Reaching max_attempts failed accepts revokes the invitation
    - At most one reminder is ever sent
    """

    invite_token: str = Field(default_factory=generate_invite_token)
    email: str
    role: str
    invited_by: str = "system"
    invited_by_name: Optional[str] = None

    status: InvitationStatus = InvitationStatus.PENDING
    expires_at: datetime = Field(
        default_factory=lambda: utc_now() + timedelta(days=DEFAULT_EXPIRY_DAYS)
    )
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    invite_method: InviteMethod = InviteMethod.EMAIL
    language: str = "en"
    timezone: str = "UTC"
    additional_notes: Optional[str] = None

    # Attempt tracking
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    attempts_made: int = 0
    failed_attempts: int = 0
    last_attempt_at: Optional[datetime] = None

    # Delivery tracking
    resend_count: int = 0
    email_sent_at: Optional[datetime] = None
    sms_sent_at: Optional[datetime] = None
    reminder_sent: bool = False
    reminder_sent_at: Optional[datetime] = None
    # "{job_id}:{channel}" keys of sends already made, for retry de-duplication
    delivered_jobs: List[str] = Field(default_factory=list)

    # Acceptance metadata
    accepted_by_ip: Optional[str] = None
    accepted_by_device: Optional[str] = None
    accepted_from_location: Optional[str] = None

    change_logs: List[ChangeLogEntry] = Field(default_factory=list)

    # Optimistic concurrency counter, bumped on every committed transition
    version: int = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_pending(self) -> bool:
        return self.status == InvitationStatus.PENDING

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) > self.expires_at

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Check if invitation is still valid (pending and not expired)."""
        return self.is_pending and not self.is_expired(now)

    @property
    def attempts_exhausted(self) -> bool:
        return self.failed_attempts >= self.max_attempts

    @property
    def sends_email(self) -> bool:
        return self.invite_method in (InviteMethod.EMAIL, InviteMethod.BOTH)

    @property
    def sends_sms(self) -> bool:
        return self.invite_method in (InviteMethod.SMS, InviteMethod.BOTH)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_pending(self, action: str) -> None:
        if not self.is_pending:
            raise InvalidTransitionError(self, action)

    def _evolve(self, now: datetime, logs: List[ChangeLogEntry], **changes: Any) -> "Invitation":
        changes["change_logs"] = [*self.change_logs, *logs]
        changes["updated_at"] = now
        changes["version"] = self.version + 1
        return self.model_copy(update=changes)

    def _status_log(self, new_status: InvitationStatus, now: datetime) -> ChangeLogEntry:
        return ChangeLogEntry(
            date=now,
            field="status",
            old_value=InvitationStatus(self.status).value,
            new_value=new_status.value,
        )

    def rotate_token(self, new_token: str, now: datetime) -> "Invitation":
        """Replace the token on resend and count the resend."""
        self._require_pending("resend")
        if new_token == self.invite_token:
            raise ValueError("Rotated token must differ from the current token")
        log = ChangeLogEntry(
            date=now, field="invite_token", old_value=self.invite_token, new_value=new_token
        )
        return self._evolve(
            now,
            [log],
            invite_token=new_token,
            email_sent_at=now,
            resend_count=self.resend_count + 1,
        )

    def register_failed_attempt(self, now: datetime) -> "Invitation":
        """Count a failed accept; the attempt that reaches max_attempts revokes."""
        self._require_pending("record a failed attempt on")
        failed = self.failed_attempts + 1
        if failed >= self.max_attempts:
            return self._evolve(
                now,
                [self._status_log(InvitationStatus.REVOKED, now)],
                failed_attempts=failed,
                last_attempt_at=now,
                status=InvitationStatus.REVOKED.value,
                revoked_at=now,
            )
        return self._evolve(now, [], failed_attempts=failed, last_attempt_at=now)

    def register_successful_attempt(self, now: datetime) -> "Invitation":
        self._require_pending("record an attempt on")
        return self._evolve(
            now,
            [],
            failed_attempts=0,
            attempts_made=self.attempts_made + 1,
            last_attempt_at=now,
        )

    def accept(
        self,
        now: datetime,
        ip: Optional[str] = None,
        device: Optional[str] = None,
        location: str = "Unknown",
    ) -> "Invitation":
        self._require_pending("accept")
        logs = [self._status_log(InvitationStatus.ACCEPTED, now)]
        if location != self.accepted_from_location:
            logs.append(
                ChangeLogEntry(
                    date=now,
                    field="accepted_from_location",
                    old_value=self.accepted_from_location,
                    new_value=location,
                )
            )
        return self._evolve(
            now,
            logs,
            status=InvitationStatus.ACCEPTED.value,
            accepted_at=now,
            accepted_by_ip=ip,
            accepted_by_device=device,
            accepted_from_location=location,
        )

    def revoke(self, now: datetime) -> "Invitation":
        self._require_pending("revoke")
        return self._evolve(
            now,
            [self._status_log(InvitationStatus.REVOKED, now)],
            status=InvitationStatus.REVOKED.value,
            revoked_at=now,
        )

    def expire(self, now: datetime) -> "Invitation":
        self._require_pending("expire")
        return self._evolve(
            now,
            [self._status_log(InvitationStatus.EXPIRED, now)],
            status=InvitationStatus.EXPIRED.value,
        )

    def mark_reminder_sent(self, now: datetime) -> "Invitation":
        self._require_pending("remind")
        if self.reminder_sent:
            raise InvalidTransitionError(self, "remind again")
        return self._evolve(now, [], reminder_sent=True, reminder_sent_at=now)
