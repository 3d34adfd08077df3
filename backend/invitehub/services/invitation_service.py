"""
Invitation Service - Business logic for the invitation lifecycle.

State changes are computed by the pure transitions on Invitation and committed
through the repository with a conditional write (still pending, same version).
Notifications are never sent inline: every create, resend and reminder puts a
job on the Delivery Queue.
"""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from invitehub.config import settings
from invitehub.core import events
from invitehub.core.error_tracking import report_error
from invitehub.database.mongo import TransactionRunner, run_in_transaction
from invitehub.dtos.invitation import InvitationCreateRequest
from invitehub.entities.base import utc_now
from invitehub.entities.invitation import (
    Invitation,
    InvitationStatus,
    InviteMethod,
    generate_invite_token,
)
from invitehub.entities.user import User
from invitehub.queues.delivery_queue import SEND_INVITATION, SEND_REMINDER, DeliveryQueue, build_payload
from invitehub.repositories.invitation import InvitationRepository
from invitehub.repositories.user import UserRepository
from invitehub.services.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InfrastructureError,
    InvitationError,
    InvitationExpiredError,
    NotFoundError,
)
from invitehub.services.geolocation import UNKNOWN_LOCATION, GeoLocator
from invitehub.services.password_policy import check_password_strength, hash_password
from invitehub.services.username import generate_username

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DASHBOARD_TOP_LIMIT = 5


@dataclass(frozen=True)
class RequestContext:
    """Client metadata captured at accept time."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None


class InvitationService:
    """Service for managing the invitation lifecycle."""

    def __init__(
        self,
        db: Optional[Database],
        queue: DeliveryQueue,
        geolocator: Optional[GeoLocator] = None,
        *,
        repo: Optional[InvitationRepository] = None,
        user_repo: Optional[UserRepository] = None,
        transaction_runner: TransactionRunner = run_in_transaction,
        clock: Callable[[], datetime] = utc_now,
        token_factory: Callable[[], str] = generate_invite_token,
        publish: Callable[[str, Dict[str, Any]], Any] = events.publish_event,
        reporter: Callable[..., None] = report_error,
    ):
        self.db = db
        self.repo = repo or InvitationRepository(db)
        self.user_repo = user_repo or UserRepository(db)
        self.queue = queue
        self.geolocator = geolocator or GeoLocator()
        self.run_in_transaction = transaction_runner
        self.clock = clock
        self.token_factory = token_factory
        self.publish = publish
        self.reporter = reporter

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _infrastructure(self, action: str, **context: Any):
        """Report store/queue failures and surface them as InfrastructureError."""
        try:
            yield
        except PyMongoError as e:
            self.reporter(e, action=action, **context)
            raise InfrastructureError(f"Failed to {action}") from e
        except InfrastructureError as e:
            self.reporter(e, action=action, **context)
            raise

    def _no_longer_pending(self, invitation: Invitation) -> InvitationError:
        current = self.repo.find_by_id(invitation.id) if invitation.id else None
        if current is not None and current.status == InvitationStatus.EXPIRED.value:
            return InvitationExpiredError("Invitation is no longer pending: it has expired")
        if current is not None and current.status == InvitationStatus.REVOKED.value:
            return ForbiddenError("Invitation is no longer pending: it has been revoked")
        return ConflictError("Invitation is no longer pending or was modified concurrently")

    def _commit(self, before: Invitation, after: Invitation) -> Invitation:
        """Persist a transition result, or fail if someone else changed the invitation first."""
        if not self.repo.save_transition(before, after):
            raise self._no_longer_pending(before)
        return after

    def _validate_email_domain(self, email: str) -> None:
        domain = email.rsplit("@", 1)[-1]
        blacklisted = {d.lower() for d in settings.BLACKLISTED_DOMAINS}
        allowed = {d.lower() for d in settings.ALLOWED_DOMAINS}
        if domain in blacklisted:
            raise BadRequestError(f"E-mail domain '{domain}' is not allowed")
        if "all" not in allowed and domain not in allowed:
            raise BadRequestError(f"E-mail domain '{domain}' is not in the allowed list")

    def _new_unique_token(self, current: Optional[str] = None) -> str:
        for _ in range(settings.TOKEN_GENERATION_MAX_ATTEMPTS):
            token = self.token_factory()
            if token != current and not self.repo.token_exists(token):
                return token
        raise InfrastructureError("Unable to generate a unique invitation token")

    def _enqueue(self, job_name: str, invitation: Invitation) -> str:
        return self.queue.enqueue(job_name, build_payload(invitation))

    def _expire_if_overdue(self, invitation: Invitation, now: datetime) -> bool:
        """Flip a pending invitation past its expiry. Returns True if it is expired now."""
        if not invitation.is_pending or not invitation.is_expired(now):
            return False
        if self.repo.save_transition(invitation, invitation.expire(now)):
            self.publish(events.INVITATION_EXPIRED, {"email": invitation.email, "count": 1})
        return True

    def _rotate_and_enqueue(self, invitation: Invitation) -> Invitation:
        """Give a pending invitation a fresh token and queue a new delivery."""
        for _ in range(settings.TOKEN_GENERATION_MAX_ATTEMPTS):
            token = self._new_unique_token(current=invitation.invite_token)
            rotated = invitation.rotate_token(token, self.clock())
            try:
                if not self.repo.save_transition(invitation, rotated):
                    raise self._no_longer_pending(invitation)
            except DuplicateKeyError:
                # Another writer took the same token between check and commit
                logger.warning(f"Token collision while rotating invitation for {invitation.email}")
                continue

            self._enqueue(SEND_INVITATION, rotated)
            logger.info(
                f"Resent invitation to {rotated.email} (resend #{rotated.resend_count})"
            )
            self.publish(
                events.INVITATION_RESENT,
                {"email": rotated.email, "resend_count": rotated.resend_count},
            )
            return rotated

        raise InfrastructureError("Unable to generate a unique invitation token")

    def _record_failed_attempt(self, invitation: Invitation) -> None:
        """Count a failed accept on the stored invitation without masking the caller's error."""
        try:
            current = self.repo.find_by_id(invitation.id)
            if current is None or not current.is_pending:
                return
            failed = current.register_failed_attempt(self.clock())
            if self.repo.save_transition(current, failed) and not failed.is_pending:
                logger.warning(f"Invitation for {failed.email} revoked after too many attempts")
                self.publish(events.INVITATION_REVOKED, {"email": failed.email, "reason": "attempts"})
        except PyMongoError as e:
            self.reporter(e, action="record failed attempt", email=invitation.email)

    def _resolve_location(self, ip: Optional[str]) -> str:
        location = self.geolocator.lookup(ip)
        if location is None:
            logger.info(f"No geolocation for {ip or 'unknown ip'}, using '{UNKNOWN_LOCATION}'")
            return UNKNOWN_LOCATION
        return location.describe()

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def create_invitation(self, payload: InvitationCreateRequest) -> Invitation:
        """
        Create an invitation, or resend the pending one for the same e-mail.

        Raises:
            BadRequestError: disallowed domain, missing phone number for SMS
            ConflictError: a user with this e-mail already exists
            InfrastructureError: store or queue failure
        """
        email = payload.email.strip().lower()
        self._validate_email_domain(email)

        method = InviteMethod(payload.invite_method)
        if method in (InviteMethod.SMS, InviteMethod.BOTH) and not payload.phone_number:
            raise BadRequestError("A phone number is required for SMS invitations")

        now = self.clock()
        if payload.expires_at is not None and payload.expires_at <= now:
            raise BadRequestError("expires_at must be in the future")

        with self._infrastructure("create invitation", email=email):
            existing = self.repo.find_pending_by_email(email)
            if existing is not None and self._expire_if_overdue(existing, now):
                existing = None
            if existing is not None:
                return self._rotate_and_enqueue(existing)

            if self.user_repo.find_by_email(email):
                raise ConflictError(f"User with email {email} already exists in the system")

            if payload.invite_token and self.repo.token_exists(payload.invite_token):
                raise ConflictError("Invitation token is already in use")

            invitation = Invitation(
                invite_token=payload.invite_token or self._new_unique_token(),
                email=email,
                role=payload.role,
                invited_by=payload.invited_by or "system",
                invited_by_name=payload.invited_by_name,
                expires_at=payload.expires_at or now + timedelta(days=settings.INVITATION_EXPIRY_DAYS),
                first_name=payload.first_name,
                last_name=payload.last_name,
                phone_number=payload.phone_number,
                invite_method=method,
                language=payload.language,
                timezone=payload.timezone,
                additional_notes=payload.additional_notes,
                max_attempts=settings.INVITATION_MAX_ATTEMPTS,
                email_sent_at=now,
                created_at=now,
            )

            try:
                self.repo.insert_one(invitation)
            except DuplicateKeyError:
                # Lost the race for the one pending invitation of this e-mail
                existing = self.repo.find_pending_by_email(email)
                if existing is None:
                    raise
                return self._rotate_and_enqueue(existing)

            self._enqueue(SEND_INVITATION, invitation)

        logger.info(f"Created invitation for {email} by {invitation.invited_by}")
        self.publish(
            events.INVITATION_CREATED,
            {"email": email, "role": invitation.role, "invited_by": invitation.invited_by},
        )
        return invitation

    def get_by_token(self, token: str) -> Invitation:
        with self._infrastructure("load invitation"):
            invitation = self.repo.find_by_token(token)
        if invitation is None:
            raise NotFoundError("Invitation not found")
        return invitation

    def get_by_email(self, email: str) -> Invitation:
        """Most recent invitation for an e-mail, whatever its status."""
        with self._infrastructure("load invitation", email=email):
            invitation = self.repo.find_latest_by_email(email)
        if invitation is None:
            raise NotFoundError(f"No invitation found for {email}")
        return invitation

    def accept_invite(
        self,
        invitation: Invitation,
        full_name: str,
        password: str,
        context: Optional[RequestContext] = None,
    ) -> User:
        """
        Accept an invitation and create the user account.

        Checks run in order: already accepted, revoked, expired, attempts
        exhausted, password strength. Any failure after the password check
        still counts as a failed attempt before the error is re-raised.

        Raises:
            ConflictError: already accepted, revoked, or user exists
            InvitationExpiredError: invitation expired
            ForbiddenError: revoked because attempts ran out
            BadRequestError: weak password or missing name
            InfrastructureError: store failure
        """
        context = context or RequestContext()
        now = self.clock()

        if invitation.status == InvitationStatus.ACCEPTED.value:
            raise ConflictError("Invitation has already been accepted")
        if invitation.status == InvitationStatus.REVOKED.value:
            raise ConflictError("Invitation has been revoked")
        if invitation.status == InvitationStatus.EXPIRED.value:
            raise InvitationExpiredError("Invitation has expired")

        with self._infrastructure("accept invitation", email=invitation.email):
            if self._expire_if_overdue(invitation, now):
                raise InvitationExpiredError("Invitation has expired")

            if invitation.attempts_exhausted:
                self._commit(invitation, invitation.revoke(now))
                self.publish(events.INVITATION_REVOKED, {"email": invitation.email, "reason": "attempts"})
                raise ForbiddenError("Invitation revoked after too many failed attempts")

            if not full_name or not full_name.strip():
                raise BadRequestError("Full name is required")

            weakness = check_password_strength(password)
            if weakness:
                failed = self._commit(invitation, invitation.register_failed_attempt(now))
                if not failed.is_pending:
                    logger.warning(f"Invitation for {failed.email} revoked after too many attempts")
                    self.publish(events.INVITATION_REVOKED, {"email": failed.email, "reason": "attempts"})
                    raise ForbiddenError("Invitation revoked after too many failed attempts")
                raise BadRequestError(f"Weak password: {weakness}")

            password_hash = hash_password(password)
            attempted = self._commit(invitation, invitation.register_successful_attempt(now))

        try:
            return self._create_user(attempted, full_name.strip(), password_hash, context)
        except Exception:
            self._record_failed_attempt(attempted)
            raise

    def _create_user(
        self,
        invitation: Invitation,
        full_name: str,
        password_hash: str,
        context: RequestContext,
    ) -> User:
        with self._infrastructure("accept invitation", email=invitation.email):
            if self.user_repo.find_by_email(invitation.email):
                raise ConflictError(f"User with email {invitation.email} already exists")

            location = self._resolve_location(context.ip)
            username = generate_username(invitation.email, full_name, self.user_repo.username_exists)

            now = self.clock()
            accepted = invitation.accept(
                now, ip=context.ip, device=context.user_agent, location=location
            )
            user = User(
                email=invitation.email,
                username=username,
                full_name=full_name,
                role=invitation.role,
                password_hash=password_hash,
                invitation_id=invitation.id,
                created_at=now,
            )

            def create_user_and_accept(session):
                self.user_repo.insert_one(user, session=session)
                if not self.repo.mark_accepted(invitation.invite_token, accepted, session=session):
                    raise self._no_longer_pending(invitation)
                return user

            try:
                self.run_in_transaction(create_user_and_accept)
            except DuplicateKeyError as e:
                raise ConflictError("A user with this e-mail or username already exists") from e

        logger.info(f"Invitation for {user.email} accepted, created user {user.username}")
        self.publish(
            events.INVITATION_ACCEPTED,
            {"email": user.email, "username": user.username, "location": location},
        )
        self.publish(
            events.ADMIN_NOTIFICATION,
            {
                "email": user.email,
                "invited_by": invitation.invited_by,
                "message": f"{user.full_name} accepted the invitation as {user.role}",
                "priority": "normal",
            },
        )
        return user

    def resend_invitation(self, email: str) -> Optional[Invitation]:
        """
        Rotate the token of the pending invitation for email and queue a new delivery.

        Returns:
            The updated invitation, or None when there is no pending invitation
        """
        email = email.strip().lower()
        with self._infrastructure("resend invitation", email=email):
            invitation = self.repo.find_pending_by_email(email)
            if invitation is None:
                return None
            if self._expire_if_overdue(invitation, self.clock()):
                raise InvitationExpiredError("Invitation has expired, create a new one")
            return self._rotate_and_enqueue(invitation)

    def revoke_invitation(self, token: str) -> Optional[Invitation]:
        """
        Revoke a pending invitation.

        Idempotent: an invitation that is not pending is returned unchanged,
        and an unknown token returns None.
        """
        with self._infrastructure("revoke invitation"):
            revoked = self.repo.mark_revoked(token, self.clock())
            if revoked is None:
                return self.repo.find_by_token(token)

        logger.info(f"Revoked invitation for {revoked.email}")
        self.publish(events.INVITATION_REVOKED, {"email": revoked.email, "reason": "manual"})
        return revoked

    def expire_invitations(self) -> int:
        """Flip every overdue pending invitation to expired. Returns how many changed."""
        with self._infrastructure("expire invitations"):
            count = self.repo.expire_overdue(self.clock())
        if count:
            logger.info(f"Expired {count} invitations")
            self.publish(events.INVITATION_EXPIRED, {"count": count})
        return count

    def send_reminders_for_expiring_invitations(self) -> int:
        """
        Queue one reminder for each pending invitation expiring within the window.

        The reminder flag is latched before the job is queued, so a reminder is
        queued at most once even when sweeps overlap. Returns how many were queued.
        """
        now = self.clock()
        window = timedelta(hours=settings.REMINDER_WINDOW_HOURS)

        with self._infrastructure("load expiring invitations"):
            candidates = self.repo.find_expiring_without_reminder(now, window)

        queued = 0
        for invitation in candidates:
            reminded = invitation.mark_reminder_sent(now)
            try:
                if not self.repo.save_transition(invitation, reminded):
                    continue
                self._enqueue(SEND_REMINDER, reminded)
            except (PyMongoError, InfrastructureError) as e:
                self.reporter(e, action="queue reminder", email=invitation.email)
                continue

            queued += 1
            self.publish(
                events.INVITATION_REMINDER_QUEUED,
                {"email": reminded.email, "expires_at": reminded.expires_at},
            )

        if queued:
            logger.info(f"Queued {queued} invitation reminders")
        return queued

    def delete_invitation(self, token: str) -> None:
        with self._infrastructure("delete invitation"):
            deleted = self.repo.delete_by_token(token)
        if not deleted:
            raise NotFoundError("Invitation not found")
        logger.info(f"Deleted invitation {token[:8]}...")
        self.publish(events.INVITATION_DELETED, {"invite_token": token})

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_paging(page: int, page_size: int) -> None:
        if page < 1:
            raise BadRequestError("page must be >= 1")
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise BadRequestError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    def get_all_invitations(self, page: int = 1, page_size: int = 10) -> Dict[str, Any]:
        self._validate_paging(page, page_size)
        with self._infrastructure("list invitations"):
            items, total = self.repo.list_paginated(page, page_size)
        return {
            "items": items,
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": math.ceil(total / page_size) if total else 0,
        }

    def get_invitations_dashboard(self, page: int = 1, page_size: int = 10) -> Dict[str, Any]:
        """Counts per status, top failed-attempt e-mails, top inviters and one page of invitations."""
        invitations = self.get_all_invitations(page, page_size)
        with self._infrastructure("build invitation dashboard"):
            return {
                "counts": self.repo.count_by_status(),
                "top_failed_attempts": self.repo.top_failed_attempts(DASHBOARD_TOP_LIMIT),
                "top_inviters": self.repo.top_inviters(DASHBOARD_TOP_LIMIT),
                "invitations": invitations,
            }
