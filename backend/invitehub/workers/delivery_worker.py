"""
Delivery Worker - turns a queued job into e-mail and/or SMS sends.

Dispatch errors propagate so the queue retries the whole job. Delivery is
at-least-once: every channel send is recorded under the job id, and a retry
of the same job skips the channels it already delivered. Sends made by other
jobs (a reminder, an earlier resend) never count. A crash between a send and
its record can still produce a duplicate notification.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from invitehub.core import events
from invitehub.core.tracing import TracingContext
from invitehub.entities.base import utc_now
from invitehub.queues.delivery_queue import SEND_INVITATION, SEND_REMINDER, build_payload
from invitehub.repositories.invitation import InvitationRepository
from invitehub.services.exceptions import InfrastructureError
from invitehub.services.notifications import EMAIL_CHANNEL, SMS_CHANNEL, NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class DeliveryJob:
    name: str
    payload: Dict[str, Any]
    job_id: Optional[str] = None
    attempt: int = 1

    @property
    def invite_token(self) -> str:
        return self.payload["invite_token"]


@dataclass
class DeliveryResult:
    status: str
    sent: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "sent": self.sent, "reason": self.reason}


class DeliveryWorker:
    def __init__(
        self,
        repo: InvitationRepository,
        dispatcher: NotificationDispatcher,
        publish: Callable[[str, Dict[str, Any]], Any] = events.publish_event,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.dispatcher = dispatcher
        self.publish = publish
        self.clock = clock

    def _senders(self, job_name: str):
        if job_name == SEND_INVITATION:
            return self.dispatcher.send_invitation_email, self.dispatcher.send_invitation_sms
        if job_name == SEND_REMINDER:
            return self.dispatcher.send_reminder_email, self.dispatcher.send_reminder_sms
        raise ValueError(f"Unknown delivery job: {job_name}")

    @staticmethod
    def _delivery_key(job: DeliveryJob, channel: str) -> str:
        job_key = job.job_id or f"{job.name}@{job.payload.get('enqueued_at')}"
        return f"{job_key}:{channel}"

    def process_job(self, job: DeliveryJob) -> DeliveryResult:
        """
        Deliver one job.

        Raises:
            DeliveryError: when a channel exhausted every provider
        """
        email_sender, sms_sender = self._senders(job.name)
        prefix = TracingContext.get_log_prefix()

        invitation = self.repo.find_by_token(job.invite_token)
        if invitation is None:
            # Token rotated by a resend; the newer job carries the live token
            logger.info(f"{prefix} Skipping {job.name}: token superseded")
            return DeliveryResult(status="skipped", reason="token_superseded")
        if not invitation.is_pending:
            logger.info(f"{prefix} Skipping {job.name}: invitation is {invitation.status}")
            return DeliveryResult(status="skipped", reason=f"invitation_{invitation.status}")

        payload = build_payload(invitation)
        result = DeliveryResult(status="completed")

        channels = []
        if invitation.sends_email:
            channels.append((EMAIL_CHANNEL, email_sender))
        if invitation.sends_sms:
            if invitation.phone_number:
                channels.append((SMS_CHANNEL, sms_sender))
            else:
                logger.warning(f"{prefix} No phone number on invitation, SMS skipped")

        try:
            for channel, sender in channels:
                delivery_key = self._delivery_key(job, channel)
                if delivery_key in invitation.delivered_jobs:
                    logger.info(f"{prefix} {channel} already delivered for this job, skipping")
                    continue
                sender(payload)
                self.repo.stamp_delivery(
                    invitation.invite_token, channel, self.clock(), delivery_key=delivery_key
                )
                result.sent.append(channel)
        except InfrastructureError as e:
            self.publish(
                events.DELIVERY_JOB_FAILED,
                {
                    "job_id": job.job_id,
                    "job_name": job.name,
                    "email": invitation.email,
                    "attempt": job.attempt,
                    "error": str(e),
                },
            )
            raise

        logger.info(f"{prefix} {job.name} delivered via {', '.join(result.sent) or 'no channel'}")
        self.publish(
            events.DELIVERY_JOB_COMPLETED,
            {
                "job_id": job.job_id,
                "job_name": job.name,
                "email": invitation.email,
                "channels": result.sent,
            },
        )
        return result
