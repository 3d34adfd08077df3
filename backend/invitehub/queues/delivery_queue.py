"""
Delivery Queue - durable, at-least-once queue of notification jobs.

Jobs are Celery tasks on the Redis broker:
    send-invitation -> invitehub.tasks.delivery.send_invitation
    send-reminder   -> invitehub.tasks.delivery.send_reminder

Each job retries up to DELIVERY_MAX_ATTEMPTS times with exponential backoff
(DELIVERY_BACKOFF_SECONDS * 2^n). Completed jobs are discarded; jobs that
exhaust their attempts land in the dead-letter list for inspection.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import redis
from celery import Celery
from kombu.exceptions import OperationalError

from invitehub.config import settings
from invitehub.core.tracing import TracingContext
from invitehub.entities.base import utc_now
from invitehub.entities.invitation import Invitation
from invitehub.services.exceptions import InfrastructureError

logger = logging.getLogger(__name__)

SEND_INVITATION = "send-invitation"
SEND_REMINDER = "send-reminder"

JOB_TASKS: Dict[str, str] = {
    SEND_INVITATION: "invitehub.tasks.delivery.send_invitation",
    SEND_REMINDER: "invitehub.tasks.delivery.send_reminder",
}

DEAD_LETTER_KEY = "delivery:dead"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_payload(invitation: Invitation) -> Dict[str, Any]:
    """JSON-safe job payload describing one invitation delivery."""
    return {
        "email": invitation.email,
        "invite_token": invitation.invite_token,
        "role": invitation.role,
        "expires_at": _iso(invitation.expires_at),
        "phone_number": invitation.phone_number,
        "invite_method": invitation.invite_method,
        "first_name": invitation.first_name,
        "invited_by_name": invitation.invited_by_name,
    }


class DeliveryQueue:
    """Publishes delivery jobs. Construct once and share."""

    def __init__(self, app: Optional[Celery] = None, queue_name: Optional[str] = None):
        if app is None:
            from invitehub.celery_app import celery_app

            app = celery_app
        self.app = app
        self.queue_name = queue_name or settings.DELIVERY_QUEUE_NAME

    def enqueue(self, job_name: str, payload: Dict[str, Any]) -> str:
        """
        Append a job to the delivery queue.

        Returns:
            The job id

        Raises:
            ValueError: for an unknown job name
            InfrastructureError: if the broker is unreachable
        """
        task_name = JOB_TASKS.get(job_name)
        if task_name is None:
            raise ValueError(f"Unknown delivery job: {job_name}")

        job_id = str(uuid.uuid4())
        job_payload = {
            **payload,
            "enqueued_at": utc_now().isoformat(),
            "correlation_id": TracingContext.get_correlation_id(),
        }
        try:
            self.app.send_task(
                task_name,
                kwargs={"payload": job_payload},
                queue=self.queue_name,
                task_id=job_id,
            )
        except OperationalError as e:
            raise InfrastructureError(f"Failed to enqueue {job_name}: {e}") from e

        logger.info(
            f"{TracingContext.get_log_prefix()} Enqueued {job_name} job {job_id} "
            f"for {payload.get('email')}"
        )
        return job_id


class DeadLetterStore:
    """Bounded Redis list of jobs that exhausted their retries, newest first."""

    def __init__(
        self,
        client: redis.Redis,
        key: str = DEAD_LETTER_KEY,
        limit: Optional[int] = None,
    ):
        self.client = client
        self.key = key
        self.limit = limit or settings.DELIVERY_DEAD_LETTER_LIMIT

    def push(
        self,
        job_name: str,
        payload: Dict[str, Any],
        error: str,
        attempts: int,
        job_id: Optional[str] = None,
    ) -> None:
        entry = {
            "job_id": job_id,
            "job_name": job_name,
            "payload": payload,
            "error": error,
            "attempts": attempts,
            "failed_at": utc_now().isoformat(),
        }
        pipe = self.client.pipeline()
        pipe.lpush(self.key, json.dumps(entry, default=str))
        pipe.ltrim(self.key, 0, self.limit - 1)
        pipe.execute()

    def list(self) -> List[Dict[str, Any]]:
        return [json.loads(item) for item in self.client.lrange(self.key, 0, self.limit - 1)]

    def size(self) -> int:
        return self.client.llen(self.key)

    def clear(self) -> int:
        return self.client.delete(self.key)


def queue_metrics(client: redis.Redis, queue_name: Optional[str] = None) -> Dict[str, Any]:
    """Waiting jobs on the broker list and the size of the dead-letter set."""
    queue_name = queue_name or settings.DELIVERY_QUEUE_NAME
    dead = DeadLetterStore(client)
    return {
        "queue": queue_name,
        "waiting": client.llen(queue_name),
        "dead": dead.size(),
        "dead_jobs": dead.list(),
    }
