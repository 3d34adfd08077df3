"""
Delivery Tasks - consume send-invitation and send-reminder jobs.

Retries cover infrastructure failures only (provider exhaustion, store
errors). Anything else fails the job at once and sends it to the dead set.
"""

import logging
from typing import Any, Dict

from pymongo.errors import PyMongoError

from invitehub.celery_app import celery_app
from invitehub.config import settings
from invitehub.core.tracing import TracingContext
from invitehub.queues.delivery_queue import SEND_INVITATION, SEND_REMINDER
from invitehub.services.exceptions import InfrastructureError
from invitehub.tasks.base import DeliveryTask
from invitehub.workers.delivery_worker import DeliveryJob

logger = logging.getLogger(__name__)

RETRY_OPTIONS = dict(
    autoretry_for=(InfrastructureError, PyMongoError),
    retry_kwargs={"max_retries": settings.DELIVERY_MAX_ATTEMPTS - 1},
    retry_backoff=settings.DELIVERY_BACKOFF_SECONDS,
    retry_backoff_max=settings.DELIVERY_BACKOFF_MAX_SECONDS,
    retry_jitter=False,
    acks_late=True,
    reject_on_worker_lost=True,
    ignore_result=True,
)


def _run(task: DeliveryTask, payload: Dict[str, Any]) -> Dict[str, Any]:
    TracingContext.set(
        correlation_id=payload.get("correlation_id") or task.request.id,
        invite_token=payload.get("invite_token", ""),
        job_id=task.request.id,
        task_name=task.job_name,
    )
    try:
        job = DeliveryJob(
            name=task.job_name,
            payload=payload,
            job_id=task.request.id,
            attempt=task.request.retries + 1,
        )
        return task.worker.process_job(job).to_dict()
    finally:
        TracingContext.clear()


@celery_app.task(
    bind=True,
    base=DeliveryTask,
    name="invitehub.tasks.delivery.send_invitation",
    job_name=SEND_INVITATION,
    **RETRY_OPTIONS,
)
def send_invitation(self: DeliveryTask, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Send the invitation e-mail and/or SMS for the token in payload."""
    return _run(self, payload)


@celery_app.task(
    bind=True,
    base=DeliveryTask,
    name="invitehub.tasks.delivery.send_reminder",
    job_name=SEND_REMINDER,
    **RETRY_OPTIONS,
)
def send_reminder(self: DeliveryTask, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Send the expiry reminder for the token in payload."""
    return _run(self, payload)
