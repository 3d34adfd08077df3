"""Base Celery task for delivery jobs."""

import logging
from typing import Any, Dict

from celery import Task

from invitehub.core import events
from invitehub.core.error_tracking import report_error
from invitehub.database.mongo import get_database
from invitehub.database.redis_client import get_redis
from invitehub.queues.delivery_queue import DeadLetterStore
from invitehub.repositories.invitation import InvitationRepository
from invitehub.services.notifications import NotificationDispatcher
from invitehub.workers.delivery_worker import DeliveryWorker

logger = logging.getLogger(__name__)


class DeliveryTask(Task):
    """
    Shares one database handle, dispatcher and dead-letter store per worker
    process, and moves jobs that exhausted their retries to the dead set.
    """

    abstract = True
    job_name: str = ""

    _db = None
    _dispatcher = None
    _dead_letters = None

    @property
    def db(self):
        if self._db is None:
            self._db = get_database()
        return self._db

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher.from_settings()
        return self._dispatcher

    @property
    def dead_letters(self) -> DeadLetterStore:
        if self._dead_letters is None:
            self._dead_letters = DeadLetterStore(get_redis())
        return self._dead_letters

    @property
    def worker(self) -> DeliveryWorker:
        return DeliveryWorker(InvitationRepository(self.db), self.dispatcher)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Delivery job {self.name}[{task_id}] failed on attempt "
            f"{self.request.retries + 1}, retrying: {exc}"
        )

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        payload: Dict[str, Any] = kwargs.get("payload") or (args[0] if args else {})
        attempts = self.request.retries + 1
        report_error(exc, job_id=task_id, job_name=self.job_name, attempts=attempts)
        self.dead_letters.push(
            job_name=self.job_name or self.name,
            payload=payload,
            error=str(exc),
            attempts=attempts,
            job_id=task_id,
        )
        events.publish_event(
            events.DELIVERY_JOB_FAILED,
            {
                "job_id": task_id,
                "job_name": self.job_name,
                "email": payload.get("email"),
                "attempts": attempts,
                "final": True,
                "error": str(exc),
            },
        )
