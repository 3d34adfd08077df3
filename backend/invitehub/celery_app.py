"""
Celery application - delivery queue and periodic sweeps.

Run a worker:
    celery -A invitehub.celery_app worker -Q invitations,maintenance --loglevel=info
Run the scheduler:
    celery -A invitehub.celery_app beat --loglevel=info
"""

from datetime import timedelta

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from invitehub.config import settings
from invitehub.core.logging import setup_logging

celery_app = Celery(
    "invitehub",
    broker=settings.broker_url,
    include=[
        "invitehub.tasks.delivery",
        "invitehub.tasks.maintenance",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.DELIVERY_QUEUE_NAME,
    # At-least-once: a job is acknowledged only after it finished, and goes
    # back to the queue if the worker dies mid-run.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
    broker_transport_options={"visibility_timeout": 3600},
    beat_schedule={
        "expire-invitations": {
            "task": "invitehub.tasks.maintenance.expire_invitations",
            "schedule": timedelta(minutes=settings.EXPIRY_SWEEP_INTERVAL_MINUTES),
            "options": {"queue": "maintenance"},
        },
        "send-invitation-reminders": {
            "task": "invitehub.tasks.maintenance.send_invitation_reminders",
            "schedule": timedelta(minutes=settings.REMINDER_SWEEP_INTERVAL_MINUTES),
            "options": {"queue": "maintenance"},
        },
    },
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    setup_logging()
