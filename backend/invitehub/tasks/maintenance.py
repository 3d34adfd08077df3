"""
Maintenance Tasks - Scheduled invitation sweeps.

These tasks are designed to run periodically via Celery Beat.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from celery import shared_task

from invitehub.database.mongo import get_database
from invitehub.queues.delivery_queue import DeliveryQueue
from invitehub.services.exceptions import InfrastructureError
from invitehub.services.invitation_service import InvitationService

logger = logging.getLogger(__name__)


def _service() -> InvitationService:
    return InvitationService(get_database(), DeliveryQueue())


@shared_task(
    name="invitehub.tasks.maintenance.expire_invitations",
    bind=True,
    queue="maintenance",
)
def expire_invitations(self) -> Dict[str, Any]:
    """
    Flip overdue pending invitations to expired.

    Returns:
        Dict with expired count and timestamp.
    """
    try:
        expired = _service().expire_invitations()
        logger.info(f"Invitation expiry sweep completed: expired {expired} invitations")
        return {
            "status": "success",
            "expired_count": expired,
            "executed_at": datetime.now(timezone.utc).isoformat(),
        }
    except InfrastructureError as e:
        logger.error(f"Invitation expiry sweep failed: {e}")
        return {
            "status": "failed",
            "error": str(e),
            "executed_at": datetime.now(timezone.utc).isoformat(),
        }


@shared_task(
    name="invitehub.tasks.maintenance.send_invitation_reminders",
    bind=True,
    queue="maintenance",
)
def send_invitation_reminders(self) -> Dict[str, Any]:
    """Queue reminders for invitations about to expire."""
    try:
        queued = _service().send_reminders_for_expiring_invitations()
        logger.info(f"Reminder sweep completed: queued {queued} reminders")
        return {
            "status": "success",
            "queued_count": queued,
            "executed_at": datetime.now(timezone.utc).isoformat(),
        }
    except InfrastructureError as e:
        logger.error(f"Reminder sweep failed: {e}")
        return {
            "status": "failed",
            "error": str(e),
            "executed_at": datetime.now(timezone.utc).isoformat(),
        }
