"""
Event publishing over Redis pub/sub.

Events are fire-and-forget: a failed publish is logged and never propagates
to the caller.
"""

import json
import logging
from typing import Any, Dict

import redis

from invitehub.database.redis_client import get_redis

logger = logging.getLogger(__name__)

EVENTS_CHANNEL = "events"

INVITATION_CREATED = "INVITATION_CREATED"
INVITATION_RESENT = "INVITATION_RESENT"
INVITATION_ACCEPTED = "INVITATION_ACCEPTED"
INVITATION_REVOKED = "INVITATION_REVOKED"
INVITATION_EXPIRED = "INVITATION_EXPIRED"
INVITATION_REMINDER_QUEUED = "INVITATION_REMINDER_QUEUED"
INVITATION_DELETED = "INVITATION_DELETED"
ADMIN_NOTIFICATION = "ADMIN_NOTIFICATION"
NOTIFICATION_SENT = "NOTIFICATION_SENT"
NOTIFICATION_ATTEMPT_FAILED = "NOTIFICATION_ATTEMPT_FAILED"
NOTIFICATION_FAILED = "NOTIFICATION_FAILED"
DELIVERY_JOB_COMPLETED = "DELIVERY_JOB_COMPLETED"
DELIVERY_JOB_FAILED = "DELIVERY_JOB_FAILED"


def publish_event(event_type: str, payload: Dict[str, Any]) -> bool:
    """
    Publish an event to the Redis events channel.

    Returns:
        True if published successfully, False otherwise
    """
    try:
        message = json.dumps({"type": event_type, "payload": payload}, default=str)
        get_redis().publish(EVENTS_CHANNEL, message)
        return True
    except redis.RedisError as e:
        logger.error(f"Failed to publish event {event_type}: {e}")
        return False
