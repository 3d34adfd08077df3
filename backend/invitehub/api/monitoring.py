"""
Monitoring API - delivery queue inspection.

Endpoints:
- GET /monitoring/queue - Waiting jobs, dead-letter count and the dead jobs themselves
"""

import logging

import redis
from fastapi import APIRouter, Depends

from invitehub.database.redis_client import get_redis
from invitehub.queues.delivery_queue import queue_metrics
from invitehub.services.exceptions import InfrastructureError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/monitoring", tags=["Monitoring"])


@router.get("/queue")
def get_queue_metrics(client: redis.Redis = Depends(get_redis)):
    try:
        return queue_metrics(client)
    except redis.RedisError as e:
        logger.error(f"Failed to read queue metrics: {e}")
        raise InfrastructureError("Queue metrics unavailable") from e
