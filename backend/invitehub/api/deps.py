"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Depends, Request
from pymongo.database import Database

from invitehub.config import settings
from invitehub.database.mongo import get_db
from invitehub.queues.delivery_queue import DeliveryQueue
from invitehub.services.exceptions import ForbiddenError
from invitehub.services.geolocation import GeoLocator
from invitehub.services.invitation_service import InvitationService, RequestContext
from invitehub.services.rate_limiter import INVITE_SCOPE, RateLimiter


def require_module(module: str):
    """Dependency factory rejecting requests while a module is switched off."""

    def check() -> None:
        if not settings.is_module_enabled(module):
            raise ForbiddenError(f"Module '{module}' is disabled")

    return check


def get_delivery_queue(request: Request) -> DeliveryQueue:
    return request.app.state.delivery_queue


def get_geolocator(request: Request) -> GeoLocator:
    return request.app.state.geolocator


def get_invitation_service(
    db: Database = Depends(get_db),
    queue: DeliveryQueue = Depends(get_delivery_queue),
    geolocator: GeoLocator = Depends(get_geolocator),
) -> InvitationService:
    return InvitationService(db, queue, geolocator)


def client_ip(request: Request) -> Optional[str]:
    """Peer address, or the first X-Forwarded-For hop when the peer is a trusted proxy."""
    peer = request.client.host if request.client else None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and peer in settings.TRUSTED_PROXIES:
        return forwarded.split(",")[0].strip() or peer
    return peer


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(ip=client_ip(request), user_agent=request.headers.get("user-agent"))


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def limit_invite_sends(
    request: Request, limiter: RateLimiter = Depends(get_rate_limiter)
) -> None:
    limiter.check(INVITE_SCOPE, client_ip(request) or "unknown")
