"""Database entity models - represents the actual structure stored in MongoDB"""

from .base import BaseEntity, PyObjectId, utc_now
from .invitation import (
    ChangeLogEntry,
    InvalidTransitionError,
    Invitation,
    InvitationStatus,
    InviteMethod,
    generate_invite_token,
)
from .user import User

__all__ = [
    "BaseEntity",
    "PyObjectId",
    "utc_now",
    "ChangeLogEntry",
    "InvalidTransitionError",
    "Invitation",
    "InvitationStatus",
    "InviteMethod",
    "generate_invite_token",
    "User",
]
