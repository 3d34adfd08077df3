"""Repository layer for database operations"""

from .base import BaseRepository
from .invitation import InvitationRepository
from .user import UserRepository

__all__ = [
    "BaseRepository",
    "InvitationRepository",
    "UserRepository",
]
