from __future__ import annotations

from typing import Optional

from .base import BaseEntity, PyObjectId


class User(BaseEntity):
    """Account created when an invitation is accepted."""

    email: str
    username: str
    full_name: str
    role: str = "user"
    password_hash: str
    invitation_id: Optional[PyObjectId] = None
