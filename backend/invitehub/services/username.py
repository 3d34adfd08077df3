"""Unique username generation for accounts created from invitations."""

import re
from typing import Callable, Optional

from invitehub.config import settings

from .exceptions import InfrastructureError

_INVALID_CHARS_RE = re.compile(r"[^a-z0-9._-]+")


def _sanitize(value: str) -> str:
    return _INVALID_CHARS_RE.sub("", value.strip().lower())


def base_username(email: str, full_name: Optional[str] = None) -> str:
    """first.last when the full name has two parts, otherwise the e-mail local part."""
    parts = (full_name or "").split()
    if len(parts) >= 2:
        candidate = f"{_sanitize(parts[0])}.{_sanitize(parts[-1])}"
        if candidate.strip("."):
            return candidate
    local = _sanitize(email.split("@", 1)[0])
    return local or "user"


def generate_username(
    email: str,
    full_name: Optional[str],
    exists: Callable[[str], bool],
    max_attempts: Optional[int] = None,
) -> str:
    """
    Derive a username no other user holds.

    Appends an increasing counter to the base until `exists` says it is free.

    Raises:
        InfrastructureError: if no free name was found within max_attempts
    """
    max_attempts = max_attempts or settings.USERNAME_MAX_ATTEMPTS
    base = base_username(email, full_name)

    username = base
    for counter in range(1, max_attempts + 1):
        if not exists(username):
            return username
        username = f"{base}{counter}"

    raise InfrastructureError("Unable to generate a unique username")
