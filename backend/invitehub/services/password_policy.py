"""Password strength rules applied when an invitation is accepted."""

import re
from typing import Optional

import bcrypt

from invitehub.config import settings

MIN_PASSWORD_LENGTH = 8

_STRONG_PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d).+$")

COMMON_PASSWORDS = frozenset(
    {
        "123456",
        "12345678",
        "123456789",
        "1234567890",
        "password",
        "password1",
        "password123",
        "passw0rd",
        "qwerty",
        "qwerty123",
        "qwertyuiop",
        "abc123",
        "abcdef123",
        "letmein",
        "letmein1",
        "welcome",
        "welcome1",
        "welcome123",
        "admin",
        "admin123",
        "administrator",
        "iloveyou",
        "monkey",
        "dragon",
        "football",
        "baseball",
        "sunshine",
        "princess",
        "trustno1",
        "superman",
        "starwars",
        "changeme",
        "changeme1",
        "master",
        "login",
        "michael",
        "shadow",
        "111111",
        "000000",
        "1q2w3e4r",
        "1qaz2wsx",
        "zaq12wsx",
        "p@ssw0rd",
        "summer2024",
        "winter2024",
    }
)


def is_common_password(password: str) -> bool:
    return password.strip().lower() in COMMON_PASSWORDS


def check_password_strength(password: Optional[str]) -> Optional[str]:
    """
    Validate a candidate password.

    Returns:
        None when the password is acceptable, otherwise the reason it is not
    """
    if not password or not password.strip():
        return "Password is required"

    password = password.strip()
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if not _STRONG_PASSWORD_RE.match(password):
        return "Password must contain an uppercase letter, a lowercase letter and a digit"
    if is_common_password(password):
        return "Password is too common"
    return None


def is_strong_password(password: Optional[str]) -> bool:
    return check_password_strength(password) is None


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.strip().encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.strip().encode("utf-8"), password_hash.encode("utf-8"))
