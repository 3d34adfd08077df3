import re
from typing import Optional

from pymongo.client_session import ClientSession

from invitehub.entities.user import User

from .base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User entities."""

    def __init__(self, db):
        super().__init__(db, "users", User)

    def ensure_indexes(self) -> None:
        self.collection.create_index("email", unique=True)
        self.collection.create_index("username", unique=True)

    def find_by_email(
        self, email: str, session: Optional[ClientSession] = None
    ) -> Optional[User]:
        return self.find_one({"email": email.strip().lower()}, session=session)

    def username_exists(self, username: str) -> bool:
        """Case-insensitive check."""
        pattern = f"^{re.escape(username)}$"
        return (
            self.collection.count_documents(
                {"username": {"$regex": pattern, "$options": "i"}}, limit=1
            )
            > 0
        )
