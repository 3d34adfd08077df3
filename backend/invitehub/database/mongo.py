from __future__ import annotations

"""
MongoDB connection helpers.
"""

import logging
from typing import Callable, Optional, TypeVar

from pymongo import MongoClient
from pymongo.client_session import ClientSession
from pymongo.database import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")

TransactionRunner = Callable[[Callable[[Optional[ClientSession]], T]], T]

_client: MongoClient | None = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        # Import settings lazily to ensure env vars are loaded
        from invitehub.config import settings

        logger.info(f"Initializing MongoClient for database {settings.MONGODB_DB_NAME}")
        _client = MongoClient(settings.MONGODB_URI, tz_aware=True)
    return _client


def get_database() -> Database:
    from invitehub.config import settings

    client = get_client()
    return client[settings.MONGODB_DB_NAME]


def get_db():
    db = get_database()
    try:
        yield db
    finally:
        # PyMongo manages connection pooling automatically; nothing to close here.
        pass


def run_in_transaction(callback: Callable[[ClientSession], T]) -> T:
    """
    Run callback inside a transaction, retrying on transient errors.

    pymongo's with_transaction retries the whole callback on
    TransientTransactionError and the commit on UnknownTransactionCommitResult,
    so every write issued with the session is applied all-or-nothing.

    Usage:
        def work(session):
            users.insert_one(user, session=session)
            invitations.mark_accepted(token, accepted, session=session)

        run_in_transaction(work)

    Note:
        Requires a MongoDB replica set.
    """
    client = get_client()
    with client.start_session() as session:
        return session.with_transaction(callback)
