"""
MongoDB Log Handler - Stores WARNING+ logs to MongoDB for later review.

Enabled by ERROR_TRACKING_ENABLED; setup_logging() installs it on the root
logger, so reports from invitehub.core.error_tracking end up here too.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from invitehub.config import settings
from invitehub.core.tracing import TracingContext

LOG_RETENTION_SECONDS = 30 * 24 * 3600


class MongoDBLogHandler(logging.Handler):
    """
    Logging handler that writes records to the system_logs collection.

    Only logs at WARNING level and above are stored to avoid excessive storage.
    """

    def __init__(
        self,
        level: int = logging.WARNING,
        collection_name: str = "system_logs",
        client: Optional[MongoClient] = None,
    ):
        super().__init__(level)
        self._client = client
        self._collection: Optional[Collection] = None
        self.collection_name = collection_name

    @property
    def collection(self) -> Collection:
        """Lazy connection to MongoDB."""
        if self._collection is None:
            if self._client is None:
                self._client = MongoClient(settings.MONGODB_URI, serverSelectionTimeoutMS=2000)
            self._collection = self._client[settings.MONGODB_DB_NAME][self.collection_name]
            self._collection.create_index("timestamp", expireAfterSeconds=LOG_RETENTION_SECONDS)
        return self._collection

    def build_entry(self, record: logging.LogRecord) -> dict:
        ctx = TracingContext.get()
        entry = {
            "timestamp": datetime.now(timezone.utc),
            "level": record.levelname,
            "source": record.name,
            "message": self.format(record),
            "correlation_id": ctx["correlation_id"] or None,
            "job_id": ctx["job_id"] or None,
            "details": {
                "filename": record.filename,
                "lineno": record.lineno,
                "funcName": record.funcName,
            },
        }
        if record.exc_info and record.exc_info[1]:
            entry["details"]["exception"] = repr(record.exc_info[1])
        return entry

    def emit(self, record: logging.LogRecord):
        # The driver logs through "pymongo"; storing those would recurse
        if record.name.startswith("pymongo"):
            return
        try:
            self.collection.insert_one(self.build_entry(record))
        except PyMongoError:
            self.handleError(record)

    def close(self):
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
        super().close()


def setup_mongodb_logging() -> MongoDBLogHandler:
    """Add the MongoDB log handler to the root logger."""
    handler = MongoDBLogHandler(level=logging.WARNING)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.getLogger().addHandler(handler)
    return handler
