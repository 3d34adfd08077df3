"""
Invitation Repository - Database operations for invitations.

Every state change is a conditional write keyed on status == pending, so two
concurrent accept/revoke/expire calls on the same invitation cannot both apply.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.client_session import ClientSession

from invitehub.entities.invitation import ChangeLogEntry, Invitation, InvitationStatus

from .base import BaseRepository

PENDING = InvitationStatus.PENDING.value


def _status_change_log(new_status: InvitationStatus, now: datetime) -> Dict[str, Any]:
    return ChangeLogEntry(
        date=now, field="status", old_value=PENDING, new_value=new_status.value
    ).model_dump()


class InvitationRepository(BaseRepository[Invitation]):
    """Repository for Invitation entities."""

    def __init__(self, db):
        super().__init__(db, "invitations", Invitation)

    def ensure_indexes(self) -> None:
        self.collection.create_index("invite_token", unique=True)
        self.collection.create_index(
            "email",
            unique=True,
            name="uniq_pending_email",
            partialFilterExpression={"status": PENDING},
        )
        self.collection.create_index([("status", ASCENDING), ("expires_at", ASCENDING)])
        self.collection.create_index("invited_by")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_token(self, token: str) -> Optional[Invitation]:
        """Find invitation by its current token."""
        return self.find_one({"invite_token": token})

    def token_exists(self, token: str) -> bool:
        return self.collection.count_documents({"invite_token": token}, limit=1) > 0

    def find_pending_by_email(self, email: str) -> Optional[Invitation]:
        return self.find_one({"email": email.strip().lower(), "status": PENDING})

    def find_latest_by_email(self, email: str) -> Optional[Invitation]:
        found = self.find_many(
            {"email": {"$regex": f"^{re.escape(email.strip())}$", "$options": "i"}},
            sort=[("created_at", DESCENDING)],
            limit=1,
        )
        return found[0] if found else None

    def list_paginated(self, page: int = 1, page_size: int = 10) -> Tuple[List[Invitation], int]:
        return self.paginate(
            {},
            sort=[("created_at", DESCENDING)],
            skip=(page - 1) * page_size,
            limit=page_size,
        )

    def find_expiring_without_reminder(
        self, now: datetime, window: timedelta
    ) -> List[Invitation]:
        """Pending invitations expiring within the window that never got a reminder."""
        return self.find_many(
            {
                "status": PENDING,
                "reminder_sent": False,
                "expires_at": {"$gt": now, "$lte": now + window},
            },
            sort=[("expires_at", ASCENDING)],
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_transition(
        self,
        before: Invitation,
        after: Invitation,
        session: Optional[ClientSession] = None,
    ) -> bool:
        """
        Commit a state computed by an Invitation transition.

        Applies only while the stored document is still pending and at the
        version the transition was computed from. Returns False when another
        writer got there first.

        Raises:
            pymongo.errors.DuplicateKeyError: if after.invite_token collides
        """
        result = self.collection.replace_one(
            {"_id": before.id, "version": before.version, "status": PENDING},
            after.to_mongo(),
            session=session,
        )
        return result.matched_count == 1

    def mark_revoked(self, token: str, now: datetime) -> Optional[Invitation]:
        """Revoke a pending invitation. Returns None if not found or not pending."""
        doc = self.collection.find_one_and_update(
            {"invite_token": token, "status": PENDING},
            {
                "$set": {
                    "status": InvitationStatus.REVOKED.value,
                    "revoked_at": now,
                    "updated_at": now,
                },
                "$inc": {"version": 1},
                "$push": {"change_logs": _status_change_log(InvitationStatus.REVOKED, now)},
            },
            return_document=ReturnDocument.AFTER,
        )
        return self._to_entity(doc)

    def mark_accepted(
        self,
        token: str,
        accepted: Invitation,
        session: Optional[ClientSession] = None,
    ) -> bool:
        """Store the result of Invitation.accept if the invitation is still pending."""
        result = self.collection.update_one(
            {"invite_token": token, "status": PENDING},
            {
                "$set": {
                    "status": InvitationStatus.ACCEPTED.value,
                    "accepted_at": accepted.accepted_at,
                    "accepted_by_ip": accepted.accepted_by_ip,
                    "accepted_by_device": accepted.accepted_by_device,
                    "accepted_from_location": accepted.accepted_from_location,
                    "change_logs": [log.model_dump() for log in accepted.change_logs],
                    "updated_at": accepted.updated_at,
                    "version": accepted.version,
                }
            },
            session=session,
        )
        return result.matched_count == 1

    def expire_overdue(self, now: datetime) -> int:
        """Flip every pending invitation past its expiry in one batch."""
        result = self.collection.update_many(
            {"status": PENDING, "expires_at": {"$lt": now}},
            {
                "$set": {"status": InvitationStatus.EXPIRED.value, "updated_at": now},
                "$inc": {"version": 1},
                "$push": {"change_logs": _status_change_log(InvitationStatus.EXPIRED, now)},
            },
        )
        return result.modified_count

    def stamp_delivery(
        self, token: str, channel: str, now: datetime, delivery_key: Optional[str] = None
    ) -> bool:
        """Record when a notification went out on a channel (email or sms)."""
        update: Dict[str, Any] = {"$set": {f"{channel}_sent_at": now, "updated_at": now}}
        if delivery_key:
            update["$addToSet"] = {"delivered_jobs": delivery_key}
        result = self.collection.update_one({"invite_token": token}, update)
        return result.modified_count > 0

    def delete_by_token(self, token: str) -> bool:
        return self.delete_one({"invite_token": token})

    # ------------------------------------------------------------------
    # Dashboard aggregates
    # ------------------------------------------------------------------

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in InvitationStatus}
        for row in self.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]):
            counts[row["_id"]] = row["count"]
        return counts

    def top_failed_attempts(self, limit: int = 5) -> List[Dict[str, Any]]:
        return self.aggregate(
            [
                {"$match": {"failed_attempts": {"$gt": 0}}},
                {"$sort": {"failed_attempts": -1}},
                {"$limit": limit},
                {"$project": {"_id": 0, "email": 1, "failed_attempts": 1, "status": 1}},
            ]
        )

    def top_inviters(self, limit: int = 5) -> List[Dict[str, Any]]:
        return self.aggregate(
            [
                {"$group": {"_id": "$invited_by", "count": {"$sum": 1}}},
                {"$sort": {"count": -1}},
                {"$limit": limit},
                {"$project": {"_id": 0, "invited_by": "$_id", "count": 1}},
            ]
        )
