"""
Invitation DTOs - Request/Response models for invitation API.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from invitehub.entities.invitation import Invitation, InviteMethod
from invitehub.entities.user import User


class InvitationCreateRequest(BaseModel):
    """Request to create (or re-send) an invitation."""

    email: EmailStr = Field(..., description="Email of the user to invite")
    role: str = Field(..., min_length=1, max_length=50)
    invited_by: Optional[str] = None
    invited_by_name: Optional[str] = None
    invite_method: InviteMethod = InviteMethod.EMAIL
    phone_number: Optional[str] = Field(default=None, pattern=r"^\+?[1-9]\d{6,14}$")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language: str = "en"
    timezone: str = "UTC"
    additional_notes: Optional[str] = Field(default=None, max_length=1000)
    expires_at: Optional[datetime] = None
    invite_token: Optional[str] = Field(default=None, min_length=16, max_length=128)

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Timestamps without an offset are read as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class InvitationResendRequest(BaseModel):
    email: EmailStr


class InvitationAcceptRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=1, max_length=256)


class ChangeLogResponse(BaseModel):
    date: datetime
    field: str
    old_value: Any = None
    new_value: Any = None


class InvitationResponse(BaseModel):
    """Invitation response model."""

    id: str = Field(..., alias="_id")
    invite_token: str
    email: str
    status: str
    role: str
    invited_by: str
    invited_by_name: Optional[str] = None
    invite_method: str
    phone_number: Optional[str] = None
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    created_at: datetime
    attempts_made: int
    failed_attempts: int
    max_attempts: int
    resend_count: int
    email_sent_at: Optional[datetime] = None
    sms_sent_at: Optional[datetime] = None
    reminder_sent: bool
    reminder_sent_at: Optional[datetime] = None
    accepted_from_location: Optional[str] = None
    change_logs: List[ChangeLogResponse] = []

    class Config:
        populate_by_name = True

    @classmethod
    def from_entity(cls, invitation: Invitation) -> "InvitationResponse":
        return cls(
            _id=str(invitation.id),
            **invitation.model_dump(include=set(cls.model_fields) - {"id"}),
        )


class InvitationListResponse(BaseModel):
    """Paginated list of invitations."""

    items: List[InvitationResponse]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def from_page(cls, page: Dict[str, Any]) -> "InvitationListResponse":
        return cls(
            items=[InvitationResponse.from_entity(inv) for inv in page["items"]],
            total=page["total"],
            page=page["page"],
            page_size=page["page_size"],
            total_pages=page["total_pages"],
        )


class FailedAttemptsEntry(BaseModel):
    email: str
    failed_attempts: int
    status: str


class InviterEntry(BaseModel):
    invited_by: Optional[str] = None
    count: int


class InvitationDashboardResponse(BaseModel):
    counts: Dict[str, int]
    top_failed_attempts: List[FailedAttemptsEntry]
    top_inviters: List[InviterEntry]
    invitations: InvitationListResponse


class AcceptedUserResponse(BaseModel):
    """User created by accepting an invitation."""

    id: str = Field(..., alias="_id")
    email: str
    username: str
    full_name: str
    role: str
    created_at: datetime

    class Config:
        populate_by_name = True

    @classmethod
    def from_entity(cls, user: User) -> "AcceptedUserResponse":
        return cls(
            _id=str(user.id),
            email=user.email,
            username=user.username,
            full_name=user.full_name,
            role=user.role,
            created_at=user.created_at,
        )
