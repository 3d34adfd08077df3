"""
Invitations API - thin translation between HTTP and InvitationService.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query, Response, status

from invitehub.api.deps import (
    get_invitation_service,
    get_request_context,
    limit_invite_sends,
    require_module,
)
from invitehub.dtos.invitation import (
    AcceptedUserResponse,
    InvitationAcceptRequest,
    InvitationCreateRequest,
    InvitationDashboardResponse,
    InvitationListResponse,
    InvitationResendRequest,
    InvitationResponse,
)
from invitehub.services.exceptions import NotFoundError
from invitehub.services.invitation_service import InvitationService, RequestContext

router = APIRouter(
    prefix="/invitations",
    tags=["Invitations"],
    dependencies=[Depends(require_module("invitations"))],
)


@router.post(
    "",
    response_model=InvitationResponse,
    response_model_by_alias=False,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_invite_sends)],
)
def create_invitation(
    payload: InvitationCreateRequest,
    service: InvitationService = Depends(get_invitation_service),
):
    """
    Create an invitation and queue its delivery.

    If a pending invitation already exists for the e-mail, its token is
    rotated and the invitation is re-sent instead.
    """
    return InvitationResponse.from_entity(service.create_invitation(payload))


@router.get("", response_model=InvitationListResponse, response_model_by_alias=False)
def list_invitations(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    service: InvitationService = Depends(get_invitation_service),
):
    return InvitationListResponse.from_page(service.get_all_invitations(page, page_size))


@router.get(
    "/dashboard",
    response_model=InvitationDashboardResponse,
    response_model_by_alias=False,
)
def get_dashboard(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    service: InvitationService = Depends(get_invitation_service),
):
    """Counts per status, top failed-attempt e-mails, top inviters and a page of invitations."""
    dashboard = service.get_invitations_dashboard(page, page_size)
    return InvitationDashboardResponse(
        counts=dashboard["counts"],
        top_failed_attempts=dashboard["top_failed_attempts"],
        top_inviters=dashboard["top_inviters"],
        invitations=InvitationListResponse.from_page(dashboard["invitations"]),
    )


@router.post(
    "/resend",
    response_model=InvitationResponse,
    response_model_by_alias=False,
    dependencies=[Depends(limit_invite_sends)],
)
def resend_invitation(
    payload: InvitationResendRequest,
    service: InvitationService = Depends(get_invitation_service),
):
    invitation = service.resend_invitation(payload.email)
    if invitation is None:
        raise NotFoundError(f"No pending invitation found for {payload.email}")
    return InvitationResponse.from_entity(invitation)


@router.post("/maintenance/expire")
def run_expiry_sweep(service: InvitationService = Depends(get_invitation_service)):
    return {"expired": service.expire_invitations()}


@router.post("/maintenance/reminders")
def run_reminder_sweep(service: InvitationService = Depends(get_invitation_service)):
    return {"queued": service.send_reminders_for_expiring_invitations()}


@router.get("/{token}", response_model=InvitationResponse, response_model_by_alias=False)
def get_invitation(
    token: str = Path(..., description="Invitation token"),
    service: InvitationService = Depends(get_invitation_service),
):
    return InvitationResponse.from_entity(service.get_by_token(token))


@router.post(
    "/{token}/accept",
    response_model=AcceptedUserResponse,
    response_model_by_alias=False,
    status_code=status.HTTP_201_CREATED,
)
def accept_invitation(
    payload: InvitationAcceptRequest,
    token: str = Path(..., description="Invitation token"),
    service: InvitationService = Depends(get_invitation_service),
    context: RequestContext = Depends(get_request_context),
):
    """Accept an invitation and create the user account."""
    invitation = service.get_by_token(token)
    user = service.accept_invite(invitation, payload.full_name, payload.password, context)
    return AcceptedUserResponse.from_entity(user)


@router.post("/{token}/revoke", response_model=InvitationResponse, response_model_by_alias=False)
def revoke_invitation(
    token: str = Path(..., description="Invitation token"),
    service: InvitationService = Depends(get_invitation_service),
):
    invitation = service.revoke_invitation(token)
    if invitation is None:
        raise NotFoundError("Invitation not found")
    return InvitationResponse.from_entity(invitation)


@router.delete("/{token}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invitation(
    token: str = Path(..., description="Invitation token"),
    service: InvitationService = Depends(get_invitation_service),
):
    service.delete_invitation(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
