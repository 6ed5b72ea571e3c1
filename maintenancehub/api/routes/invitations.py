"""
api/routes/invitations.py
-------------------------
Invitation endpoints. Creating an invitation reserves a seat of the invited
role's class, so creation goes through the seat-checked mutators.

POST   /invitations               — Invite one person (seat-checked).
POST   /invitations/batch         — Invite several people, all-or-nothing.
GET    /invitations               — List the company's invitations.
DELETE /invitations/{id}          — Cancel an invitation (frees its seat).
POST   /invitations/expire-stale  — Platform admin: sweep expired invitations.
"""

from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintenancehub.db.session import get_db, get_session_factory
from maintenancehub.dependencies import (
    require_api_scope,
    require_manager_or_admin,
    require_payment_in_good_standing,
    require_platform_admin,
    resolve_company_id,
)
from maintenancehub.models.invitation import InvitationStatus
from maintenancehub.models.user import User
from maintenancehub.schemas.invitation import (
    ExpireStaleResponse,
    InvitationBatchCreate,
    InvitationCreate,
    InvitationCreated,
    InvitationRead,
)
from maintenancehub.services.invitation_service import InvitationService
from maintenancehub.services.seat_mutators import (
    InvitationRequest,
    bypass_for,
    create_invitation,
    create_invitations,
)

router = APIRouter(
    prefix="/invitations",
    tags=["Invitations"],
    dependencies=[Depends(require_api_scope("users"))],
)


@router.post(
    "",
    response_model=InvitationCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Invite a user (seat-checked)",
    dependencies=[Depends(require_payment_in_good_standing)],
)
async def invite_user(
    body: InvitationCreate,
    inviter: Annotated[User, Depends(require_manager_or_admin)],
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> InvitationCreated:
    company_id = resolve_company_id(inviter, body.company_id)
    invitation = await create_invitation(
        session_factory,
        company_id,
        body.email,
        body.role,
        invited_by=inviter.id,
        bypass_seat_check=bypass_for(inviter),
    )
    return InvitationCreated.model_validate(invitation)


@router.post(
    "/batch",
    response_model=List[InvitationCreated],
    status_code=status.HTTP_201_CREATED,
    summary="Invite several users at once (seat-checked, all-or-nothing)",
    dependencies=[Depends(require_payment_in_good_standing)],
)
async def invite_users(
    body: InvitationBatchCreate,
    inviter: Annotated[User, Depends(require_manager_or_admin)],
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> List[InvitationCreated]:
    company_id = resolve_company_id(inviter, body.company_id)
    invitations = await create_invitations(
        session_factory,
        company_id,
        [InvitationRequest(email=e.email, role=e.role.value) for e in body.invitations],
        invited_by=inviter.id,
        bypass_seat_check=bypass_for(inviter),
    )
    return [InvitationCreated.model_validate(i) for i in invitations]


@router.get(
    "",
    response_model=List[InvitationRead],
    summary="List invitations of a company",
)
async def list_invitations(
    current_user: Annotated[User, Depends(require_manager_or_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Optional[str] = Query(None),
    invitation_status: Optional[InvitationStatus] = Query(None, alias="status"),
) -> List[InvitationRead]:
    target = resolve_company_id(current_user, company_id)
    invitations = await InvitationService.list_invitations(
        db, target, invitation_status.value if invitation_status else None
    )
    return [InvitationRead.model_validate(i) for i in invitations]


@router.delete(
    "/{invitation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel an invitation",
)
async def cancel_invitation(
    invitation_id: str,
    current_user: Annotated[User, Depends(require_manager_or_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> None:
    scope = None if current_user.is_platform_admin else current_user.company_id
    await InvitationService.cancel_invitation(db, invitation_id, scope)


@router.post(
    "/expire-stale",
    response_model=ExpireStaleResponse,
    summary="Platform admin: mark expired pending invitations as expired",
)
async def expire_stale_invitations(
    _admin: Annotated[User, Depends(require_platform_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ExpireStaleResponse:
    expired = await InvitationService.expire_stale(db)
    return ExpireStaleResponse(expired=expired)
