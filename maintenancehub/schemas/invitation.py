"""
schemas/invitation.py
---------------------
Pydantic models for invitations.

The invitation token is returned only to the inviter at creation time (it
is what goes into the email link); listings omit it.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from maintenancehub.models.user import UserRole


class InvitationCreate(BaseModel):
    email: EmailStr
    role: UserRole = UserRole.tech
    company_id: Optional[str] = Field(
        None, description="Target company; platform admins only, defaults to your own"
    )


class InvitationBatchEntry(BaseModel):
    email: EmailStr
    role: UserRole = UserRole.tech


class InvitationBatchCreate(BaseModel):
    invitations: List[InvitationBatchEntry] = Field(..., min_length=1, max_length=100)
    company_id: Optional[str] = None


class InvitationRead(BaseModel):
    id: str
    company_id: str
    email: str
    role: str
    status: str
    expires_at: datetime
    invited_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class InvitationCreated(InvitationRead):
    token: str


class ExpireStaleResponse(BaseModel):
    expired: int
