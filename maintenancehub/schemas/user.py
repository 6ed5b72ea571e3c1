"""
schemas/user.py
---------------
Pydantic models for registration, login, user management and responses.

Security note:
  - hashed_password is NEVER included in any response schema.
  - Passwords require min 8 chars; enforce stronger rules in production.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from maintenancehub.models.user import UserRole


class UserCreate(BaseModel):
    """Used by admins to add a new user to a company (consumes a seat)."""
    email: EmailStr
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    first_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)
    role: UserRole = UserRole.tech
    company_id: Optional[str] = Field(
        None, description="Target company; platform admins only, defaults to your own"
    )


class UserAssignment(BaseModel):
    """Move a user to a company and/or change their role."""
    role: UserRole
    company_id: Optional[str] = Field(
        None, description="Target company; platform admins only, defaults to your own"
    )


class UserRegister(BaseModel):
    """
    Self-registration. With an invitation token the account joins the
    inviting company; without one it is created unaffiliated.
    """
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)
    invitation_token: Optional[str] = None


class UserRead(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    platform_role: str
    company_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserRead
