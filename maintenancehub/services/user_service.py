"""
services/user_service.py
------------------------
Business logic for user registration, authentication, listing and removal.

Attaching a user to a company consumes a seat and therefore goes through
services/seat_mutators.py. This module only creates unaffiliated accounts,
reads users and deletes them (deleting frees a seat, which can never
oversell).
"""

from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from maintenancehub.core.errors import (
    EmailAlreadyRegistered,
    InvalidOperation,
    Unauthorized,
    UserNotFound,
)
from maintenancehub.core.logging import get_logger
from maintenancehub.core.security import hash_password, verify_password
from maintenancehub.models.invitation import Invitation
from maintenancehub.models.user import User, UserRole
from maintenancehub.models.workspace import (
    RcaRecord,
    TrainingProgress,
    TroubleshootingSession,
    WorkOrder,
)

logger = get_logger(__name__)

# Columns that reference a user and are cleared when that user is deleted.
USER_REFERENCES = (
    (Invitation, "invited_by"),
    (WorkOrder, "assigned_to_id"),
    (RcaRecord, "created_by_id"),
    (TroubleshootingSession, "created_by_id"),
)


class UserService:

    @staticmethod
    async def register_user(
        db: AsyncSession,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        """
        Self-registration without an invitation: the account has no company
        and holds no seat until it creates or joins one.
        """
        user = User(
            email=email.lower(),
            hashed_password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            company_id=None,
        )
        db.add(user)
        try:
            await db.flush()
            await db.refresh(user)
            logger.info("User registered", user_id=user.id)
            return user
        except IntegrityError:
            await db.rollback()
            raise EmailAlreadyRegistered(f"Email '{email}' is already registered")

    @staticmethod
    async def authenticate(
        db: AsyncSession, email: str, password: str
    ) -> User | None:
        """
        Verify credentials and return the User if valid, else None.
        Email lookup is case-insensitive.
        """
        result = await db.execute(
            select(User).where(User.email == email.lower())
        )
        user = result.scalar_one_or_none()
        if user is None or not verify_password(password, user.hashed_password):
            return None
        return user

    @staticmethod
    async def get_user(db: AsyncSession, user_id: str) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    @staticmethod
    async def list_users_in_company(
        db: AsyncSession, company_id: str
    ) -> List[User]:
        result = await db.execute(
            select(User).where(User.company_id == company_id).order_by(User.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def delete_user(db: AsyncSession, actor: User, user_id: str) -> None:
        """
        Delete a user. Company admins and managers may delete members of
        their own company; managers may not delete admins. Platform admins
        may delete anyone but themselves.
        """
        if actor.id == user_id:
            raise InvalidOperation("You cannot delete your own account")

        user = await UserService.get_user(db, user_id)
        if not actor.is_platform_admin:
            if user.company_id is None or user.company_id != actor.company_id:
                raise UserNotFound(user_id)
            if actor.role == UserRole.manager.value and user.role == UserRole.admin.value:
                raise Unauthorized("Managers cannot remove admins")

        for model, column in USER_REFERENCES:
            await db.execute(
                update(model)
                .where(getattr(model, column) == user_id)
                .values({column: None})
            )
        await db.execute(delete(TrainingProgress).where(TrainingProgress.user_id == user_id))
        await db.delete(user)
        await db.flush()

        logger.info(
            "User deleted",
            user_id=user_id,
            company_id=user.company_id,
            role=user.role,
            actor_id=actor.id,
        )
