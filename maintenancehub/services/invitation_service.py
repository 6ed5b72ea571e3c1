"""
services/invitation_service.py
------------------------------
Reads and seat-freeing writes on invitations.

Creating and accepting invitations consumes seats and lives in
services/seat_mutators.py. Cancelling (delete) and expiring only release
pending seats, so they run on the request session without the company lock.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from maintenancehub.core.errors import InvitationNotFound
from maintenancehub.core.logging import get_logger
from maintenancehub.db.base import utcnow
from maintenancehub.models.invitation import Invitation, InvitationStatus

logger = get_logger(__name__)


class InvitationService:

    @staticmethod
    async def list_invitations(
        db: AsyncSession, company_id: str, status: Optional[str] = None
    ) -> List[Invitation]:
        query = select(Invitation).where(Invitation.company_id == company_id)
        if status is not None:
            query = query.where(Invitation.status == status)
        result = await db.execute(query.order_by(Invitation.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def cancel_invitation(
        db: AsyncSession, invitation_id: str, company_id: Optional[str]
    ) -> None:
        """
        Delete an invitation, freeing its pending seat.
        company_id scopes the lookup; None (platform admin) means any company.
        """
        query = select(Invitation).where(Invitation.id == invitation_id)
        if company_id is not None:
            query = query.where(Invitation.company_id == company_id)
        invitation = (await db.execute(query)).scalar_one_or_none()
        if invitation is None:
            raise InvitationNotFound(f"Invitation '{invitation_id}' not found")

        await db.delete(invitation)
        await db.flush()
        logger.info(
            "Invitation cancelled",
            invitation_id=invitation_id,
            company_id=invitation.company_id,
            email=invitation.email,
        )

    @staticmethod
    async def expire_stale(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """Mark every pending invitation past its expiry as expired."""
        now = now or utcnow()
        result = await db.execute(
            update(Invitation)
            .where(
                Invitation.status == InvitationStatus.pending.value,
                Invitation.expires_at <= now,
            )
            .values(status=InvitationStatus.expired.value)
            .execution_options(synchronize_session=False)
        )
        logger.info("Stale invitations expired", count=result.rowcount)
        return result.rowcount
