"""
services/seat_accounting.py
---------------------------
Seat math for per-role-class licensing.

Two seat classes exist:
  - manager-class: roles {admin, manager}
  - tech-class:    roles {tech}

For each class X of a company:

    available.X = max(0, purchased.X - used.X - pending.X)

where used counts User rows attached to the company and pending counts
invitations still in the 'pending' state. The breakdown is derived on every
call and never stored.

compute_seat_breakdown and check_seat_capacity do no I/O. The atomic
mutators call them inside their transaction on rows they re-read there;
SeatAccountingService.get_breakdown is the read-only loader used by display
endpoints.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from maintenancehub.core.config import settings
from maintenancehub.core.errors import CompanyNotFound, SeatsExhausted
from maintenancehub.core.logging import get_logger
from maintenancehub.db.base import as_utc, utcnow
from maintenancehub.models.company import Company
from maintenancehub.models.invitation import Invitation, InvitationStatus
from maintenancehub.models.user import User, UserRole

logger = get_logger(__name__)


class RoleClass(str, PyEnum):
    manager = "manager"
    tech = "tech"


_ROLE_CLASSES: Dict[str, RoleClass] = {
    UserRole.admin.value: RoleClass.manager,
    UserRole.manager.value: RoleClass.manager,
    UserRole.tech.value: RoleClass.tech,
}


def classify_role(role: Any) -> RoleClass:
    """
    Map a per-company role to its seat class.

    Unknown roles count as tech-class. That is an input-contract violation
    upstream, so it is logged rather than silently absorbed.
    """
    value = role.value if isinstance(role, PyEnum) else role
    role_class = _ROLE_CLASSES.get(value)
    if role_class is None:
        logger.warning("Unknown role classified as tech seat", role=value)
        return RoleClass.tech
    return role_class


@dataclass(frozen=True)
class SeatCounts:
    manager: int = 0
    tech: int = 0

    def for_class(self, role_class: Any) -> int:
        return getattr(self, RoleClass(role_class).value)

    def as_dict(self) -> Dict[str, int]:
        return {"manager": self.manager, "tech": self.tech}


@dataclass(frozen=True)
class SeatBreakdown:
    purchased: SeatCounts
    used: SeatCounts
    pending: SeatCounts

    @property
    def available(self) -> SeatCounts:
        return SeatCounts(
            manager=max(0, self.purchased.manager - self.used.manager - self.pending.manager),
            tech=max(0, self.purchased.tech - self.used.tech - self.pending.tech),
        )

    def is_over_limit(self, role_class: Any) -> bool:
        occupied = self.used.for_class(role_class) + self.pending.for_class(role_class)
        return occupied > self.purchased.for_class(role_class)

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            "purchased": self.purchased.as_dict(),
            "used": self.used.as_dict(),
            "pending": self.pending.as_dict(),
            "available": self.available.as_dict(),
        }


def is_invitation_live(invitation: Invitation, as_of: Optional[datetime]) -> bool:
    """A pending invitation is live until its expiry passes (when as_of is given)."""
    if invitation.status != InvitationStatus.pending.value:
        return False
    if as_of is None:
        return True
    return as_utc(invitation.expires_at) > as_utc(as_of)


def compute_seat_breakdown(
    company: Company,
    users: Iterable[User],
    invitations: Iterable[Invitation],
    as_of: Optional[datetime] = None,
) -> SeatBreakdown:
    """
    Derive the seat breakdown of a company from its rows.

    Rows belonging to other companies are ignored, so callers may pass a
    wider result set. With as_of set, pending invitations whose expires_at
    is at or before as_of no longer hold a seat.
    """
    used = {RoleClass.manager: 0, RoleClass.tech: 0}
    for user in users:
        if user.company_id == company.id:
            used[classify_role(user.role)] += 1

    pending = {RoleClass.manager: 0, RoleClass.tech: 0}
    for invitation in invitations:
        if invitation.company_id == company.id and is_invitation_live(invitation, as_of):
            pending[classify_role(invitation.role)] += 1

    return SeatBreakdown(
        purchased=SeatCounts(
            manager=company.purchased_manager_seats or 0,
            tech=company.purchased_tech_seats or 0,
        ),
        used=SeatCounts(manager=used[RoleClass.manager], tech=used[RoleClass.tech]),
        pending=SeatCounts(
            manager=pending[RoleClass.manager], tech=pending[RoleClass.tech]
        ),
    )


def check_seat_capacity(
    breakdown: SeatBreakdown, role_class: Any, requested: int = 1
) -> None:
    """Raise SeatsExhausted unless `requested` seats of the class are free."""
    role_class = RoleClass(role_class)
    if requested <= 0:
        return
    if breakdown.available.for_class(role_class) < requested:
        raise SeatsExhausted(role_class.value, requested, breakdown)


def lazy_expiry_cutoff(now: Optional[datetime] = None) -> Optional[datetime]:
    """The as_of to pass to compute_seat_breakdown, honouring the feature flag."""
    if not settings.INVITATION_LAZY_EXPIRY:
        return None
    return now or utcnow()


class SeatAccountingService:

    @staticmethod
    async def get_breakdown(db: AsyncSession, company_id: str) -> SeatBreakdown:
        """
        Load a company's rows and return its current breakdown.
        Display only: the result may be stale by the time it is rendered.
        """
        company = await db.get(Company, company_id)
        if company is None:
            raise CompanyNotFound(company_id)

        users = await db.execute(select(User).where(User.company_id == company_id))
        invitations = await db.execute(
            select(Invitation).where(
                Invitation.company_id == company_id,
                Invitation.status == InvitationStatus.pending.value,
            )
        )
        return compute_seat_breakdown(
            company,
            users.scalars().all(),
            invitations.scalars().all(),
            as_of=lazy_expiry_cutoff(),
        )
