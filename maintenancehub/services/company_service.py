"""
services/company_service.py
---------------------------
Business logic for companies (tenants): onboarding, seat ceilings,
onboarding stage and the cascade delete.

Seat ceilings are plain field updates. Lowering them below current usage is
allowed: the company is then over limit, available seats clamp to zero and
nobody is evicted.

Service layer is responsible for:
  - Constructing queries
  - Enforcing business rules
  - Returning domain objects (ORM models) to the route layer
  - Never returning HTTP responses (that's the route's job)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from maintenancehub.core.config import settings
from maintenancehub.core.errors import CompanyNotFound, InvalidOperation, UserNotFound
from maintenancehub.core.logging import get_logger
from maintenancehub.db.base import utcnow
from maintenancehub.db.session import IMMEDIATE_TRANSACTION
from maintenancehub.models.company import Company, OnboardingStage, PackageType
from maintenancehub.models.invitation import Invitation
from maintenancehub.models.user import User, UserRole
from maintenancehub.models.workspace import (
    Equipment,
    RcaRecord,
    TrainingProgress,
    TroubleshootingSession,
    WorkOrder,
)
from maintenancehub.services.seat_mutators import SessionFactory, add_user_to_company

logger = get_logger(__name__)


def has_active_access(company: Company, now: Optional[datetime] = None) -> bool:
    return company.has_active_access(now or utcnow())


def advance_onboarding(company: Company, stage) -> bool:
    """
    Move the company forward to `stage`. Moving backwards is a no-op.
    Returns True when the stage changed.
    """
    target = OnboardingStage(stage)
    current = OnboardingStage(company.onboarding_stage)
    if target.rank <= current.rank:
        return False
    company.onboarding_stage = target.value
    logger.info(
        "Onboarding advanced",
        company_id=company.id,
        from_stage=current.value,
        to_stage=target.value,
    )
    return True


# ── Cascade delete plan ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class DeletionStep:
    """
    One step of the company deletion plan.

    `scope` says how rows of `model` belong to the company:
      - "company": model.company_id == company id
      - "user":    model.user_id is a user of the company
      - "detach":  rows of *other* companies whose `column` points at a user
                   of the company get that column set to NULL
    """

    name: str
    model: type
    scope: str
    column: str = "company_id"


# Children before parents. Every table holding a company_id, or a reference
# to a user of the company, must appear here.
COMPANY_DELETION_PLAN: Tuple[DeletionStep, ...] = (
    DeletionStep("training_progress", TrainingProgress, "user", column="user_id"),
    DeletionStep("troubleshooting_sessions", TroubleshootingSession, "company"),
    DeletionStep("rca_records", RcaRecord, "company"),
    DeletionStep("work_orders", WorkOrder, "company"),
    DeletionStep("equipment", Equipment, "company"),
    DeletionStep("foreign_invitation_inviters", Invitation, "detach", column="invited_by"),
    DeletionStep("invitations", Invitation, "company"),
    DeletionStep("users", User, "company"),
)


def _step_statement(step: DeletionStep, company_id: str):
    member_ids = select(User.id).where(User.company_id == company_id)
    column = getattr(step.model, step.column)
    if step.scope == "company":
        return delete(step.model).where(column == company_id)
    if step.scope == "user":
        return delete(step.model).where(column.in_(member_ids))
    if step.scope == "detach":
        return (
            update(step.model)
            .where(column.in_(member_ids), step.model.company_id != company_id)
            .values({step.column: None})
        )
    raise ValueError(f"Unknown deletion scope '{step.scope}'")


class CompanyService:

    @staticmethod
    async def get_company(db: AsyncSession, company_id: str) -> Company:
        company = await db.get(Company, company_id)
        if company is None:
            raise CompanyNotFound(company_id)
        return company

    @staticmethod
    async def create_company(
        session_factory: SessionFactory,
        name: str,
        owner_id: str,
    ) -> Tuple[Company, User]:
        """
        Onboarding: create a demo company and make `owner_id` its admin.

        The owner must not belong to a company yet. The owner is attached
        through the seat mutator with bypass, since the new company has
        nothing to protect.
        """
        now = utcnow()
        async with session_factory() as db:
            async with db.begin():
                owner = await db.get(User, owner_id)
                if owner is None:
                    raise UserNotFound(owner_id)
                if owner.company_id is not None:
                    raise InvalidOperation("You already belong to a company")

                company = Company(
                    name=name.strip(),
                    package_type=PackageType.demo.value,
                    demo_expires_at=now + timedelta(days=settings.DEMO_TRIAL_DAYS),
                    onboarding_stage=OnboardingStage.company_created.value,
                    purchased_manager_seats=settings.DEMO_MANAGER_SEATS,
                    purchased_tech_seats=settings.DEMO_TECH_SEATS,
                )
                db.add(company)
                await db.flush()
                company_id = company.id

        try:
            owner = await add_user_to_company(
                session_factory,
                company_id,
                UserRole.admin,
                user_id=owner_id,
                bypass_seat_check=True,
            )
        except Exception:
            # Owner could not be attached; do not leave an ownerless company.
            async with session_factory() as db:
                async with db.begin():
                    await db.execute(delete(Company).where(Company.id == company_id))
            raise

        logger.info(
            "Company created",
            company_id=company_id,
            name=company.name,
            owner_id=owner_id,
            demo_expires_at=company.demo_expires_at.isoformat(),
        )
        return company, owner

    @staticmethod
    async def update_purchased_seats(
        db: AsyncSession,
        company_id: str,
        manager_seats: Optional[int] = None,
        tech_seats: Optional[int] = None,
        source: str = "settings",
    ) -> Company:
        """Set seat ceilings. No availability check: shrinking below usage is allowed."""
        for value in (manager_seats, tech_seats):
            if value is not None and value < 0:
                raise InvalidOperation("Seat counts cannot be negative")

        company = await CompanyService.get_company(db, company_id)
        previous = {
            "manager": company.purchased_manager_seats,
            "tech": company.purchased_tech_seats,
        }
        if manager_seats is not None:
            company.purchased_manager_seats = manager_seats
        if tech_seats is not None:
            company.purchased_tech_seats = tech_seats
        await db.flush()

        logger.info(
            "Purchased seats updated",
            company_id=company_id,
            source=source,
            previous=previous,
            manager=company.purchased_manager_seats,
            tech=company.purchased_tech_seats,
        )
        return company

    @staticmethod
    async def set_licenses(
        db: AsyncSession,
        company_id: str,
        manager_seats: int,
        tech_seats: int,
        actor_id: str,
    ) -> Company:
        """Platform-admin override of both seat ceilings."""
        company = await CompanyService.update_purchased_seats(
            db,
            company_id,
            manager_seats=manager_seats,
            tech_seats=tech_seats,
            source="platform_admin",
        )
        logger.info(
            "License override applied",
            company_id=company_id,
            actor_id=actor_id,
            manager=manager_seats,
            tech=tech_seats,
        )
        return company

    @staticmethod
    async def delete_company(
        session_factory: SessionFactory,
        company_id: str,
        actor: User,
    ) -> Dict[str, int]:
        """
        Delete a company and everything it owns, in one transaction.
        Returns the number of rows affected per plan step.
        """
        if actor.company_id == company_id:
            raise InvalidOperation("You cannot delete your own company")

        affected: Dict[str, int] = {}
        async with session_factory() as db:
            async with db.begin():
                await db.connection(execution_options=IMMEDIATE_TRANSACTION)
                company = (
                    await db.execute(
                        select(Company).where(Company.id == company_id).with_for_update()
                    )
                ).scalar_one_or_none()
                if company is None:
                    raise CompanyNotFound(company_id)

                for step in COMPANY_DELETION_PLAN:
                    result = await db.execute(
                        _step_statement(step, company_id),
                        execution_options={"synchronize_session": False},
                    )
                    affected[step.name] = result.rowcount
                await db.execute(delete(Company).where(Company.id == company_id))

        logger.info(
            "Company deleted",
            company_id=company_id,
            name=company.name,
            actor_id=actor.id,
            affected=affected,
        )
        return affected
