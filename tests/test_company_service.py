# tests/test_company_service.py
"""
Company service tests
Tests: onboarding, seat ceilings (soft over-limit), onboarding stage,
cascade delete
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from maintenancehub.core.errors import (
    CompanyNotFound,
    InvalidOperation,
    SeatsExhausted,
)
from maintenancehub.core.config import settings
from maintenancehub.db.base import as_utc, utcnow
from maintenancehub.models import (
    Company,
    Equipment,
    Invitation,
    RcaRecord,
    TrainingProgress,
    TroubleshootingSession,
    User,
    WorkOrder,
)
from maintenancehub.services.company_service import (
    COMPANY_DELETION_PLAN,
    CompanyService,
    advance_onboarding,
    has_active_access,
)
from maintenancehub.services.seat_accounting import SeatAccountingService
from maintenancehub.services.seat_mutators import NewUser, add_user_to_company


class TestCreateCompany:
    """Onboarding"""

    async def test_owner_becomes_admin_of_demo_company(self, session_factory, make_user):
        owner = await make_user(role="tech")

        company, member = await CompanyService.create_company(session_factory, "  Acme  ", owner.id)

        assert company.name == "Acme"
        assert company.package_type == "demo"
        assert company.onboarding_stage == "company_created"
        assert company.purchased_manager_seats == settings.DEMO_MANAGER_SEATS
        assert company.purchased_tech_seats == settings.DEMO_TECH_SEATS
        trial_left = as_utc(company.demo_expires_at) - utcnow()
        assert timedelta(days=settings.DEMO_TRIAL_DAYS - 1) < trial_left
        assert member.company_id == company.id
        assert member.role == "admin"
        assert has_active_access(company)

    async def test_owner_already_in_a_company(self, session_factory, make_company, make_user):
        existing = await make_company()
        owner = await make_user(company_id=existing.id, role="admin")

        with pytest.raises(InvalidOperation):
            await CompanyService.create_company(session_factory, "Second", owner.id)

        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(Company))
        assert count == 1


class TestSeatCeilings:
    """Purchased seats are plain updates; usage may exceed them"""

    async def test_shrinking_below_usage_keeps_everyone(self, session_factory, make_company, make_user):
        company = await make_company(manager_seats=3, tech_seats=0)
        for _ in range(3):
            await make_user(company_id=company.id, role="manager")

        async with session_factory() as session:
            await CompanyService.update_purchased_seats(session, company.id, manager_seats=1)
            await session.commit()
            breakdown = await SeatAccountingService.get_breakdown(session, company.id)

        assert breakdown.purchased.manager == 1
        assert breakdown.used.manager == 3
        assert breakdown.available.manager == 0

        with pytest.raises(SeatsExhausted):
            await add_user_to_company(
                session_factory, company.id, "manager", new_user=NewUser(email="more@example.com")
            )

    async def test_negative_seats_rejected(self, db_session, make_company):
        company = await make_company()

        with pytest.raises(InvalidOperation):
            await CompanyService.update_purchased_seats(db_session, company.id, tech_seats=-1)

    async def test_set_licenses_overrides_both(self, db_session, make_company, make_user):
        company = await make_company(manager_seats=1, tech_seats=1)
        admin = await make_user(platform_admin=True)

        updated = await CompanyService.set_licenses(db_session, company.id, 4, 9, actor_id=admin.id)

        assert (updated.purchased_manager_seats, updated.purchased_tech_seats) == (4, 9)

    async def test_unknown_company(self, db_session):
        with pytest.raises(CompanyNotFound):
            await CompanyService.update_purchased_seats(db_session, "missing", manager_seats=1)


class TestOnboardingStage:
    """The stage only moves forward"""

    def test_advance_and_no_regression(self):
        company = Company(id="c1", name="Acme", onboarding_stage="company_created")

        assert advance_onboarding(company, "plan_selected")
        assert company.onboarding_stage == "plan_selected"

        assert not advance_onboarding(company, "company_created")
        assert company.onboarding_stage == "plan_selected"

        assert not advance_onboarding(company, "plan_selected")


class TestActiveAccess:
    """Subscription or running trial"""

    @pytest.mark.parametrize(
        "status, package, trial_days, expected",
        [
            ("active", "full_access", None, True),
            ("trialing", "operations", None, True),
            ("past_due", "full_access", None, False),
            ("canceled", "demo", None, False),
            (None, "demo", 5, True),
            (None, "demo", -5, False),
            (None, "full_access", 5, False),
        ],
    )
    def test_matrix(self, status, package, trial_days, expected):
        company = Company(
            id="c1",
            name="Acme",
            subscription_status=status,
            package_type=package,
            demo_expires_at=(utcnow() + timedelta(days=trial_days)) if trial_days else None,
        )
        assert has_active_access(company) is expected


class TestDeleteCompany:
    """Cascade delete"""

    async def _populate(self, session_factory, company_id, users):
        async with session_factory() as session:
            equipment = Equipment(company_id=company_id, name="Press 4")
            session.add(equipment)
            await session.flush()
            session.add_all(
                [
                    WorkOrder(
                        company_id=company_id,
                        title="Replace seal",
                        equipment_id=equipment.id,
                        assigned_to_id=users[0].id,
                    ),
                    RcaRecord(
                        company_id=company_id,
                        problem_statement="Seal failure",
                        created_by_id=users[0].id,
                    ),
                    TroubleshootingSession(
                        company_id=company_id,
                        equipment_id=equipment.id,
                        created_by_id=users[1].id,
                    ),
                    TrainingProgress(user_id=users[1].id, module_key="hydraulics", score=80),
                ]
            )
            await session.commit()

    async def test_cascade_removes_everything_owned(
        self, session_factory, make_company, make_user, make_invitation
    ):
        doomed = await make_company(name="Doomed")
        survivor = await make_company(name="Survivor")
        platform_admin = await make_user(platform_admin=True, company_id=survivor.id, role="admin")

        members = [
            await make_user(company_id=doomed.id, role="admin"),
            await make_user(company_id=doomed.id, role="tech"),
        ]
        await self._populate(session_factory, doomed.id, members)
        await make_invitation(doomed.id)
        await self._populate(session_factory, survivor.id, [platform_admin, platform_admin])

        # Invitation in another company sent by a member of the doomed company.
        async with session_factory() as session:
            foreign = Invitation(
                company_id=survivor.id,
                email="guest@example.com",
                role="tech",
                status="pending",
                token="foreign-token",
                expires_at=utcnow() + timedelta(days=7),
                invited_by=members[0].id,
            )
            session.add(foreign)
            await session.commit()

        affected = await CompanyService.delete_company(session_factory, doomed.id, platform_admin)

        assert affected["users"] == 2
        assert affected["foreign_invitation_inviters"] == 1

        async with session_factory() as session:
            assert await session.get(Company, doomed.id) is None
            for model in (Equipment, WorkOrder, RcaRecord, TroubleshootingSession, Invitation, User):
                remaining = await session.scalar(
                    select(func.count()).select_from(model).where(model.company_id == doomed.id)
                )
                assert remaining == 0, model.__tablename__
            orphan_progress = await session.scalar(
                select(func.count())
                .select_from(TrainingProgress)
                .where(TrainingProgress.user_id.in_([m.id for m in members]))
            )
            assert orphan_progress == 0

            kept = await session.get(Invitation, foreign.id)
            assert kept is not None
            assert kept.invited_by is None
            survivor_orders = await session.scalar(
                select(func.count()).select_from(WorkOrder).where(WorkOrder.company_id == survivor.id)
            )
            assert survivor_orders == 1

    async def test_platform_admin_cannot_delete_own_company(self, session_factory, make_company, make_user):
        company = await make_company()
        admin = await make_user(platform_admin=True, company_id=company.id, role="admin")

        with pytest.raises(InvalidOperation):
            await CompanyService.delete_company(session_factory, company.id, admin)

    async def test_unknown_company(self, session_factory, make_user):
        admin = await make_user(platform_admin=True)

        with pytest.raises(CompanyNotFound):
            await CompanyService.delete_company(session_factory, "missing", admin)

    def test_plan_deletes_users_last(self):
        names = [step.name for step in COMPANY_DELETION_PLAN]
        assert names[-1] == "users"
        assert names.index("invitations") < names.index("users")
        assert names.index("work_orders") < names.index("equipment")
