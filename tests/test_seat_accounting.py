# tests/test_seat_accounting.py
"""
Seat accounting engine tests
Tests: role classification, breakdown math, capacity checks, lazy expiry
"""

from datetime import timedelta

import pytest

from maintenancehub.core.config import settings
from maintenancehub.core.errors import CompanyNotFound, SeatsExhausted
from maintenancehub.db.base import utcnow
from maintenancehub.models import Company, Invitation, User
from maintenancehub.services.seat_accounting import (
    RoleClass,
    SeatAccountingService,
    check_seat_capacity,
    classify_role,
    compute_seat_breakdown,
    lazy_expiry_cutoff,
)


def _company(manager=1, tech=2, company_id="c1"):
    return Company(
        id=company_id,
        name="Acme",
        purchased_manager_seats=manager,
        purchased_tech_seats=tech,
    )


def _user(role, company_id="c1"):
    return User(email=f"{role}-{id(object())}@example.com", role=role, company_id=company_id)


def _invite(role, company_id="c1", status="pending", expires_in=timedelta(days=7)):
    return Invitation(
        company_id=company_id,
        email="someone@example.com",
        role=role,
        status=status,
        token="t",
        expires_at=utcnow() + expires_in,
    )


class TestClassifyRole:
    """The single source of truth for the seat-class grouping"""

    @pytest.mark.parametrize(
        "role, expected",
        [
            ("admin", RoleClass.manager),
            ("manager", RoleClass.manager),
            ("tech", RoleClass.tech),
        ],
    )
    def test_known_roles(self, role, expected):
        assert classify_role(role) == expected

    def test_unknown_role_falls_back_to_tech(self):
        assert classify_role("supervisor") == RoleClass.tech


class TestComputeSeatBreakdown:
    """Breakdown math"""

    def test_example_counts(self):
        company = _company(manager=2, tech=3)
        users = [_user("admin"), _user("tech")]
        invitations = [_invite("manager"), _invite("tech")]

        breakdown = compute_seat_breakdown(company, users, invitations)

        assert breakdown.used.as_dict() == {"manager": 1, "tech": 1}
        assert breakdown.pending.as_dict() == {"manager": 1, "tech": 1}
        assert breakdown.available.as_dict() == {"manager": 0, "tech": 1}

    def test_rows_of_other_companies_are_ignored(self):
        company = _company(manager=1, tech=1)
        users = [_user("manager", company_id="other"), _user("tech", company_id=None)]
        invitations = [_invite("tech", company_id="other")]

        breakdown = compute_seat_breakdown(company, users, invitations)

        assert breakdown.available.as_dict() == {"manager": 1, "tech": 1}

    def test_only_pending_invitations_hold_seats(self):
        company = _company(manager=0, tech=3)
        invitations = [
            _invite("tech", status="accepted"),
            _invite("tech", status="expired"),
            _invite("tech", status="pending"),
        ]

        breakdown = compute_seat_breakdown(company, [], invitations)

        assert breakdown.pending.tech == 1
        assert breakdown.available.tech == 2

    def test_available_clamps_to_zero_when_over_limit(self):
        company = _company(manager=1, tech=0)
        users = [_user("admin"), _user("manager"), _user("tech")]

        breakdown = compute_seat_breakdown(company, users, [])

        assert breakdown.available.as_dict() == {"manager": 0, "tech": 0}
        assert breakdown.is_over_limit(RoleClass.manager)
        assert breakdown.is_over_limit(RoleClass.tech)

    def test_available_formula_holds(self):
        company = _company(manager=5, tech=4)
        users = [_user("admin"), _user("tech"), _user("tech")]
        invitations = [_invite("manager"), _invite("tech"), _invite("tech"), _invite("tech")]

        breakdown = compute_seat_breakdown(company, users, invitations)

        for cls in RoleClass:
            expected = max(
                0,
                breakdown.purchased.for_class(cls)
                - breakdown.used.for_class(cls)
                - breakdown.pending.for_class(cls),
            )
            assert breakdown.available.for_class(cls) == expected

    def test_lazy_expiry_excludes_expired_pending_invitations(self):
        company = _company(manager=1, tech=1)
        invitations = [_invite("tech", expires_in=timedelta(hours=-1))]

        without_cutoff = compute_seat_breakdown(company, [], invitations)
        with_cutoff = compute_seat_breakdown(company, [], invitations, as_of=utcnow())

        assert without_cutoff.available.tech == 0
        assert with_cutoff.available.tech == 1

    def test_lazy_expiry_cutoff_respects_flag(self, monkeypatch):
        monkeypatch.setattr(settings, "INVITATION_LAZY_EXPIRY", False)
        assert lazy_expiry_cutoff() is None

        monkeypatch.setattr(settings, "INVITATION_LAZY_EXPIRY", True)
        assert lazy_expiry_cutoff() is not None


class TestCheckSeatCapacity:
    """Capacity checks"""

    def test_passes_when_seats_available(self):
        breakdown = compute_seat_breakdown(_company(manager=2), [], [])
        check_seat_capacity(breakdown, RoleClass.manager, requested=2)

    def test_raises_with_breakdown_when_exhausted(self):
        breakdown = compute_seat_breakdown(_company(manager=1), [_user("admin")], [])

        with pytest.raises(SeatsExhausted) as exc_info:
            check_seat_capacity(breakdown, "manager")

        payload = exc_info.value.to_payload()
        assert payload["code"] == "seats_exhausted"
        assert payload["role_class"] == "manager"
        assert payload["requested"] == 1
        assert payload["breakdown"]["available"]["manager"] == 0
        assert "0 of 1" in payload["detail"]

    def test_batch_request_larger_than_available(self):
        breakdown = compute_seat_breakdown(_company(tech=2), [], [])

        with pytest.raises(SeatsExhausted):
            check_seat_capacity(breakdown, RoleClass.tech, requested=3)


class TestSeatAccountingService:
    """Read-only loader"""

    async def test_get_breakdown_from_database(self, db_session, make_company, make_user, make_invitation):
        company = await make_company(manager_seats=2, tech_seats=2)
        await make_user(company_id=company.id, role="admin")
        await make_invitation(company.id, role="tech")
        await make_invitation(company.id, role="tech", expires_in=timedelta(days=-1))

        breakdown = await SeatAccountingService.get_breakdown(db_session, company.id)

        assert breakdown.used.as_dict() == {"manager": 1, "tech": 0}
        assert breakdown.pending.as_dict() == {"manager": 0, "tech": 1}
        assert breakdown.available.as_dict() == {"manager": 1, "tech": 1}

    async def test_unknown_company(self, db_session):
        with pytest.raises(CompanyNotFound):
            await SeatAccountingService.get_breakdown(db_session, "missing")
