# tests/test_billing_webhook.py
"""
Billing webhook tests
Tests: signature verification, subscription mirroring, payment restriction,
cancellation, checkout linking, unknown events
"""

import hashlib
import hmac
import json
import time

from sqlalchemy import select

from maintenancehub.models import Company, Invitation, User

WEBHOOK_SECRET = "whsec_test_secret"


def _signed(event: dict, secret: str = WEBHOOK_SECRET):
    payload = json.dumps(event)
    timestamp = int(time.time())
    digest = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return payload, {
        "Stripe-Signature": f"t={timestamp},v1={digest}",
        "Content-Type": "application/json",
    }


def _event(event_type: str, obj: dict) -> dict:
    return {
        "id": "evt_test",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def _subscription(customer: str, status: str = "active", manager: int = 3, tech: int = 10) -> dict:
    return {
        "id": "sub_123",
        "object": "subscription",
        "customer": customer,
        "status": status,
        "items": {
            "object": "list",
            "data": [
                {"id": "si_manager", "price": {"id": "price_manager_seat"}, "quantity": manager},
                {"id": "si_tech", "price": {"id": "price_tech_seat"}, "quantity": tech},
            ],
        },
    }


async def _post(client, event: dict, secret: str = WEBHOOK_SECRET):
    payload, headers = _signed(event, secret)
    return await client.post("/webhooks/stripe", content=payload, headers=headers)


async def _reload(session_factory, company_id: str) -> Company:
    async with session_factory() as session:
        return await session.get(Company, company_id)


class TestSignature:
    """Only events signed with the endpoint secret are processed"""

    async def test_wrong_secret_rejected(self, client):
        response = await _post(client, _event("invoice.payment_failed", {}), secret="whsec_other")
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_operation"

    async def test_missing_header_rejected(self, client):
        response = await client.post("/webhooks/stripe", content=json.dumps(_event("x", {})))
        assert response.status_code == 400


class TestSubscriptionEvents:
    """Subscription state is mirrored onto the company"""

    async def test_updated_sets_seats_and_status(self, client, session_factory, make_company):
        company = await make_company(
            package_type="demo", subscription_status=None, stripe_customer_id="cus_1"
        )

        response = await _post(
            client, _event("customer.subscription.updated", _subscription("cus_1", manager=3, tech=10))
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "updated"}
        stored = await _reload(session_factory, company.id)
        assert stored.purchased_manager_seats == 3
        assert stored.purchased_tech_seats == 10
        assert stored.subscription_status == "active"
        assert stored.package_type == "full_access"
        assert stored.stripe_manager_item_id == "si_manager"
        assert not stored.payment_restricted

    async def test_downgrade_below_usage_leaves_company_over_limit(
        self, client, session_factory, make_company, make_user
    ):
        company = await make_company(manager_seats=3, tech_seats=3, stripe_customer_id="cus_2")
        for _ in range(3):
            await make_user(company_id=company.id, role="tech")

        await _post(
            client, _event("customer.subscription.updated", _subscription("cus_2", manager=3, tech=1))
        )

        stored = await _reload(session_factory, company.id)
        assert stored.purchased_tech_seats == 1
        async with session_factory() as session:
            members = (
                await session.execute(select(User).where(User.company_id == company.id))
            ).scalars().all()
        assert len(members) == 3

    async def test_deleted_cancels_and_zeroes_seats(self, client, session_factory, make_company):
        company = await make_company(manager_seats=2, tech_seats=5, stripe_customer_id="cus_3")

        response = await _post(client, _event("customer.subscription.deleted", {"customer": "cus_3"}))

        assert response.json()["outcome"] == "canceled"
        stored = await _reload(session_factory, company.id)
        assert stored.subscription_status == "canceled"
        assert stored.payment_restricted
        assert (stored.purchased_manager_seats, stored.purchased_tech_seats) == (0, 0)

    async def test_unknown_customer_is_acknowledged(self, client):
        response = await _post(
            client, _event("customer.subscription.updated", _subscription("cus_nobody"))
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "unknown_customer"


class TestPaymentFailed:
    """A failed payment blocks writes for customers"""

    async def test_invitations_blocked_after_failure(
        self, client, session_factory, make_company, make_user, headers_for
    ):
        company = await make_company(manager_seats=2, tech_seats=2, stripe_customer_id="cus_4")
        admin = await make_user(company_id=company.id, role="admin")

        response = await _post(client, _event("invoice.payment_failed", {"id": "in_1", "customer": "cus_4"}))
        assert response.json()["outcome"] == "restricted"

        response = await client.post(
            "/invitations",
            json={"email": "new@example.com", "role": "tech"},
            headers=headers_for(admin),
        )

        assert response.status_code == 402
        assert response.json()["code"] == "payment_required"
        async with session_factory() as session:
            assert (await session.execute(select(Invitation))).first() is None

    async def test_reactivation_lifts_restriction(self, client, session_factory, make_company):
        company = await make_company(stripe_customer_id="cus_5", payment_restricted=True)

        await _post(client, _event("customer.subscription.updated", _subscription("cus_5")))

        stored = await _reload(session_factory, company.id)
        assert not stored.payment_restricted

    async def test_paid_invoice_after_failure_lifts_restriction(
        self, client, session_factory, make_company, make_user, headers_for
    ):
        company = await make_company(manager_seats=2, tech_seats=2, stripe_customer_id="cus_6")
        admin = await make_user(company_id=company.id, role="admin")

        await _post(client, _event("invoice.payment_failed", {"id": "in_2", "customer": "cus_6"}))
        response = await _post(
            client,
            _event("invoice.paid", {"id": "in_3", "customer": "cus_6", "subscription": "sub_6"}),
        )
        assert response.json()["outcome"] == "reactivated"

        stored = await _reload(session_factory, company.id)
        assert stored.subscription_status == "active"
        assert not stored.payment_restricted

        response = await client.post(
            "/invitations",
            json={"email": "new@example.com", "role": "tech"},
            headers=headers_for(admin),
        )
        assert response.status_code == 201

    async def test_paid_invoice_without_subscription_is_ignored(
        self, client, session_factory, make_company
    ):
        company = await make_company(
            stripe_customer_id="cus_7", subscription_status="past_due", payment_restricted=True
        )

        response = await _post(client, _event("invoice.paid", {"id": "in_4", "customer": "cus_7"}))

        assert response.json()["outcome"] == "ignored"
        stored = await _reload(session_factory, company.id)
        assert stored.subscription_status == "past_due"
        assert stored.payment_restricted


class TestCheckout:
    """Checkout completion links the Stripe customer"""

    async def test_links_customer_and_advances_onboarding(self, client, session_factory, make_company):
        company = await make_company(package_type="demo", onboarding_stage="plan_selected")

        response = await _post(
            client,
            _event(
                "checkout.session.completed",
                {
                    "id": "cs_1",
                    "customer": "cus_new",
                    "subscription": "sub_new",
                    "metadata": {"company_id": company.id},
                },
            ),
        )

        assert response.json()["outcome"] == "linked"
        stored = await _reload(session_factory, company.id)
        assert stored.stripe_customer_id == "cus_new"
        assert stored.stripe_subscription_id == "sub_new"
        assert stored.onboarding_stage == "payment_complete"

    async def test_unknown_company(self, client):
        response = await _post(
            client,
            _event("checkout.session.completed", {"metadata": {"company_id": "missing"}}),
        )
        assert response.json()["outcome"] == "unknown_company"


class TestUnhandled:

    async def test_unknown_event_type_is_ignored(self, client):
        response = await _post(client, _event("customer.created", {"id": "cus_x"}))

        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"
