"""
services/billing_service.py
---------------------------
Mirror billing-provider (Stripe) state onto companies.

Stripe is the source of truth for what a company pays for; this module only
copies it: subscription status, purchased seat quantities (matched by price
id), package tier and the payment restriction flag. Seat ceilings are
written through CompanyService.update_purchased_seats, so a downgrade below
current usage leaves the company over limit rather than evicting anyone.
A failed invoice sets the restriction and a paid one lifts it again.

Events for unknown customers or of unknown types are logged and
acknowledged; returning an error would only make Stripe retry forever.
"""

import json
from typing import Any, Dict, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from maintenancehub.core.config import settings
from maintenancehub.core.errors import InvalidOperation
from maintenancehub.core.logging import get_logger
from maintenancehub.models.company import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    Company,
    OnboardingStage,
    PackageType,
)
from maintenancehub.services.company_service import CompanyService, advance_onboarding

logger = get_logger(__name__)


def parse_webhook(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """
    Verify the Stripe-Signature header and return the event as a plain dict.
    Raises InvalidOperation on a bad payload or signature.
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise InvalidOperation("Stripe webhook secret is not configured")
    if not signature:
        raise InvalidOperation("Missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as exc:
        logger.warning("Invalid webhook payload", error=str(exc))
        raise InvalidOperation("Invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        logger.warning("Invalid webhook signature", error=str(exc))
        raise InvalidOperation("Invalid signature") from exc
    return json.loads(payload)


def _seat_quantities(subscription: Dict[str, Any]) -> Dict[str, Any]:
    """Seat quantities and item ids keyed by seat class, from subscription items."""
    found: Dict[str, Any] = {}
    price_classes = settings.seat_price_ids
    items = (subscription.get("items") or {}).get("data") or []
    for item in items:
        seat_class = price_classes.get((item.get("price") or {}).get("id"))
        if seat_class is None:
            continue
        found[seat_class] = int(item.get("quantity") or 0)
        found[f"{seat_class}_item_id"] = item.get("id")
    return found


class BillingService:

    @staticmethod
    async def find_company_by_customer(
        db: AsyncSession, customer_id: Optional[str]
    ) -> Optional[Company]:
        if not customer_id:
            return None
        result = await db.execute(
            select(Company).where(Company.stripe_customer_id == customer_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def handle_event(db: AsyncSession, event: Dict[str, Any]) -> str:
        """Dispatch one verified event. Returns a short outcome label."""
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        logger.info("Stripe event received", event_id=event.get("id"), event_type=event_type)

        if event_type == "checkout.session.completed":
            return await BillingService._checkout_completed(db, obj)
        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            return await BillingService._subscription_changed(db, obj)
        if event_type == "customer.subscription.deleted":
            return await BillingService._subscription_deleted(db, obj)
        if event_type == "invoice.payment_failed":
            return await BillingService._payment_failed(db, obj)
        if event_type == "invoice.paid":
            return await BillingService._invoice_paid(db, obj)

        logger.info("Unhandled Stripe event type", event_type=event_type)
        return "ignored"

    @staticmethod
    async def _checkout_completed(db: AsyncSession, session: Dict[str, Any]) -> str:
        company_id = (session.get("metadata") or {}).get("company_id")
        company = await db.get(Company, company_id) if company_id else None
        if company is None:
            logger.warning("Checkout for unknown company", company_id=company_id)
            return "unknown_company"

        company.stripe_customer_id = session.get("customer") or company.stripe_customer_id
        company.stripe_subscription_id = (
            session.get("subscription") or company.stripe_subscription_id
        )
        advance_onboarding(company, OnboardingStage.payment_complete)
        await db.flush()
        logger.info(
            "Checkout linked",
            company_id=company.id,
            customer_id=company.stripe_customer_id,
            subscription_id=company.stripe_subscription_id,
        )
        return "linked"

    @staticmethod
    async def _subscription_changed(db: AsyncSession, subscription: Dict[str, Any]) -> str:
        company = await BillingService.find_company_by_customer(
            db, subscription.get("customer")
        )
        if company is None:
            logger.warning("Subscription for unknown customer", customer_id=subscription.get("customer"))
            return "unknown_customer"

        status_ = subscription.get("status")
        company.subscription_status = status_
        company.stripe_subscription_id = subscription.get("id") or company.stripe_subscription_id

        seats = _seat_quantities(subscription)
        if "manager_item_id" in seats:
            company.stripe_manager_item_id = seats["manager_item_id"]
        if "tech_item_id" in seats:
            company.stripe_tech_item_id = seats["tech_item_id"]
        await CompanyService.update_purchased_seats(
            db,
            company.id,
            manager_seats=seats.get("manager"),
            tech_seats=seats.get("tech"),
            source="stripe",
        )

        if status_ in ACTIVE_SUBSCRIPTION_STATUSES:
            company.payment_restricted = False
            if company.package_type == PackageType.demo.value:
                company.package_type = PackageType.full_access.value
        await db.flush()

        logger.info(
            "Subscription mirrored",
            company_id=company.id,
            status=status_,
            package_type=company.package_type,
            payment_restricted=company.payment_restricted,
        )
        return "updated"

    @staticmethod
    async def _subscription_deleted(db: AsyncSession, subscription: Dict[str, Any]) -> str:
        company = await BillingService.find_company_by_customer(
            db, subscription.get("customer")
        )
        if company is None:
            logger.warning("Cancellation for unknown customer", customer_id=subscription.get("customer"))
            return "unknown_customer"

        company.subscription_status = "canceled"
        company.package_type = PackageType.demo.value
        company.payment_restricted = True
        await CompanyService.update_purchased_seats(
            db, company.id, manager_seats=0, tech_seats=0, source="stripe"
        )
        logger.info("Subscription canceled", company_id=company.id)
        return "canceled"

    @staticmethod
    async def _payment_failed(db: AsyncSession, invoice: Dict[str, Any]) -> str:
        company = await BillingService.find_company_by_customer(db, invoice.get("customer"))
        if company is None:
            logger.warning("Payment failure for unknown customer", customer_id=invoice.get("customer"))
            return "unknown_customer"

        company.subscription_status = "past_due"
        company.payment_restricted = True
        await db.flush()
        logger.warning("Payment failed", company_id=company.id, invoice_id=invoice.get("id"))
        return "restricted"

    @staticmethod
    async def _invoice_paid(db: AsyncSession, invoice: Dict[str, Any]) -> str:
        """A successful (recurring or retried) payment lifts the payment restriction."""
        if not invoice.get("subscription"):
            logger.debug("Invoice without subscription", invoice_id=invoice.get("id"))
            return "ignored"
        company = await BillingService.find_company_by_customer(db, invoice.get("customer"))
        if company is None:
            logger.warning("Paid invoice for unknown customer", customer_id=invoice.get("customer"))
            return "unknown_customer"

        company.subscription_status = "active"
        company.payment_restricted = False
        await db.flush()
        logger.info("Invoice paid, restriction cleared", company_id=company.id, invoice_id=invoice.get("id"))
        return "reactivated"
