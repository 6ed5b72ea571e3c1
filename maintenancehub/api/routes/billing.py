"""
api/routes/billing.py
---------------------
GET  /billing/seats    — Seat breakdown and billing status of the caller's company.
POST /webhooks/stripe  — Stripe events (signature-verified, no user auth).
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from maintenancehub.db.session import get_db
from maintenancehub.dependencies import (
    get_current_user,
    require_api_scope,
    resolve_company_id,
)
from maintenancehub.models.user import User
from maintenancehub.schemas.billing import SeatStatusResponse, WebhookAck
from maintenancehub.services.billing_service import BillingService, parse_webhook
from maintenancehub.services.company_service import CompanyService
from maintenancehub.services.seat_accounting import SeatAccountingService
from maintenancehub.services.seat_mutators import bypass_for

router = APIRouter(tags=["Billing"])


@router.get(
    "/billing/seats",
    response_model=SeatStatusResponse,
    summary="Current seat usage of a company",
    dependencies=[Depends(require_api_scope("billing"))],
)
async def get_seats(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Optional[str] = Query(None),
) -> SeatStatusResponse:
    """
    Display only. The numbers may be stale by the time they are shown; the
    seat-checked mutators re-check on every write.
    """
    target = resolve_company_id(current_user, company_id)
    breakdown = await SeatAccountingService.get_breakdown(db, target)
    company = await CompanyService.get_company(db, target)
    return SeatStatusResponse(
        company_id=company.id,
        breakdown=breakdown.as_dict(),
        package_type=company.package_type,
        subscription_status=company.subscription_status,
        payment_restricted=company.payment_restricted,
        seat_check_bypassed=bypass_for(current_user),
    )


@router.post(
    "/webhooks/stripe",
    response_model=WebhookAck,
    summary="Stripe webhook receiver",
)
async def stripe_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    stripe_signature: Annotated[Optional[str], Header(alias="Stripe-Signature")] = None,
) -> WebhookAck:
    payload = await request.body()
    event = parse_webhook(payload, stripe_signature)
    outcome = await BillingService.handle_event(db, event)
    return WebhookAck(outcome=outcome)
