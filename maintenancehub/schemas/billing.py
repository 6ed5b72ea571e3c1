"""
schemas/billing.py
------------------
Seat breakdown and billing status as shown on the Billing page.
"""

from typing import Optional

from pydantic import BaseModel


class SeatCountsRead(BaseModel):
    manager: int
    tech: int


class SeatBreakdownRead(BaseModel):
    purchased: SeatCountsRead
    used: SeatCountsRead
    pending: SeatCountsRead
    available: SeatCountsRead


class SeatStatusResponse(BaseModel):
    company_id: str
    breakdown: SeatBreakdownRead
    package_type: str
    subscription_status: Optional[str] = None
    payment_restricted: bool
    # True when the caller's seat checks are bypassed (platform admin).
    seat_check_bypassed: bool = False


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
