"""
schemas/company.py
------------------
Pydantic models for company (tenant) request/response serialisation.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255, examples=["Acme Plant 3"])


class CompanyRead(BaseModel):
    id: str
    name: str
    package_type: str
    demo_expires_at: Optional[datetime] = None
    onboarding_stage: str
    purchased_manager_seats: int
    purchased_tech_seats: int
    subscription_status: Optional[str] = None
    payment_restricted: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class LicenseUpdate(BaseModel):
    manager_seats: int = Field(..., ge=0)
    tech_seats: int = Field(..., ge=0)


class CompanyDeleted(BaseModel):
    id: str
    deleted: Dict[str, int]
