"""
models/company.py
-----------------
Company (tenant) ORM model.

Each company is an isolated organisational unit and the owner of the seat
ceilings. purchased_*_seats are the contractual limits per role class; they
are mirrored from the billing provider or overridden by a platform admin and
are never derived from usage. Usage may exceed them (soft over-limit after a
downgrade); available seats then clamp to zero.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from maintenancehub.db.base import Base, TimestampMixin, as_utc, generate_uuid


class PackageType(str, PyEnum):
    full_access = "full_access"
    operations = "operations"
    troubleshooting = "troubleshooting"
    demo = "demo"


class OnboardingStage(str, PyEnum):
    not_started = "not_started"
    company_created = "company_created"
    plan_selected = "plan_selected"
    payment_complete = "payment_complete"
    completed = "completed"

    @property
    def rank(self) -> int:
        return list(OnboardingStage).index(self)


ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})


class Company(Base, TimestampMixin):
    __tablename__ = "companies"
    __table_args__ = (
        CheckConstraint("purchased_manager_seats >= 0", name="ck_companies_manager_seats"),
        CheckConstraint("purchased_tech_seats >= 0", name="ck_companies_tech_seats"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Package / trial
    package_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PackageType.demo.value
    )
    demo_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    onboarding_stage: Mapped[str] = mapped_column(
        String(32), nullable=False, default=OnboardingStage.not_started.value
    )

    # Seat ceilings
    purchased_manager_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchased_tech_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Billing mirror
    subscription_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_restricted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True, index=True
    )
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_manager_item_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_tech_item_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def has_active_access(self, now: datetime) -> bool:
        """Paying subscription, or a demo package whose trial has not ended."""
        if self.subscription_status in ACTIVE_SUBSCRIPTION_STATUSES:
            return True
        if self.package_type == PackageType.demo.value and self.demo_expires_at is not None:
            return as_utc(self.demo_expires_at) > as_utc(now)
        return False

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name} package={self.package_type}>"
