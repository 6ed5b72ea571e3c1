"""
models/invitation.py
--------------------
Pending membership: an emailed invite to join a company with a given role.

A pending invitation reserves a seat of its role class until it is accepted
(the seat moves to the new User row), cancelled (row deleted) or expired.
At most one live invitation may exist per (company_id, email). Liveness is
time-relative, so the rule is enforced by the seat mutator inside its
transaction rather than by a unique index.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from maintenancehub.db.base import Base, TimestampMixin, generate_uuid
from maintenancehub.models.user import UserRole


class InvitationStatus(str, PyEnum):
    pending = "pending"
    accepted = "accepted"
    expired = "expired"


class Invitation(Base, TimestampMixin):
    __tablename__ = "invitations"
    __table_args__ = (
        Index("ix_invitations_company_email", "company_id", "email"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id"),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.tech.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvitationStatus.pending.value
    )
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    invited_by: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Invitation id={self.id} company_id={self.company_id} "
            f"email={self.email} role={self.role} status={self.status}>"
        )
