"""
models/workspace.py
-------------------
Company-owned maintenance records.

These tables have no CRUD surface in this service. They exist so the
company deletion plan can be declared and tested against real foreign keys:
every row here belongs to a company (directly, or through one of its users)
and must be gone before the company row can be removed.
"""

from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from maintenancehub.db.base import Base, TimestampMixin, generate_uuid


def _company_fk() -> Mapped[str]:
    return mapped_column(
        String(36), ForeignKey("companies.id"), nullable=False, index=True
    )


class Equipment(Base, TimestampMixin):
    __tablename__ = "equipment"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    company_id: Mapped[str] = _company_fk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class WorkOrder(Base, TimestampMixin):
    __tablename__ = "work_orders"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    company_id: Mapped[str] = _company_fk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    equipment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("equipment.id"), nullable=True
    )
    assigned_to_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )


class RcaRecord(Base, TimestampMixin):
    __tablename__ = "rca_records"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    company_id: Mapped[str] = _company_fk()
    problem_statement: Mapped[str] = mapped_column(Text, nullable=False)
    created_by_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )


class TroubleshootingSession(Base, TimestampMixin):
    __tablename__ = "troubleshooting_sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    company_id: Mapped[str] = _company_fk()
    equipment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("equipment.id"), nullable=True
    )
    created_by_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )


class TrainingProgress(Base, TimestampMixin):
    """Owned by a user; reaches its company through users.company_id."""

    __tablename__ = "training_progress"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    module_key: Mapped[str] = mapped_column(String(100), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
