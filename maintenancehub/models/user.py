"""
models/user.py
--------------
User ORM model with per-company roles and the platform flag.

Role design:
  - role ('admin' | 'manager' | 'tech') is the per-company role and decides
    the seat class (see services/seat_accounting.classify_role).
  - platform_role ('platform_admin' | 'customer_user') is orthogonal to role
    and to company membership. Platform admins see every tenant, bypass seat
    checks and may simulate restricted views.

Any row with a non-null company_id holds a used seat. There is no disabled
state: removing someone from a company means deleting the row.

The hashed_password column stores bcrypt hashes only — plain text is
never stored and never logged.
"""

from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from maintenancehub.db.base import Base, TimestampMixin, generate_uuid


class UserRole(str, PyEnum):
    admin = "admin"
    manager = "manager"
    tech = "tech"


class PlatformRole(str, PyEnum):
    platform_admin = "platform_admin"
    customer_user = "customer_user"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False, index=True
    )
    hashed_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.tech.value
    )
    platform_role: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PlatformRole.customer_user.value
    )
    company_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("companies.id"),
        nullable=True,
        index=True,
    )

    @property
    def is_platform_admin(self) -> bool:
        return self.platform_role == PlatformRole.platform_admin.value

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"
