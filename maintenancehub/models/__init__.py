"""
models/__init__.py
------------------
Re-export all models so create_tables.py (and Alembic's env.py, if added)
can import Base and discover all tables via a single import:

    from maintenancehub.models import Base
"""

from maintenancehub.db.base import Base
from maintenancehub.models.company import Company, OnboardingStage, PackageType
from maintenancehub.models.invitation import Invitation, InvitationStatus
from maintenancehub.models.user import PlatformRole, User, UserRole
from maintenancehub.models.workspace import (
    Equipment,
    RcaRecord,
    TrainingProgress,
    TroubleshootingSession,
    WorkOrder,
)

__all__ = [
    "Base",
    "Company",
    "OnboardingStage",
    "PackageType",
    "Invitation",
    "InvitationStatus",
    "User",
    "UserRole",
    "PlatformRole",
    "Equipment",
    "WorkOrder",
    "RcaRecord",
    "TroubleshootingSession",
    "TrainingProgress",
]
