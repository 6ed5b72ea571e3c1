"""
schemas/simulation.py
---------------------
Pydantic models for the session view (/me), role/package simulation and
navigation.
"""

from typing import List, Optional

from pydantic import BaseModel

from maintenancehub.models.company import PackageType
from maintenancehub.models.user import UserRole
from maintenancehub.schemas.user import UserRead


class SimulationRead(BaseModel):
    simulated_role: Optional[str] = None
    simulated_package: Optional[str] = None


class MeResponse(BaseModel):
    user: UserRead
    effective_role: str
    simulation: SimulationRead


class SwitchRoleRequest(BaseModel):
    role: Optional[UserRole] = None


class SwitchPackageRequest(BaseModel):
    package_type: Optional[PackageType] = None


class SimulationTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    simulation: SimulationRead


class NavItemRead(BaseModel):
    title: str
    url: str


class NavSectionRead(BaseModel):
    key: str
    title: str
    items: List[NavItemRead]


class NavigationResponse(BaseModel):
    effective_role: str
    package_type: Optional[str] = None
    sections: List[NavSectionRead]
