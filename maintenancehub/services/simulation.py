"""
services/simulation.py
----------------------
Role/package simulation for platform admins, and the access policy that
decides what a session may see (navigation) and call (API scopes).

Simulation state belongs to the session, not to the user: it travels in the
caller's JWT (sim_role / sim_package claims) and is re-derived from that
token on every request. Nothing here touches the User or Company rows, so
one admin simulating the troubleshooting tier cannot change what another
session sees for the same company.

Role and package simulation are mutually exclusive. Switching role clears
the package simulation; setting a package clears the role simulation.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, List, Optional, Tuple

from maintenancehub.core.errors import InvalidOperation, PackageRestricted, Unauthorized
from maintenancehub.core.logging import get_logger
from maintenancehub.core.security import SIM_PACKAGE_CLAIM, SIM_ROLE_CLAIM
from maintenancehub.models.company import Company, PackageType
from maintenancehub.models.user import PlatformRole, User, UserRole

logger = get_logger(__name__)


# ── Session state ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SimulationState:
    simulated_role: Optional[str] = None
    simulated_package: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.simulated_role is not None or self.simulated_package is not None


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of one request."""

    user_id: str
    email: str
    company_id: Optional[str]
    role: str
    platform_role: str
    simulation: SimulationState = field(default_factory=SimulationState)

    @property
    def is_platform_admin(self) -> bool:
        return self.platform_role == PlatformRole.platform_admin.value

    @property
    def effective_role(self) -> str:
        if self.simulation.simulated_package is not None:
            return UserRole.admin.value
        return self.simulation.simulated_role or self.role

    @classmethod
    def from_user(cls, user: User, claims: Optional[Dict] = None) -> "Principal":
        """
        Build the principal from a freshly loaded user and its token claims.
        Simulation claims only count for users who are platform admins now.
        """
        claims = claims or {}
        simulation = SimulationState()
        if user.is_platform_admin:
            simulation = SimulationState(
                simulated_role=claims.get(SIM_ROLE_CLAIM),
                simulated_package=claims.get(SIM_PACKAGE_CLAIM),
            )
        return cls(
            user_id=user.id,
            email=user.email,
            company_id=user.company_id,
            role=user.role,
            platform_role=user.platform_role,
            simulation=simulation,
        )


def _require_platform_admin(principal: Principal, action: str) -> None:
    if not principal.is_platform_admin:
        logger.warning("Simulation refused", user_id=principal.user_id, action=action)
        raise Unauthorized("Only platform admins can simulate roles and packages")


def switch_role(principal: Principal, new_role: Optional[str]) -> SimulationState:
    """Simulate `new_role` (None stops role simulation). Clears any package simulation."""
    _require_platform_admin(principal, "switch_role")
    if new_role is not None and new_role not in {r.value for r in UserRole}:
        raise InvalidOperation(f"Unknown role '{new_role}'")

    state = replace(principal.simulation, simulated_role=new_role, simulated_package=None)
    logger.info(
        "Role simulation switched",
        user_id=principal.user_id,
        simulated_role=new_role,
        cleared_package=principal.simulation.simulated_package,
    )
    return state


def switch_package(principal: Principal, package_type: Optional[str]) -> SimulationState:
    """
    Simulate a package tier. A non-null package replaces any role simulation.
    None clears only the package simulation; an active role simulation
    survives.
    """
    _require_platform_admin(principal, "switch_package")
    if package_type is not None and package_type not in {p.value for p in PackageType}:
        raise InvalidOperation(f"Unknown package type '{package_type}'")

    if package_type is None:
        state = replace(principal.simulation, simulated_package=None)
    else:
        state = SimulationState(simulated_role=None, simulated_package=package_type)
    logger.info(
        "Package simulation switched",
        user_id=principal.user_id,
        simulated_package=package_type,
        cleared_role=principal.simulation.simulated_role if package_type else None,
    )
    return state


# ── Navigation catalogue ──────────────────────────────────────────────────────

ALL_ROLES: FrozenSet[str] = frozenset(r.value for r in UserRole)
STAFF_ROLES: FrozenSet[str] = frozenset({UserRole.admin.value, UserRole.manager.value})
FIELD_ROLES: FrozenSet[str] = frozenset({UserRole.manager.value, UserRole.tech.value})
ADMIN_ROLES: FrozenSet[str] = frozenset({UserRole.admin.value})


@dataclass(frozen=True)
class NavItem:
    title: str
    url: str
    roles: FrozenSet[str]
    platform_admin_only: bool = False


@dataclass(frozen=True)
class NavSection:
    key: str
    title: str
    items: Tuple[NavItem, ...]


NAVIGATION: Tuple[NavSection, ...] = (
    NavSection("operations", "Operations", (
        NavItem("Dashboard", "/", ALL_ROLES),
        NavItem("My Work", "/my-work", FIELD_ROLES),
        NavItem("Equipment", "/equipment", ALL_ROLES),
        NavItem("Work Orders", "/work-orders", ALL_ROLES),
        NavItem("Parts Inventory", "/inventory", ALL_ROLES),
        NavItem("Operations", "/operations", ALL_ROLES),
        NavItem("QA Dashboard", "/qa-dashboard", STAFF_ROLES),
        NavItem("CILR Studio", "/cilr-studio", STAFF_ROLES),
        NavItem("Centerlining Studio", "/centerlining-studio", STAFF_ROLES),
        NavItem("Preventative Maintenance", "/pm-schedules", STAFF_ROLES),
        NavItem("Users", "/admin/users", STAFF_ROLES),
    )),
    NavSection("rca_oracle", "RCA Oracle", (
        NavItem("Root Cause Analysis", "/rca", ALL_ROLES),
        NavItem("Downtime Analysis", "/downtime", STAFF_ROLES),
    )),
    NavSection("analysis", "Analysis", (
        NavItem("Part Finder", "/image-search", ALL_ROLES),
        NavItem("Troubleshooting", "/troubleshooting", ALL_ROLES),
        NavItem("C4 Planner", "/c4-planner", STAFF_ROLES),
    )),
    NavSection("learning", "Learning", (
        NavItem("Path to Excellence", "/excellence-path", ALL_ROLES),
        NavItem("Interviews", "/interviews", STAFF_ROLES),
        NavItem("Assessment History", "/assessment-history", STAFF_ROLES),
        NavItem("C4 University", "/training", ALL_ROLES),
    )),
    NavSection("admin", "Administration", (
        NavItem("Reports", "/reports", STAFF_ROLES),
        NavItem("Integrations", "/integrations", STAFF_ROLES),
        NavItem("Billing", "/billing", ADMIN_ROLES),
        NavItem("Access Keys", "/admin/access-keys", ADMIN_ROLES, platform_admin_only=True),
        NavItem("Signup Requests", "/admin/signup-requests", ADMIN_ROLES, platform_admin_only=True),
        NavItem("Companies", "/admin/companies", ADMIN_ROLES, platform_admin_only=True),
    )),
)

# Packages absent from these maps are unrestricted.
PACKAGE_NAV_URLS: Dict[str, FrozenSet[str]] = {
    PackageType.troubleshooting.value: frozenset({"/troubleshooting"}),
}

PACKAGE_API_SCOPES: Dict[str, FrozenSet[str]] = {
    PackageType.troubleshooting.value: frozenset(
        {"troubleshooting", "auth", "companies", "navigation", "billing"}
    ),
}


# ── Access policy ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AccessPolicy:
    """
    What one session may see and call.

    package_type None means no package restrictions apply (platform admins
    outside a package simulation, role simulation, unaffiliated users).
    """

    role: str
    package_type: Optional[str]
    platform_admin: bool = False
    full_access: bool = False

    @classmethod
    def for_principal(
        cls, principal: Principal, company: Optional[Company]
    ) -> "AccessPolicy":
        simulation = principal.simulation
        if principal.is_platform_admin:
            if simulation.simulated_package is not None:
                return cls(
                    role=UserRole.admin.value,
                    package_type=simulation.simulated_package,
                    platform_admin=True,
                )
            if simulation.simulated_role is not None:
                return cls(
                    role=simulation.simulated_role,
                    package_type=None,
                    platform_admin=True,
                )
            return cls(
                role=principal.role,
                package_type=None,
                platform_admin=True,
                full_access=True,
            )

        return cls(
            role=principal.role,
            package_type=company.package_type if company is not None else None,
        )

    def can_see(self, item: NavItem) -> bool:
        if self.full_access:
            return True
        if item.platform_admin_only and not self.platform_admin:
            return False
        if self.role not in item.roles:
            return False
        allowed_urls = PACKAGE_NAV_URLS.get(self.package_type)
        return allowed_urls is None or item.url in allowed_urls

    def navigation(self) -> List[NavSection]:
        """Visible sections with their visible items; empty sections are dropped."""
        visible = []
        for section in NAVIGATION:
            items = tuple(item for item in section.items if self.can_see(item))
            if items:
                visible.append(NavSection(section.key, section.title, items))
        return visible

    def allows_scope(self, scope: str) -> bool:
        if self.full_access:
            return True
        allowed = PACKAGE_API_SCOPES.get(self.package_type)
        return allowed is None or scope in allowed

    def require_scope(self, scope: str) -> None:
        if not self.allows_scope(scope):
            raise PackageRestricted(self.package_type, scope)
