"""
api/routes/companies.py
-----------------------
Company (tenant) endpoints.

POST   /companies                 — Onboarding: create a company, caller becomes its admin.
GET    /companies/{id}            — Company details (members and platform admins).
POST   /companies/{id}/licenses   — Platform admin: override seat ceilings.
DELETE /companies/{id}            — Platform admin: delete the company and everything it owns.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintenancehub.core.errors import CompanyNotFound
from maintenancehub.db.session import get_db, get_session_factory
from maintenancehub.dependencies import (
    get_current_user,
    require_api_scope,
    require_platform_admin,
)
from maintenancehub.models.user import User
from maintenancehub.schemas.company import (
    CompanyCreate,
    CompanyDeleted,
    CompanyRead,
    LicenseUpdate,
)
from maintenancehub.services.company_service import CompanyService

router = APIRouter(
    prefix="/companies",
    tags=["Companies"],
    dependencies=[Depends(require_api_scope("companies"))],
)


@router.post(
    "",
    response_model=CompanyRead,
    status_code=status.HTTP_201_CREATED,
    summary="Onboard a new company",
)
async def create_company(
    body: CompanyCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> CompanyRead:
    """
    The caller must not belong to a company yet. The company starts as a
    demo with a trial period and the demo seat allowance.
    """
    company, _owner = await CompanyService.create_company(
        session_factory, body.name, current_user.id
    )
    return CompanyRead.model_validate(company)


@router.get(
    "/{company_id}",
    response_model=CompanyRead,
    summary="Get company details",
)
async def get_company(
    company_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CompanyRead:
    # Non-members get a 404, not a 403, so company ids cannot be probed.
    if not current_user.is_platform_admin and current_user.company_id != company_id:
        raise CompanyNotFound(company_id)
    company = await CompanyService.get_company(db, company_id)
    return CompanyRead.model_validate(company)


@router.post(
    "/{company_id}/licenses",
    response_model=CompanyRead,
    summary="Platform admin: set purchased seats",
)
async def set_licenses(
    company_id: str,
    body: LicenseUpdate,
    admin: Annotated[User, Depends(require_platform_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CompanyRead:
    """
    Overrides both seat ceilings. No availability check is made: a value
    below current usage leaves the company over limit.
    """
    company = await CompanyService.set_licenses(
        db,
        company_id,
        manager_seats=body.manager_seats,
        tech_seats=body.tech_seats,
        actor_id=admin.id,
    )
    return CompanyRead.model_validate(company)


@router.delete(
    "/{company_id}",
    response_model=CompanyDeleted,
    summary="Platform admin: delete a company",
)
async def delete_company(
    company_id: str,
    admin: Annotated[User, Depends(require_platform_admin)],
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> CompanyDeleted:
    deleted = await CompanyService.delete_company(session_factory, company_id, admin)
    return CompanyDeleted(id=company_id, deleted=deleted)
