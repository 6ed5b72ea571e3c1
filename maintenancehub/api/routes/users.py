"""
api/routes/users.py
-------------------
User management within a company. Attaching a user to a company and
changing their seat class consume seats, so both go through the
seat-checked mutator.

POST   /users                   — Admin: add a new user to a company.
PUT    /users/{id}/assignment   — Move a user to a company and/or change role.
GET    /users                   — List users of a company.
DELETE /users/{id}              — Delete a user (frees their seat).
"""

from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintenancehub.core.errors import Unauthorized, UserNotFound
from maintenancehub.db.session import get_db, get_session_factory
from maintenancehub.dependencies import (
    require_admin,
    require_api_scope,
    require_manager_or_admin,
    require_payment_in_good_standing,
    resolve_company_id,
)
from maintenancehub.models.user import User, UserRole
from maintenancehub.schemas.user import UserAssignment, UserCreate, UserRead
from maintenancehub.services.seat_mutators import NewUser, add_user_to_company, bypass_for
from maintenancehub.services.user_service import UserService

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    dependencies=[Depends(require_api_scope("users"))],
)


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a new user to a company (seat-checked)",
    dependencies=[Depends(require_payment_in_good_standing)],
)
async def create_user(
    body: UserCreate,
    admin: Annotated[User, Depends(require_admin)],
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> UserRead:
    company_id = resolve_company_id(admin, body.company_id)
    user = await add_user_to_company(
        session_factory,
        company_id,
        body.role,
        new_user=NewUser(
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
        ),
        bypass_seat_check=bypass_for(admin),
    )
    return UserRead.model_validate(user)


@router.put(
    "/{user_id}/assignment",
    response_model=UserRead,
    summary="Move a user and/or change their role (seat-checked)",
    dependencies=[Depends(require_payment_in_good_standing)],
)
async def assign_user(
    user_id: str,
    body: UserAssignment,
    actor: Annotated[User, Depends(require_manager_or_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> UserRead:
    """
    Customers may only re-role members of their own company; managers may
    neither grant nor change the admin role. Platform admins may move any
    user into any company.
    """
    company_id = resolve_company_id(actor, body.company_id)
    if not actor.is_platform_admin:
        target = await UserService.get_user(db, user_id)
        if target.company_id != actor.company_id:
            raise UserNotFound(user_id)
        if actor.role == UserRole.manager.value and UserRole.admin.value in (
            target.role,
            body.role.value,
        ):
            raise Unauthorized("Managers cannot grant or change the admin role")

    user = await add_user_to_company(
        session_factory,
        company_id,
        body.role,
        user_id=user_id,
        bypass_seat_check=bypass_for(actor),
    )
    return UserRead.model_validate(user)


@router.get(
    "",
    response_model=List[UserRead],
    summary="List users of a company",
)
async def list_users(
    current_user: Annotated[User, Depends(require_manager_or_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Optional[str] = Query(None),
) -> List[UserRead]:
    target = resolve_company_id(current_user, company_id)
    users = await UserService.list_users_in_company(db, target)
    return [UserRead.model_validate(u) for u in users]


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a user",
)
async def delete_user(
    user_id: str,
    actor: Annotated[User, Depends(require_manager_or_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> None:
    await UserService.delete_user(db, actor, user_id)
