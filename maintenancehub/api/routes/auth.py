"""
api/routes/auth.py
------------------
Authentication and session endpoints.

POST /register             — Create an account. With an invitation token the
                             account joins the inviting company (seat-checked
                             mutator); without one it is unaffiliated.
POST /login                — Exchange credentials for a JWT access token.
                             Accepts OAuth2 form data (Swagger UI).
GET  /me                   — The authenticated user and active simulation.
POST /auth/switch-role     — Platform admin: simulate a role (new token).
POST /auth/switch-package  — Platform admin: simulate a package (new token).
"""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintenancehub.core.config import settings
from maintenancehub.core.security import create_access_token
from maintenancehub.db.session import get_db, get_session_factory
from maintenancehub.dependencies import get_current_principal, get_current_user
from maintenancehub.models.user import User
from maintenancehub.schemas.simulation import (
    MeResponse,
    SimulationRead,
    SimulationTokenResponse,
    SwitchPackageRequest,
    SwitchRoleRequest,
)
from maintenancehub.schemas.user import TokenResponse, UserRead, UserRegister
from maintenancehub.services.seat_mutators import accept_invitation
from maintenancehub.services.simulation import (
    Principal,
    SimulationState,
    switch_package,
    switch_role,
)
from maintenancehub.services.user_service import UserService

router = APIRouter(tags=["Authentication"])


def _issue_token(user: User, simulation: SimulationState) -> tuple[str, int]:
    expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(
        subject=user.id,
        company_id=user.company_id,
        role=user.role,
        platform_role=user.platform_role,
        simulated_role=simulation.simulated_role,
        simulated_package=simulation.simulated_package,
        expires_delta=expires,
    )
    return token, int(expires.total_seconds())


def _simulation_read(state: SimulationState) -> SimulationRead:
    return SimulationRead(
        simulated_role=state.simulated_role,
        simulated_package=state.simulated_package,
    )


@router.post(
    "/register",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user account",
)
async def register(
    body: UserRegister,
    db: Annotated[AsyncSession, Depends(get_db)],
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
) -> UserRead:
    """
    With `invitation_token`, accept the invitation: the account joins the
    inviting company with the invited role, taking over the seat the
    invitation was holding. Without it, create an account with no company.
    """
    if body.invitation_token:
        user = await accept_invitation(
            session_factory,
            token=body.invitation_token,
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
        )
    else:
        user = await UserService.register_user(
            db,
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
        )
    return UserRead.model_validate(user)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login and receive a JWT access token",
)
async def login(
    # OAuth2PasswordRequestForm sends username + password as form data.
    # The "username" field contains the email address.
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TokenResponse:
    """
    Authenticate with email + password and receive a signed JWT.
    A fresh login never carries a simulation.

    Via curl/Postman: send as form data (not JSON):
        -d "username=you@email.com&password=yourpassword"
    """
    user = await UserService.authenticate(db, form_data.username, form_data.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token, expires_in = _issue_token(user, SimulationState())
    return TokenResponse(
        access_token=token,
        token_type="bearer",
        expires_in=expires_in,
        user=UserRead.model_validate(user),
    )


@router.get(
    "/me",
    response_model=MeResponse,
    summary="Get the currently authenticated user",
)
async def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> MeResponse:
    return MeResponse(
        user=UserRead.model_validate(current_user),
        effective_role=principal.effective_role,
        simulation=_simulation_read(principal.simulation),
    )


@router.post(
    "/auth/switch-role",
    response_model=SimulationTokenResponse,
    summary="Platform admin: simulate a company role",
)
async def switch_role_endpoint(
    body: SwitchRoleRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> SimulationTokenResponse:
    """
    Returns a new token carrying the role simulation. Any package
    simulation is cleared. Other sessions of the same admin are unaffected.
    """
    role = body.role.value if body.role is not None else None
    state = switch_role(principal, role)
    token, expires_in = _issue_token(current_user, state)
    return SimulationTokenResponse(
        access_token=token,
        expires_in=expires_in,
        simulation=_simulation_read(state),
    )


@router.post(
    "/auth/switch-package",
    response_model=SimulationTokenResponse,
    summary="Platform admin: simulate a package tier",
)
async def switch_package_endpoint(
    body: SwitchPackageRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> SimulationTokenResponse:
    """
    Returns a new token carrying the package simulation (null restores full
    access). Setting a package clears any role simulation.
    """
    package = body.package_type.value if body.package_type is not None else None
    state = switch_package(principal, package)
    token, expires_in = _issue_token(current_user, state)
    return SimulationTokenResponse(
        access_token=token,
        expires_in=expires_in,
        simulation=_simulation_read(state),
    )
