"""
dependencies.py
---------------
FastAPI dependency injection functions for authentication and authorisation.

Flow:
  1. OAuth2PasswordBearer extracts the Bearer token from the Authorization header.
  2. decode_access_token validates and parses the JWT (no DB round-trip).
  3. get_current_user fetches the full User record from the DB. Role, company
     and platform role always come from that fresh row, never from the token.
  4. get_current_principal adds the session's simulation state from the
     token's sim_role / sim_package claims (honoured for platform admins only).
  5. Role, API-scope and payment checks layer on top of those.

Authorization failures raise LicensingError subclasses, rendered by the
handler in main.py. Authentication failures stay plain 401s.
"""

from typing import Annotated, Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from maintenancehub.core.errors import PaymentRequired, Unauthorized
from maintenancehub.core.logging import get_logger
from maintenancehub.core.security import decode_access_token
from maintenancehub.db.session import get_db
from maintenancehub.models.company import Company
from maintenancehub.models.user import User, UserRole
from maintenancehub.services.simulation import AccessPolicy, Principal

logger = get_logger(__name__)

# tokenUrl must match the login endpoint path
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login")

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)

_STAFF_ROLES = {UserRole.admin.value, UserRole.manager.value}


async def get_token_claims(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> Dict[str, Any]:
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        logger.warning("JWT decode failed", error=str(exc))
        raise _CREDENTIALS_EXCEPTION
    if not payload.get("sub"):
        raise _CREDENTIALS_EXCEPTION
    return payload


async def get_current_user(
    claims: Annotated[Dict[str, Any], Depends(get_token_claims)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Load and return the User named by the token.
    Raises 401 if the user no longer exists.
    """
    # Always re-verify against DB so deleted users are rejected and role or
    # company changes apply immediately.
    user = await db.get(User, claims["sub"])
    if user is None:
        logger.warning("User from valid JWT not found in DB", user_id=claims["sub"])
        raise _CREDENTIALS_EXCEPTION
    return user


async def get_current_principal(
    user: Annotated[User, Depends(get_current_user)],
    claims: Annotated[Dict[str, Any], Depends(get_token_claims)],
) -> Principal:
    return Principal.from_user(user, claims)


async def get_current_company(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Optional[Company]:
    if user.company_id is None:
        return None
    return await db.get(Company, user.company_id)


async def get_access_policy(
    principal: Annotated[Principal, Depends(get_current_principal)],
    company: Annotated[Optional[Company], Depends(get_current_company)],
) -> AccessPolicy:
    return AccessPolicy.for_principal(principal, company)


def require_api_scope(scope: str):
    """
    Dependency factory: reject the request when the session's package
    (real or simulated) does not include `scope`.
    """

    async def _check(
        policy: Annotated[AccessPolicy, Depends(get_access_policy)],
    ) -> AccessPolicy:
        policy.require_scope(scope)
        return policy

    return _check


async def require_platform_admin(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    if not user.is_platform_admin:
        raise Unauthorized("Platform admin privileges required")
    return user


async def require_admin(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    if not user.is_platform_admin and user.role != UserRole.admin.value:
        raise Unauthorized("Admin privileges required")
    return user


async def require_manager_or_admin(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    if not user.is_platform_admin and user.role not in _STAFF_ROLES:
        raise Unauthorized("Manager or admin privileges required")
    return user


async def require_payment_in_good_standing(
    user: Annotated[User, Depends(get_current_user)],
    company: Annotated[Optional[Company], Depends(get_current_company)],
) -> None:
    """Block writes for customers whose company has a payment problem."""
    if user.is_platform_admin or company is None:
        return
    if company.payment_restricted:
        raise PaymentRequired(
            "Your account has a payment issue. Update your payment method on the Billing page.",
            subscription_status=company.subscription_status,
        )


def resolve_company_id(user: User, requested: Optional[str]) -> str:
    """
    The company an admin request targets: the caller's own, unless a
    platform admin names another one.
    """
    if requested is not None and requested != user.company_id:
        if not user.is_platform_admin:
            raise Unauthorized("You can only manage your own company")
        return requested
    if user.company_id is None:
        raise Unauthorized("You do not belong to a company")
    return user.company_id
