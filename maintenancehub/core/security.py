"""
core/security.py
----------------
Password hashing and session-token utilities.

The JWT is the session. Besides identity (sub, company_id, role,
platform_role) it carries the platform-admin simulation state (sim_role,
sim_package), so a simulation lives only in the session that asked for it
and never touches the User or Company rows. Switching a simulation means
issuing a new token.

Tokens are signed with HS256; swap to RS256 for multi-service setups.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt
from passlib.context import CryptContext

from maintenancehub.core.config import settings

SIM_ROLE_CLAIM = "sim_role"
SIM_PACKAGE_CLAIM = "sim_package"

# bcrypt, work factor 12
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)


# ── Passwords ─────────────────────────────────────────────────────────────────

def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    """False for accounts without a password (created by an admin, never activated)."""
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


# ── Session tokens ────────────────────────────────────────────────────────────

def create_access_token(
    subject: str,
    company_id: Optional[str],
    role: str,
    platform_role: str,
    simulated_role: Optional[str] = None,
    simulated_package: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Mint a session token for user `subject`.

    role and company_id are informational: every request re-reads them from
    the database. The simulation claims are only honoured for users who are
    platform admins at the time of the request.
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims: Dict[str, Any] = {
        "sub": subject,
        "company_id": company_id,
        "role": role,
        "platform_role": platform_role,
        SIM_ROLE_CLAIM: simulated_role,
        SIM_PACKAGE_CLAIM: simulated_package,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Raises JWTError when the token is invalid, expired or tampered with."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
