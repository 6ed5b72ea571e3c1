"""
services/seat_mutators.py
-------------------------
The only code paths that attach users to a company or create invitations.

Every mutator runs through run_seat_transaction:

  1. open a fresh session and begin a transaction
     (BEGIN IMMEDIATE on SQLite, see db/session.py)
  2. SELECT ... FOR UPDATE the company row
  3. re-read the company's users and pending invitations
  4. compute the seat breakdown and check the requested class
  5. write and commit, or raise and roll back

Seat mutations of one company are therefore linearised, and a capacity
check can never be based on rows another transaction is about to change.
A serialization failure, deadlock or lock timeout is retried once with a
new session; a second failure, or an attempt running past
SEAT_TRANSACTION_TIMEOUT_SECONDS, surfaces as ConcurrentUpdateConflict.

Platform admins pass bypass_seat_check=True (see bypass_for). Bypass skips
the seat check and the active-subscription check, nothing else.
"""

import asyncio
import secrets
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintenancehub.core.config import settings
from maintenancehub.core.errors import (
    CompanyNotFound,
    ConcurrentUpdateConflict,
    DuplicateInvitation,
    EmailAlreadyRegistered,
    InvalidOperation,
    InvitationEmailMismatch,
    InvitationExpired,
    InvitationNotFound,
    InvitationNotPending,
    LicensingError,
    SeatsExhausted,
    SubscriptionInactive,
    UserNotFound,
)
from maintenancehub.core.logging import get_logger
from maintenancehub.core.security import hash_password
from maintenancehub.db.base import as_utc, utcnow
from maintenancehub.db.session import IMMEDIATE_TRANSACTION
from maintenancehub.models.company import Company
from maintenancehub.models.invitation import Invitation, InvitationStatus
from maintenancehub.models.user import User, UserRole
from maintenancehub.services.seat_accounting import (
    RoleClass,
    SeatBreakdown,
    check_seat_capacity,
    classify_role,
    compute_seat_breakdown,
    is_invitation_live,
    lazy_expiry_cutoff,
)

logger = get_logger(__name__)

T = TypeVar("T")

SessionFactory = async_sessionmaker[AsyncSession]

# SQLSTATEs worth one more try: serialization_failure, deadlock_detected,
# lock_not_available.
_RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}
_RETRYABLE_MESSAGES = (
    "database is locked",
    "could not serialize access",
    "deadlock detected",
)


# ── Transaction runner ────────────────────────────────────────────────────────

@dataclass
class SeatContext:
    """Rows of one company as read under its lock."""

    db: AsyncSession
    company: Company
    users: List[User]
    invitations: List[Invitation]
    now: datetime
    deferred_error: Optional[LicensingError] = field(default=None)

    @property
    def breakdown(self) -> SeatBreakdown:
        return compute_seat_breakdown(
            self.company,
            self.users,
            self.invitations,
            as_of=lazy_expiry_cutoff(self.now),
        )

    def fail_after_commit(self, error: LicensingError) -> None:
        """Commit what was written so far, then raise `error` to the caller."""
        self.deferred_error = error


def is_retryable_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(fragment in message for fragment in _RETRYABLE_MESSAGES)


async def _run_attempt(
    session_factory: SessionFactory,
    company_id: str,
    fn: Callable[[SeatContext], Awaitable[T]],
) -> T:
    async with session_factory() as db:
        async with db.begin():
            await db.connection(execution_options=IMMEDIATE_TRANSACTION)

            company = (
                await db.execute(
                    select(Company).where(Company.id == company_id).with_for_update()
                )
            ).scalar_one_or_none()
            if company is None:
                raise CompanyNotFound(company_id)

            users = (
                await db.execute(select(User).where(User.company_id == company_id))
            ).scalars().all()
            invitations = (
                await db.execute(
                    select(Invitation).where(
                        Invitation.company_id == company_id,
                        Invitation.status == InvitationStatus.pending.value,
                    )
                )
            ).scalars().all()

            ctx = SeatContext(
                db=db,
                company=company,
                users=list(users),
                invitations=list(invitations),
                now=utcnow(),
            )
            result = await fn(ctx)

        if ctx.deferred_error is not None:
            raise ctx.deferred_error
        return result


async def run_seat_transaction(
    session_factory: SessionFactory,
    company_id: str,
    fn: Callable[[SeatContext], Awaitable[T]],
    *,
    operation: str = "seat_transaction",
) -> T:
    """
    Run `fn` inside a transaction holding the company's row lock.

    `fn` receives a SeatContext and may read/write through ctx.db. Raising
    rolls everything back.
    """
    for attempt in (1, 2):
        try:
            return await asyncio.wait_for(
                _run_attempt(session_factory, company_id, fn),
                timeout=settings.SEAT_TRANSACTION_TIMEOUT_SECONDS,
            )
        except DBAPIError as exc:
            if not is_retryable_conflict(exc):
                raise
            if attempt == 2:
                logger.warning(
                    "Seat transaction conflicted twice",
                    operation=operation,
                    company_id=company_id,
                    error=str(exc.orig),
                )
                raise ConcurrentUpdateConflict(
                    "The company was modified concurrently. Please retry."
                ) from exc
            logger.info(
                "Retrying seat transaction after conflict",
                operation=operation,
                company_id=company_id,
                error=str(exc.orig),
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Seat transaction timed out",
                operation=operation,
                company_id=company_id,
                timeout=settings.SEAT_TRANSACTION_TIMEOUT_SECONDS,
            )
            raise ConcurrentUpdateConflict(
                "Timed out waiting for the company lock. Please retry."
            ) from exc
    raise AssertionError("unreachable")


# ── Seat checks ───────────────────────────────────────────────────────────────

def bypass_for(user: Optional[User]) -> bool:
    """Seat bypass applies to platform admins while the feature flag is on."""
    return bool(
        user is not None
        and user.is_platform_admin
        and settings.PLATFORM_ADMIN_SEAT_BYPASS_ENABLED
    )


def _reserve_seats(
    ctx: SeatContext,
    requested: Counter,
    *,
    bypass_seat_check: bool,
    operation: str,
) -> None:
    breakdown = ctx.breakdown
    if bypass_seat_check:
        logger.info(
            "Seat check bypassed",
            operation=operation,
            company_id=ctx.company.id,
            requested={cls.value: n for cls, n in requested.items()},
            breakdown=breakdown.as_dict(),
        )
        return

    if not ctx.company.has_active_access(ctx.now):
        logger.warning(
            "Seat request rejected: subscription inactive",
            operation=operation,
            company_id=ctx.company.id,
            subscription_status=ctx.company.subscription_status,
            package_type=ctx.company.package_type,
        )
        raise SubscriptionInactive(
            "An active subscription or trial is required to add members",
            subscription_status=ctx.company.subscription_status,
        )

    for role_class in RoleClass:
        try:
            check_seat_capacity(breakdown, role_class, requested.get(role_class, 0))
        except SeatsExhausted:
            logger.warning(
                "Seat request rejected: seats exhausted",
                operation=operation,
                company_id=ctx.company.id,
                role_class=role_class.value,
                requested=requested.get(role_class, 0),
                breakdown=breakdown.as_dict(),
            )
            raise


def _normalise_role(role) -> str:
    try:
        return UserRole(role).value
    except ValueError:
        raise InvalidOperation(f"Unknown role '{role}'")


async def _flush_members(db: AsyncSession) -> None:
    # A concurrent signup with the same email can race past the pre-check
    # (it may target a different company, whose row we do not lock).
    try:
        await db.flush()
    except IntegrityError as exc:
        raise EmailAlreadyRegistered("Email is already registered") from exc


# ── Users ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NewUser:
    email: str
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


async def add_user_to_company(
    session_factory: SessionFactory,
    company_id: str,
    role,
    *,
    user_id: Optional[str] = None,
    new_user: Optional[NewUser] = None,
    bypass_seat_check: bool = False,
) -> User:
    """
    Attach a user to a company with the given role.

    Exactly one of user_id (existing user: move between companies or change
    role) and new_user (create the account) must be given. Staying in the
    same company and seat class needs no free seat.
    """
    if (user_id is None) == (new_user is None):
        raise InvalidOperation("Provide either user_id or new_user")
    role = _normalise_role(role)
    role_class = classify_role(role)

    async def assign(ctx: SeatContext) -> User:
        if user_id is not None:
            user = await ctx.db.get(User, user_id)
            if user is None:
                raise UserNotFound(user_id)
            needs_seat = not (
                user.company_id == ctx.company.id
                and classify_role(user.role) == role_class
            )
        else:
            email = new_user.email.lower()
            existing = (
                await ctx.db.execute(select(User.id).where(User.email == email))
            ).first()
            if existing is not None:
                raise EmailAlreadyRegistered(f"Email '{email}' is already registered")
            user = None
            needs_seat = True

        if needs_seat:
            _reserve_seats(
                ctx,
                Counter({role_class: 1}),
                bypass_seat_check=bypass_seat_check,
                operation="add_user_to_company",
            )

        if user is None:
            user = User(
                email=new_user.email.lower(),
                hashed_password=(
                    hash_password(new_user.password) if new_user.password else None
                ),
                first_name=new_user.first_name,
                last_name=new_user.last_name,
            )
            ctx.db.add(user)

        previous_company_id = user.company_id
        user.company_id = ctx.company.id
        user.role = role
        await _flush_members(ctx.db)

        if user not in ctx.users:
            ctx.users.append(user)
        logger.info(
            "User assigned to company",
            company_id=ctx.company.id,
            user_id=user.id,
            role=role,
            role_class=role_class.value,
            previous_company_id=previous_company_id,
            seat_required=needs_seat,
            breakdown=ctx.breakdown.as_dict(),
        )
        return user

    return await run_seat_transaction(
        session_factory, company_id, assign, operation="add_user_to_company"
    )


# ── Invitations ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class InvitationRequest:
    email: str
    role: str = UserRole.tech.value


def generate_invitation_token() -> str:
    return secrets.token_urlsafe(32)


async def create_invitations(
    session_factory: SessionFactory,
    company_id: str,
    entries: Sequence[InvitationRequest],
    *,
    invited_by: Optional[str] = None,
    bypass_seat_check: bool = False,
) -> List[Invitation]:
    """
    Invite several people at once, all-or-nothing.

    Each seat class must have at least as many available seats as the batch
    requests for it. A stale (expired but still pending) invitation for the
    same email is marked expired and replaced.
    """
    if not entries:
        raise InvalidOperation("At least one invitation is required")

    normalised = [(e.email.strip().lower(), _normalise_role(e.role)) for e in entries]
    emails = [email for email, _ in normalised]
    repeated = sorted(email for email, n in Counter(emails).items() if n > 1)
    if repeated:
        raise DuplicateInvitation(
            f"Email listed more than once: {', '.join(repeated)}", emails=repeated
        )

    async def invite(ctx: SeatContext) -> List[Invitation]:
        registered = (
            await ctx.db.execute(select(User.email).where(User.email.in_(emails)))
        ).scalars().all()
        if registered:
            raise EmailAlreadyRegistered(
                f"Already registered: {', '.join(sorted(registered))}",
                emails=sorted(registered),
            )

        for invitation in ctx.invitations:
            if invitation.email not in emails:
                continue
            if is_invitation_live(invitation, ctx.now):
                raise DuplicateInvitation(
                    f"A pending invitation already exists for '{invitation.email}'",
                    emails=[invitation.email],
                )
            invitation.status = InvitationStatus.expired.value
            logger.info(
                "Stale invitation superseded",
                company_id=ctx.company.id,
                invitation_id=invitation.id,
                email=invitation.email,
            )

        requested = Counter(classify_role(role) for _, role in normalised)
        _reserve_seats(
            ctx,
            requested,
            bypass_seat_check=bypass_seat_check,
            operation="create_invitations",
        )

        expires_at = ctx.now + timedelta(days=settings.INVITATION_TTL_DAYS)
        created = [
            Invitation(
                company_id=ctx.company.id,
                email=email,
                role=role,
                status=InvitationStatus.pending.value,
                token=generate_invitation_token(),
                expires_at=expires_at,
                invited_by=invited_by,
            )
            for email, role in normalised
        ]
        ctx.db.add_all(created)
        await ctx.db.flush()

        ctx.invitations.extend(created)
        logger.info(
            "Invitations created",
            company_id=ctx.company.id,
            count=len(created),
            requested={cls.value: n for cls, n in requested.items()},
            invited_by=invited_by,
            breakdown=ctx.breakdown.as_dict(),
        )
        return created

    return await run_seat_transaction(
        session_factory, company_id, invite, operation="create_invitations"
    )


async def create_invitation(
    session_factory: SessionFactory,
    company_id: str,
    email: str,
    role,
    *,
    invited_by: Optional[str] = None,
    bypass_seat_check: bool = False,
) -> Invitation:
    created = await create_invitations(
        session_factory,
        company_id,
        [InvitationRequest(email=email, role=role)],
        invited_by=invited_by,
        bypass_seat_check=bypass_seat_check,
    )
    return created[0]


async def accept_invitation(
    session_factory: SessionFactory,
    token: str,
    email: str,
    password: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    """
    Turn a pending invitation into a user of the inviting company.

    The invitation already holds a seat of its class, so none is required:
    the pending seat becomes a used seat in the same transaction.
    """
    async with session_factory() as db:
        company_id = (
            await db.execute(
                select(Invitation.company_id).where(Invitation.token == token)
            )
        ).scalar_one_or_none()
    if company_id is None:
        raise InvitationNotFound("Invitation not found")

    async def accept(ctx: SeatContext) -> Optional[User]:
        invitation = (
            await ctx.db.execute(select(Invitation).where(Invitation.token == token))
        ).scalar_one_or_none()
        if invitation is None:
            raise InvitationNotFound("Invitation not found")
        if invitation.status != InvitationStatus.pending.value:
            raise InvitationNotPending(
                f"Invitation is {invitation.status}", status=invitation.status
            )
        if as_utc(invitation.expires_at) <= ctx.now:
            invitation.status = InvitationStatus.expired.value
            logger.info(
                "Expired invitation presented",
                company_id=ctx.company.id,
                invitation_id=invitation.id,
            )
            ctx.fail_after_commit(InvitationExpired("Invitation has expired"))
            return None
        if invitation.email != email.strip().lower():
            raise InvitationEmailMismatch(
                "Email does not match the invitation"
            )

        existing = (
            await ctx.db.execute(select(User.id).where(User.email == invitation.email))
        ).first()
        if existing is not None:
            raise EmailAlreadyRegistered(
                f"Email '{invitation.email}' is already registered"
            )

        user = User(
            email=invitation.email,
            hashed_password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=invitation.role,
            company_id=ctx.company.id,
        )
        ctx.db.add(user)
        invitation.status = InvitationStatus.accepted.value
        await _flush_members(ctx.db)

        ctx.users.append(user)
        logger.info(
            "Invitation accepted",
            company_id=ctx.company.id,
            invitation_id=invitation.id,
            user_id=user.id,
            role=user.role,
            breakdown=ctx.breakdown.as_dict(),
        )
        return user

    return await run_seat_transaction(
        session_factory, company_id, accept, operation="accept_invitation"
    )
