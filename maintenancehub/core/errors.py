"""
core/errors.py
--------------
Domain error taxonomy for the licensing core.

Services raise these; they never build HTTP responses. main.py registers a
single exception handler that renders every LicensingError as

    {"detail": <message>, "code": <code>, **extra}

with the error's status_code, so the front end can branch on `code`
(e.g. render "0 of 3 manager seats available") instead of parsing text.
"""

from typing import Any, Dict, Optional

from fastapi import status


class LicensingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "licensing_error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


# ── Seat accounting ───────────────────────────────────────────────────────────

class SeatsExhausted(LicensingError):
    status_code = status.HTTP_409_CONFLICT
    code = "seats_exhausted"

    def __init__(self, role_class: str, requested: int, breakdown: Any) -> None:
        self.role_class = role_class
        self.requested = requested
        self.breakdown = breakdown
        available = breakdown.available.for_class(role_class)
        purchased = breakdown.purchased.for_class(role_class)
        super().__init__(
            f"No available {role_class} seats ({available} of {purchased} available, "
            f"{requested} requested). Purchase more seats on the Billing page.",
            role_class=role_class,
            requested=requested,
            breakdown=breakdown.as_dict(),
        )


class ConcurrentUpdateConflict(LicensingError):
    status_code = status.HTTP_409_CONFLICT
    code = "concurrent_update_conflict"


class SubscriptionInactive(LicensingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "subscription_inactive"


class PaymentRequired(LicensingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "payment_required"


# ── Lookups ───────────────────────────────────────────────────────────────────

class CompanyNotFound(LicensingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "company_not_found"

    def __init__(self, company_id: Optional[str]) -> None:
        super().__init__(f"Company '{company_id}' not found")


class UserNotFound(LicensingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "user_not_found"

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User '{user_id}' not found")


class InvitationNotFound(LicensingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "invitation_not_found"


# ── Invitations / membership ──────────────────────────────────────────────────

class DuplicateInvitation(LicensingError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_invitation"


class EmailAlreadyRegistered(LicensingError):
    status_code = status.HTTP_409_CONFLICT
    code = "email_already_registered"


class InvitationNotPending(LicensingError):
    code = "invitation_not_pending"


class InvitationExpired(LicensingError):
    code = "invitation_expired"


class InvitationEmailMismatch(LicensingError):
    code = "invitation_email_mismatch"


# ── Authorization ─────────────────────────────────────────────────────────────

class Unauthorized(LicensingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "unauthorized"


class PackageRestricted(LicensingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "package_restricted"

    def __init__(self, package_type: str, scope: str) -> None:
        super().__init__(
            "This feature is not available in your subscription plan",
            package_type=package_type,
            scope=scope,
            upgrade_url="/billing",
        )


class InvalidOperation(LicensingError):
    code = "invalid_operation"
