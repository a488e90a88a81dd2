"""Login outcome codes and result shape shared by the online and offline paths."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any


class LoginReason(Enum):
    """Closed set of login outcome codes.

    The online verifier and the offline resolver both report through this
    enum so a caller can render a single mapping table.
    """
    OK = "OK"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    TRY_AGAIN_LATER = "TRY_AGAIN_LATER"
    IDENTITY_INCOMPLETE = "IDENTITY_INCOMPLETE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    EMAIL_MISMATCH = "EMAIL_MISMATCH"
    EMAIL_NOT_CACHED = "EMAIL_NOT_CACHED"
    CACHE_EXPIRED = "CACHE_EXPIRED"


class LoginRole(Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"


class LoginSource(Enum):
    SERVER = "server"
    SESSION = "session"
    TOUR_PACK = "tourPack"


# User-facing copy for each failure reason
REASON_MESSAGES: Dict[LoginReason, str] = {
    LoginReason.INVALID_INPUT: "Please enter your booking reference and email.",
    LoginReason.INVALID_CREDENTIALS: "We couldn't verify those booking details.",
    LoginReason.TRY_AGAIN_LATER: "Too many attempts. Please wait a minute and try again.",
    LoginReason.IDENTITY_INCOMPLETE: "This booking is not linked to a tour yet.",
    LoginReason.INTERNAL_ERROR: "Something went wrong. Please try again.",
    LoginReason.EMAIL_MISMATCH: "Booking email does not match this cached trip.",
    LoginReason.EMAIL_NOT_CACHED: "No cached trip found for this code; reconnect once to verify.",
    LoginReason.CACHE_EXPIRED: "Offline cache expired; reconnect once to refresh your trip.",
}


def normalize_email(email: Any) -> str:
    """Trim and lower-case an email; non-strings normalize to an empty string."""
    if not isinstance(email, str):
        return ""
    return email.strip().lower()


def normalize_reference(reference: Any) -> str:
    """Trim and upper-case a booking reference; non-strings normalize to an empty string."""
    if not isinstance(reference, str):
        return ""
    return reference.strip().upper()


def role_for_reference(normalized_reference: str) -> LoginRole:
    return LoginRole.DRIVER if normalized_reference.startswith("D-") else LoginRole.PASSENGER


@dataclass
class BookingIdentity:
    """Server-side booking identity record keyed by booking reference."""
    booking_ref: str
    email: Optional[str] = None
    tour_id: Optional[str] = None
    tour_code: Optional[str] = None


@dataclass
class LoginResult:
    """Outcome of a login attempt, identical in shape for every source."""
    success: bool
    reason: LoginReason
    type: Optional[LoginRole] = None
    source: Optional[LoginSource] = None
    booking_ref: Optional[str] = None
    tour_id: Optional[str] = None
    tour_code: Optional[str] = None
    identity: Dict[str, Any] = field(default_factory=dict)
    tour: Optional[Dict[str, Any]] = None

    @property
    def message(self) -> Optional[str]:
        return REASON_MESSAGES.get(self.reason)

    @classmethod
    def failure(cls, reason: LoginReason, role: Optional[LoginRole] = None,
                source: Optional[LoginSource] = None) -> "LoginResult":
        return cls(success=False, reason=reason, type=role, source=source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.success,
            "reason": self.reason.value,
            "type": self.type.value if self.type else None,
            "source": self.source.value if self.source else None,
            "bookingRef": self.booking_ref,
            "tourId": self.tour_id,
            "tourCode": self.tour_code,
        }
