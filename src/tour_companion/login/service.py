"""Online passenger login verification."""

import logging
from typing import Any, Iterable, Mapping, Optional

from ..config import CompanionConfig
from ..interfaces import AppCheckVerifier, BookingIdentityDirectory
from ..notifications.rate_limiter import RateLimiter
from ..notifications.validation import is_valid_store_key
from .results import (
    LoginReason, LoginResult, LoginRole, LoginSource, normalize_email, normalize_reference
)


logger = logging.getLogger(__name__)


class AllowListAppCheckVerifier(AppCheckVerifier):
    """Accepts attestation tokens from a fixed allow list.

    Stands in for the hosted attestation service in self-hosted deployments
    and tests.
    """

    def __init__(self, tokens: Iterable[str]):
        self._tokens = {token.strip() for token in tokens if token and token.strip()}

    async def verify_token(self, token: str) -> Any:
        if token not in self._tokens:
            raise ValueError("App Check token not recognized")
        return {"token": token}


def get_request_client_key(headers: Mapping[str, str], peer_host: Optional[str] = None) -> str:
    """Build the rate-limit key for a login request.

    Args:
        headers: Request headers (case-insensitive mapping)
        peer_host: Address of the direct peer, used without X-Forwarded-For

    Returns:
        ``"{client ip}:{client id or user agent}"``
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        client_ip = forwarded_for.split(",")[0].strip()
    else:
        client_ip = peer_host or "unknown"

    user_agent = headers.get("user-agent") or "unknown"
    explicit_client_id = (headers.get("x-client-id") or "").strip()

    return f"{client_ip}:{explicit_client_id or user_agent}"


class PassengerLoginService:
    """Verifies a booking reference and email against the booking directory.

    Unknown bookings and email mismatches both report INVALID_CREDENTIALS so
    the endpoint cannot be used to enumerate booking references. The actual
    cause is logged.
    """

    def __init__(self, directory: BookingIdentityDirectory, rate_limiter: RateLimiter,
                 app_check: Optional[AppCheckVerifier] = None,
                 config: Optional[CompanionConfig] = None):
        """Initialize the login service.

        Args:
            directory: Server-side booking identity lookups
            rate_limiter: Shared fixed-window limiter
            app_check: Attestation verifier, required when config demands App Check
            config: Login budget and App Check settings (defaults if None)
        """
        self._directory = directory
        self._rate_limiter = rate_limiter
        self._app_check = app_check
        self._config = config or CompanionConfig()

    async def verify(self, booking_ref: Any, email: Any, client_key: str = "unknown",
                     app_check_token: Optional[str] = None) -> LoginResult:
        """Verify a passenger login.

        Args:
            booking_ref: Booking reference as typed by the passenger
            email: Email as typed by the passenger
            client_key: Rate-limit key for the caller
            app_check_token: Client attestation token, if any

        Returns:
            LoginResult with source ``server``
        """
        if not self._rate_limiter.allow(f"verify_passenger_login_{client_key}",
                                        self._config.login_rate_limit_max,
                                        self._config.login_rate_limit_window_ms):
            logger.warning(f"Passenger login rate limit exceeded for {client_key}")
            return self._failure(LoginReason.TRY_AGAIN_LATER)

        reference = normalize_reference(booking_ref)
        normalized_email = normalize_email(email)
        if not reference or not normalized_email:
            return self._failure(LoginReason.INVALID_INPUT)

        if not is_valid_store_key(reference):
            logger.warning(f"Passenger login rejected: malformed booking reference from {client_key}")
            return self._failure(LoginReason.INVALID_INPUT)

        try:
            if self._config.require_app_check and not await self._app_check_passes(
                    app_check_token, client_key, reference):
                return self._failure(LoginReason.INVALID_CREDENTIALS)

            identity = await self._directory.get_booking_identity(reference)
            if identity is None:
                logger.warning(f"Passenger login verification failed for {reference}: BOOKING_NOT_FOUND")
                return self._failure(LoginReason.INVALID_CREDENTIALS)

            stored_email = normalize_email(identity.email)
            if not stored_email or stored_email != normalized_email:
                logger.warning(f"Passenger login verification failed for {reference}: EMAIL_MISMATCH")
                return self._failure(LoginReason.INVALID_CREDENTIALS)

            resolved_ref = normalize_reference(identity.booking_ref or reference)
            tour_id = identity.tour_id.strip() if isinstance(identity.tour_id, str) else ""
            tour_code = identity.tour_code.strip() if isinstance(identity.tour_code, str) else ""

            if not resolved_ref or (not tour_id and not tour_code):
                logger.warning(f"Booking identity {reference} is missing essential identifiers")
                return self._failure(LoginReason.IDENTITY_INCOMPLETE)

            logger.info(f"Passenger login verified for {resolved_ref}")
            return LoginResult(
                success=True,
                reason=LoginReason.OK,
                type=LoginRole.PASSENGER,
                source=LoginSource.SERVER,
                booking_ref=resolved_ref,
                tour_id=tour_id or None,
                tour_code=tour_code or None,
                identity={"bookingRef": resolved_ref, "email": stored_email},
            )
        except Exception as e:
            logger.error(f"Passenger login verification failed for {reference}: {e}", exc_info=True)
            return self._failure(LoginReason.INTERNAL_ERROR)

    async def _app_check_passes(self, token: Optional[str], client_key: str, reference: str) -> bool:
        if not isinstance(token, str) or not token.strip():
            logger.warning(f"Passenger login rejected for {reference}: missing App Check token ({client_key})")
            return False

        if self._app_check is None:
            logger.error("App Check is required but no verifier is configured")
            return False

        try:
            await self._app_check.verify_token(token.strip())
        except Exception as e:
            logger.warning(f"Passenger login rejected for {reference}: invalid App Check token ({e})")
            return False
        return True

    @staticmethod
    def _failure(reason: LoginReason) -> LoginResult:
        return LoginResult.failure(reason, LoginRole.PASSENGER, LoginSource.SERVER)
