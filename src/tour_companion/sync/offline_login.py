"""Offline login resolution from the local cache."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..exceptions import CacheStorageError
from ..login.results import (
    LoginReason, LoginResult, LoginRole, LoginSource,
    normalize_email, normalize_reference, role_for_reference
)
from .cache_store import OfflineCacheStore
from .status import parse_timestamp


logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = timedelta(days=30)


def mask_identifier(value: str) -> str:
    """Keep the first and last two characters of an identifier for logs."""
    if len(value) <= 4:
        return "*" * len(value)
    return f"{value[:2]}{'*' * (len(value) - 4)}{value[-2:]}"


class OfflineLoginResolver:
    """Resolves a login from cached state when the backend cannot be reached.

    The session identity is consulted first. When it matches the reference
    it is final: an email mismatch there is never overridden by a tour pack,
    which may be even older.
    """

    def __init__(self, cache_store: OfflineCacheStore,
                 cache_ttl: timedelta = DEFAULT_CACHE_TTL,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        """Initialize the resolver.

        Args:
            cache_store: Offline cache to read from
            cache_ttl: Maximum age of a tour pack accepted for offline login
            clock: Clock used to evaluate the TTL
        """
        self._cache = cache_store
        self._cache_ttl = cache_ttl
        self._clock = clock

    def resolve(self, reference: str, normalized_email: str,
                tour_id: Optional[str] = None) -> LoginResult:
        """Resolve a login from cache.

        Args:
            reference: Booking reference as typed by the user
            normalized_email: Email as supplied at login time
            tour_id: Tour to consult when no session identity names one

        Returns:
            LoginResult with ``source`` set to ``session`` or ``tourPack`` on success
        """
        ref = normalize_reference(reference)
        if not ref:
            return LoginResult.failure(LoginReason.INVALID_INPUT)

        email = normalize_email(normalized_email)
        role = role_for_reference(ref)

        try:
            return self._resolve(ref, email, role, tour_id)
        except CacheStorageError as e:
            logger.warning(f"Offline login check failed for {mask_identifier(ref)}: {e.message}")
            return LoginResult.failure(LoginReason.INTERNAL_ERROR, role=role)
        except Exception as e:
            logger.error(f"Unexpected error in offline login for {mask_identifier(ref)}: {e}",
                         exc_info=True)
            return LoginResult.failure(LoginReason.INTERNAL_ERROR, role=role)

    def _emails_match(self, role: LoginRole, cached_email: object, email: str) -> bool:
        # Drivers authenticate by code only
        if role == LoginRole.DRIVER:
            return True
        cached = normalize_email(cached_email)
        return bool(cached) and cached == email

    def _is_expired(self, last_synced_at: object) -> bool:
        synced = parse_timestamp(last_synced_at)
        if synced is None:
            return False
        return self._clock() - synced > self._cache_ttl

    def _resolve(self, ref: str, email: str, role: LoginRole,
                 tour_id: Optional[str]) -> LoginResult:
        identity = self._cache.read_cached_identity()

        if identity is not None and identity.booking_reference == ref:
            if not self._emails_match(role, identity.normalized_email, email):
                logger.info(f"Offline login email mismatch for session {mask_identifier(ref)}")
                return LoginResult.failure(LoginReason.EMAIL_MISMATCH, role=role,
                                           source=LoginSource.SESSION)

            pack = self._cache.read_tour_pack(identity.tour_id, role.value) if identity.tour_id else None
            return LoginResult(
                success=True,
                reason=LoginReason.OK,
                type=role,
                source=LoginSource.SESSION,
                booking_ref=ref,
                tour_id=identity.tour_id,
                identity=identity.to_dict(),
                tour=pack.tour if pack else None,
            )

        cached_tour_id = tour_id or (identity.tour_id if identity else None)
        if not cached_tour_id:
            return LoginResult.failure(LoginReason.EMAIL_NOT_CACHED, role=role)

        meta = self._cache.read_meta(cached_tour_id, role.value)
        if meta is not None and self._is_expired(meta.last_synced_at):
            logger.info(f"Offline cache for tour {cached_tour_id} expired",
                        extra={"tour_id": cached_tour_id})
            return LoginResult.failure(LoginReason.CACHE_EXPIRED, role=role,
                                       source=LoginSource.TOUR_PACK)

        pack = self._cache.read_tour_pack(cached_tour_id, role.value)
        if pack is not None:
            pack_identity = pack.identity_for_role()
            if normalize_reference(pack_identity.get("id")) == ref:
                if not self._emails_match(role, pack_identity.get("normalizedEmail"), email):
                    logger.info(f"Offline login email mismatch for tour pack {mask_identifier(ref)}")
                    return LoginResult.failure(LoginReason.EMAIL_MISMATCH, role=role,
                                               source=LoginSource.TOUR_PACK)

                return LoginResult(
                    success=True,
                    reason=LoginReason.OK,
                    type=role,
                    source=LoginSource.TOUR_PACK,
                    booking_ref=ref,
                    tour_id=pack.tour_id,
                    identity=dict(pack_identity),
                    tour=pack.tour,
                )

        return LoginResult.failure(LoginReason.EMAIL_NOT_CACHED, role=role)
