"""Verification of privileged broadcast claims."""

import logging
from typing import Iterable, Optional

from ..config import DEFAULT_ADMIN_SENDER_PREFIXES
from ..interfaces import AuthAuthority
from .models import BroadcastClaim


logger = logging.getLogger(__name__)

ADMIN_BROADCAST_SENDER_ID = "admin_hq_broadcast"


def is_admin_sender_hint(sender_id: Optional[str],
                         prefixes: Iterable[str] = DEFAULT_ADMIN_SENDER_PREFIXES) -> bool:
    """Check whether a sender id claims the admin namespace.

    This is a hint only. A sender that passes it must still be confirmed
    with AdminBroadcastVerifier.
    """
    if not sender_id or not isinstance(sender_id, str):
        return False
    if sender_id == ADMIN_BROADCAST_SENDER_ID:
        return True
    return any(sender_id.startswith(prefix) for prefix in prefixes)


class AdminBroadcastVerifier:
    """Confirms that a broadcast claim comes from a real, enabled, non-anonymous principal."""

    def __init__(self, auth_authority: AuthAuthority):
        self._auth = auth_authority

    async def verify(self, claim: BroadcastClaim) -> bool:
        """Verify a claim against the authentication authority.

        Every failure resolves to False; the caller's only valid response is
        to reject the broadcast.
        """
        sender_uid = claim.sender_uid
        if not sender_uid or not isinstance(sender_uid, str):
            logger.warning("Admin broadcast claim without senderUid",
                           extra={"sender_id": claim.sender_id})
            return False

        try:
            principal = await self._auth.get_principal(sender_uid)
        except Exception as e:
            logger.error(f"Admin broadcast verification failed: {e}",
                         extra={"sender_id": claim.sender_id, "user_id": sender_uid})
            return False

        if principal is None or principal.uid != sender_uid:
            logger.warning("Admin broadcast senderUid did not resolve to the claimed principal",
                           extra={"sender_id": claim.sender_id, "user_id": sender_uid})
            return False

        if principal.disabled:
            logger.warning("Admin broadcast from disabled account",
                           extra={"sender_id": claim.sender_id, "user_id": sender_uid})
            return False

        # Admins sign in with email/password, never anonymously
        if principal.is_anonymous:
            logger.warning("Admin broadcast from anonymous account",
                           extra={"sender_id": claim.sender_id, "user_id": sender_uid})
            return False

        return True
