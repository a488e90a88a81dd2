"""Base interfaces for the collaborators the core talks to."""

from abc import ABC, abstractmethod
from typing import List, Optional, Any

from .login.results import BookingIdentity
from .notifications.models import (
    TourRecord, DeviceProfile, PrincipalRecord, PushMessage, PushTicket
)


class KeyValueStore(ABC):
    """Interface for the client's local durable storage of whole JSON blobs."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the raw stored value for a key, or None."""
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Replace the value for a key as a single write."""
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove a key if present."""
        pass


class ParticipantRoster(ABC):
    """Interface for tour and participant lookups in the backend store."""

    @abstractmethod
    async def get_tour(self, tour_id: str) -> Optional[TourRecord]:
        """Get the tour record, or None if the tour does not exist."""
        pass

    @abstractmethod
    async def list_participants(self, tour_id: str) -> List[str]:
        """Get the participant ids of a tour."""
        pass

    @abstractmethod
    async def is_participant(self, tour_id: str, user_id: str) -> bool:
        """Check whether a user is a participant of a tour."""
        pass


class AuthAuthority(ABC):
    """Interface for the authentication authority."""

    @abstractmethod
    async def get_principal(self, uid: str) -> PrincipalRecord:
        """Look up a principal; raises if the uid is unknown."""
        pass


class DeviceTokenRegistry(ABC):
    """Interface for per-user push tokens and notification preferences."""

    @abstractmethod
    async def get_device_profile(self, user_id: str) -> Optional[DeviceProfile]:
        """Get the device profile of a user, or None if the user has none."""
        pass

    @abstractmethod
    async def remove_push_token(self, user_id: str) -> None:
        """Remove the stored push token of a user."""
        pass


class PushTransport(ABC):
    """Interface for the push gateway."""

    @abstractmethod
    async def send(self, messages: List[PushMessage]) -> List[PushTicket]:
        """Send one batch and return one ticket per message, in order."""
        pass

    @abstractmethod
    def chunk(self, messages: List[PushMessage]) -> List[List[PushMessage]]:
        """Partition messages into provider-safe batches."""
        pass


class BookingIdentityDirectory(ABC):
    """Interface for server-side booking identity lookups."""

    @abstractmethod
    async def get_booking_identity(self, booking_ref: str) -> Optional[BookingIdentity]:
        """Get the booking identity for a normalized reference, or None."""
        pass


class AppCheckVerifier(ABC):
    """Interface for verifying client attestation tokens before login."""

    @abstractmethod
    async def verify_token(self, token: str) -> Any:
        """Verify a token; raises if the token is not valid."""
        pass
