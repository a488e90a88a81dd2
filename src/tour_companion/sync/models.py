"""Data models for the client-side offline cache."""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from ..login.results import normalize_email, normalize_reference

SCHEMA_VERSION = 1


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    """Read an optional object section; anything other than an object is rejected."""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be an object, got {type(value).__name__}")
    return value


@dataclass
class CachedIdentity:
    """Last server-confirmed login identity.

    Attributes:
        booking_reference: Normalized (trimmed, upper-cased) booking reference
        normalized_email: Normalized (trimmed, lower-cased) email
        tour_id: Tour the identity was confirmed against
        driver_flag: Whether the identity belongs to a driver
        profile: Display fields captured at login time
    """
    booking_reference: str
    normalized_email: str
    tour_id: Optional[str] = None
    driver_flag: bool = False
    profile: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.booking_reference = normalize_reference(self.booking_reference)
        self.normalized_email = normalize_email(self.normalized_email)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookingReference": self.booking_reference,
            "normalizedEmail": self.normalized_email,
            "tourId": self.tour_id,
            "driverFlag": self.driver_flag,
            "profile": self.profile,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedIdentity":
        return cls(
            booking_reference=data.get("bookingReference", ""),
            normalized_email=data.get("normalizedEmail", ""),
            tour_id=data.get("tourId"),
            driver_flag=bool(data.get("driverFlag", False)),
            profile=_section(data, "profile"),
        )


@dataclass
class TourPack:
    """Bundle of everything needed to operate a tour without connectivity.

    ``booking`` carries ``id`` and ``normalizedEmail`` for passenger packs;
    ``driver_info`` carries ``id`` for driver packs.
    """
    tour_id: str
    role: str = "passenger"
    tour: Dict[str, Any] = field(default_factory=dict)
    booking: Dict[str, Any] = field(default_factory=dict)
    itinerary: Dict[str, Any] = field(default_factory=dict)
    driver_info: Dict[str, Any] = field(default_factory=dict)
    last_synced_at: Optional[str] = None
    schema_version: int = SCHEMA_VERSION

    def identity_for_role(self) -> Dict[str, Any]:
        return self.driver_info if self.role == "driver" else self.booking

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tourId": self.tour_id,
            "role": self.role,
            "tour": self.tour,
            "booking": self.booking,
            "itinerary": self.itinerary,
            "driverInfo": self.driver_info,
            "lastSyncedAt": self.last_synced_at,
            "schemaVersion": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TourPack":
        return cls(
            tour_id=data["tourId"],
            role=data.get("role", "passenger"),
            tour=_section(data, "tour"),
            booking=_section(data, "booking"),
            itinerary=_section(data, "itinerary"),
            driver_info=_section(data, "driverInfo"),
            last_synced_at=data.get("lastSyncedAt"),
            schema_version=int(data.get("schemaVersion", SCHEMA_VERSION)),
        )


@dataclass
class TourPackMeta:
    tour_id: str
    role: str
    last_synced_at: str
    schema_version: int = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tourId": self.tour_id,
            "role": self.role,
            "lastSyncedAt": self.last_synced_at,
            "schemaVersion": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TourPackMeta":
        return cls(
            tour_id=data["tourId"],
            role=data.get("role", "passenger"),
            last_synced_at=data["lastSyncedAt"],
            schema_version=int(data.get("schemaVersion", SCHEMA_VERSION)),
        )
