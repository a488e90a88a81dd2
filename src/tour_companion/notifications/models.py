"""Data models for notification fan-out."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, ConfigDict, Field


class EventKind(Enum):
    """Kinds of data-change events that trigger a fan-out."""
    CHAT_MESSAGE = "chat_message"
    ITINERARY_UPDATE = "itinerary_update"


class NotificationCategory(Enum):
    """Preference keys under a user's ``preferences.ops`` map."""
    GROUP_CHAT = "group_chat"
    DRIVER_UPDATES = "driver_updates"
    ITINERARY_CHANGES = "itinerary_changes"


class TicketStatus(Enum):
    """Delivery ticket status returned by the push gateway."""
    OK = "ok"
    ERROR = "error"


@dataclass
class TourRecord:
    """The fields of a tour the fan-out needs."""
    tour_id: str
    name: Optional[str] = None
    is_active: bool = True


@dataclass
class DeviceProfile:
    """A user's push token and nested notification preferences."""
    user_id: str
    push_token: Optional[str] = None
    preferences: Dict[str, Any] = field(default_factory=dict)

    def wants(self, category: NotificationCategory) -> bool:
        """Check the ops preference flag for a category; missing flags default to on."""
        ops = self.preferences.get("ops") if isinstance(self.preferences, dict) else None
        if not isinstance(ops, dict):
            return True
        value = ops.get(category.value)
        return True if value is None else bool(value)


@dataclass
class PrincipalRecord:
    """A principal as reported by the authentication authority."""
    uid: str
    disabled: bool = False
    provider_ids: List[str] = field(default_factory=list)

    @property
    def is_anonymous(self) -> bool:
        # Anonymous sign-ins carry no linked provider
        return len(self.provider_ids) == 0


@dataclass
class BroadcastClaim:
    """The untrusted sender fields of an event payload."""
    sender_id: str
    sender_uid: Optional[str]
    text: str
    message_type: Optional[str] = None


@dataclass
class PushRecipient:
    """A participant eligible to receive a message in this cycle."""
    user_id: str
    token: str
    preference_flags: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PushMessage:
    """A single message addressed to one device token."""
    to: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    sound: str = "default"
    priority: str = "default"
    channel_id: str = "default"

    def to_payload(self) -> Dict[str, Any]:
        """Convert to the Expo push API payload format."""
        return {
            "to": self.to,
            "sound": self.sound,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "priority": self.priority,
            "channelId": self.channel_id,
        }


@dataclass
class PushTicket:
    """Per-message delivery ticket."""
    status: TicketStatus
    ticket_id: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_ok(self) -> bool:
        return self.status == TicketStatus.OK

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PushTicket":
        status = TicketStatus.OK if payload.get("status") == "ok" else TicketStatus.ERROR
        return cls(
            status=status,
            ticket_id=payload.get("id"),
            message=payload.get("message"),
            details=payload.get("details") or {},
        )


@dataclass
class FanoutEvent:
    """Single input struct for one fan-out invocation."""
    kind: EventKind
    tour_id: Any
    message_id: Any = None
    payload: Any = None


@dataclass
class FanoutResult:
    """Single result struct for one fan-out invocation."""
    kind: EventKind
    tour_id: Any
    dispatched: bool = False
    aborted_reason: Optional[str] = None
    recipient_count: int = 0
    success_count: int = 0
    error_count: int = 0
    invalid_token_count: int = 0
    elapsed_ms: float = 0.0
    is_admin_broadcast: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value if isinstance(self.kind, EventKind) else str(self.kind),
            "tour_id": self.tour_id,
            "dispatched": self.dispatched,
            "aborted_reason": self.aborted_reason,
            "recipient_count": self.recipient_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "invalid_token_count": self.invalid_token_count,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "is_admin_broadcast": self.is_admin_broadcast,
        }


# Pydantic models for inbound payload validation

class ChatMessagePayload(BaseModel):
    """A chat message as written to ``chats/{tourId}/messages/{messageId}``."""
    model_config = ConfigDict(extra="allow", populate_by_name=True, strict=True)

    sender_id: str = Field(alias="senderId", min_length=1)
    sender_name: str = Field(alias="senderName", min_length=1)
    text: str = Field(min_length=1)
    sender_uid: Optional[str] = Field(default=None, alias="senderUid")
    message_type: Optional[str] = Field(default=None, alias="messageType")

    def to_claim(self) -> BroadcastClaim:
        return BroadcastClaim(
            sender_id=self.sender_id,
            sender_uid=self.sender_uid,
            text=self.text,
            message_type=self.message_type,
        )
