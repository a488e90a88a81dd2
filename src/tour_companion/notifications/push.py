"""Expo push gateway client and push token helpers."""

import asyncio
import logging
import re
from typing import Any, List, Optional

import requests
from requests import Session

from ..exceptions import PushTransportError
from ..interfaces import PushTransport
from .models import PushMessage, PushTicket


logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
MAX_CHUNK_SIZE = 100

_EXPO_TOKEN_PATTERN = re.compile(r"^Expo(nent)?PushToken\[.+\]$")
_UUID_TOKEN_PATTERN = re.compile(
    r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


def is_valid_push_token(token: Any) -> bool:
    """Check whether a value looks like an Expo push token."""
    if not token or not isinstance(token, str):
        return False
    return bool(_EXPO_TOKEN_PATTERN.match(token) or _UUID_TOKEN_PATTERN.match(token))


def chunk_messages(messages: List[PushMessage], chunk_size: int = MAX_CHUNK_SIZE) -> List[List[PushMessage]]:
    """Partition messages into batches no larger than the gateway accepts."""
    size = max(1, min(chunk_size, MAX_CHUNK_SIZE))
    return [messages[i:i + size] for i in range(0, len(messages), size)]


class ExpoPushTransport(PushTransport):
    """Sends push batches to the Expo push API."""

    def __init__(self, push_url: str = EXPO_PUSH_URL, timeout_seconds: float = 10.0,
                 chunk_size: int = MAX_CHUNK_SIZE, access_token: Optional[str] = None,
                 session: Optional[Session] = None):
        """Initialize the transport.

        Args:
            push_url: Expo push endpoint
            timeout_seconds: HTTP timeout per batch
            chunk_size: Maximum messages per batch
            access_token: Optional Expo access token for enhanced push security
            session: Optional preconfigured requests session
        """
        self.push_url = push_url
        self.timeout_seconds = timeout_seconds
        self.chunk_size = chunk_size
        self.session = session or Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        })
        if access_token:
            self.session.headers["Authorization"] = f"Bearer {access_token}"

    def chunk(self, messages: List[PushMessage]) -> List[List[PushMessage]]:
        return chunk_messages(messages, self.chunk_size)

    async def send(self, messages: List[PushMessage]) -> List[PushTicket]:
        if not messages:
            return []
        return await asyncio.to_thread(self._send_sync, messages)

    def _send_sync(self, messages: List[PushMessage]) -> List[PushTicket]:
        try:
            response = self.session.post(
                self.push_url,
                json=[message.to_payload() for message in messages],
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise PushTransportError(len(messages), str(e)) from e
        except ValueError as e:
            raise PushTransportError(len(messages), f"invalid JSON response: {e}") from e

        if not isinstance(body, dict):
            raise PushTransportError(len(messages), "unexpected response shape")

        if body.get("errors"):
            raise PushTransportError(len(messages), f"gateway errors: {body['errors']}")

        data = body.get("data")
        if not isinstance(data, list) or len(data) != len(messages):
            raise PushTransportError(
                len(messages),
                f"expected {len(messages)} tickets, got {len(data) if isinstance(data, list) else 'none'}")

        return [PushTicket.from_payload(ticket) for ticket in data]
