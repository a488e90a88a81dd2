"""Input validation for fan-out events."""

import re
from typing import Any, List

from pydantic import ValidationError

from ..exceptions import InvalidKeyError, PayloadValidationError
from .models import ChatMessagePayload


# Store keys cannot contain '.', '$', '#', '[', ']' or '/'
_RESERVED_KEY_CHARS = re.compile(r"[./$#\[\]]")


def is_valid_store_key(key: Any) -> bool:
    if not isinstance(key, str) or not key.strip():
        return False
    return _RESERVED_KEY_CHARS.search(key) is None


def require_store_key(key: Any, field_name: str = "key") -> str:
    if not is_valid_store_key(key):
        raise InvalidKeyError(key, field_name)
    return key


def validate_chat_payload(payload: Any, max_length: int = 10000) -> ChatMessagePayload:
    """Validate a raw chat message payload.

    Args:
        payload: Raw message data as written by the client
        max_length: Maximum accepted message text length

    Returns:
        The validated payload

    Raises:
        PayloadValidationError: With every problem found, not just the first
    """
    if payload is None:
        raise PayloadValidationError(["Message data is null or undefined"])
    if not isinstance(payload, dict):
        raise PayloadValidationError([f"Message data must be an object, got {type(payload).__name__}"])

    try:
        message = ChatMessagePayload.model_validate(payload)
    except ValidationError as e:
        errors: List[str] = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"]) or "payload"
            errors.append(f"Invalid or missing {location}: {error['msg']}")
        raise PayloadValidationError(errors) from e

    if len(message.text) > max_length:
        raise PayloadValidationError(
            [f"Message text exceeds maximum length ({max_length} characters)"])

    return message
