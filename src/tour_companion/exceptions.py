"""Custom exceptions for sync and notification operations."""

from typing import Optional, Dict, Any, List
from datetime import datetime


class CompanionError(Exception):
    """Base exception for tour companion errors."""

    def __init__(self, message: str, error_code: str = "companion_error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


class InvalidKeyError(CompanionError):
    """Raised when a store key contains path delimiters or reserved characters."""

    def __init__(self, key: Any, field_name: str = "key"):
        message = f"Invalid store key for {field_name}: {key!r}"
        details = {
            "field": field_name,
            "key": key if isinstance(key, str) else repr(key)
        }
        super().__init__(message, "invalid_key", details)


class PayloadValidationError(CompanionError):
    """Raised when an event payload is structurally invalid."""

    def __init__(self, errors: List[str]):
        message = f"Payload validation failed: {'; '.join(errors)}"
        details = {
            "errors": errors,
            "error_count": len(errors)
        }
        super().__init__(message, "invalid_payload", details)


class RateLimitExceededError(CompanionError):
    """Raised when a rate-limit budget is exhausted for a key."""

    def __init__(self, key: str, max_requests: int, window_ms: int):
        message = f"Rate limit exceeded for {key}: {max_requests} requests per {window_ms}ms"
        details = {
            "rate_limit_key": key,
            "max_requests": max_requests,
            "window_ms": window_ms
        }
        super().__init__(message, "rate_limited", details)


class SenderAuthorizationError(CompanionError):
    """Raised when the sender of an event cannot be authorized."""

    def __init__(self, tour_id: str, sender_id: str, reason: str,
                 claimed_admin: bool = False):
        message = f"Sender {sender_id} not authorized for tour {tour_id}: {reason}"
        details = {
            "tour_id": tour_id,
            "sender_id": sender_id,
            "reason": reason,
            "claimed_admin": claimed_admin
        }
        super().__init__(message, "unauthorized_sender", details)


class TourNotFoundError(CompanionError):
    """Raised when the tour an event refers to does not exist."""

    def __init__(self, tour_id: str):
        super().__init__(f"Tour not found: {tour_id}", "tour_not_found", {"tour_id": tour_id})


class PushTransportError(CompanionError):
    """Raised when a push batch cannot be delivered to the gateway."""

    def __init__(self, batch_size: int, reason: str):
        message = f"Push transport failed for batch of {batch_size}: {reason}"
        details = {
            "batch_size": batch_size,
            "reason": reason
        }
        super().__init__(message, "push_transport_failed", details)


class CacheStorageError(CompanionError):
    """Raised when the local durable storage cannot be read or written."""

    def __init__(self, key: str, operation: str, reason: str):
        message = f"Cache storage {operation} failed for {key}: {reason}"
        details = {
            "key": key,
            "operation": operation,
            "reason": reason
        }
        super().__init__(message, "cache_storage_error", details)


class PatchConflictError(CompanionError):
    """Raised when a patch set cannot be applied as a whole."""

    def __init__(self, path: str, reason: str):
        message = f"Patch could not be applied at {path}: {reason}"
        details = {
            "path": path,
            "reason": reason
        }
        super().__init__(message, "patch_conflict", details)
