"""Notification fan-out for chat messages and itinerary changes."""

import asyncio
import logging
import re
import time
from typing import Dict, List, Optional, Set, Tuple

from ..config import CompanionConfig
from ..exceptions import (
    CompanionError, InvalidKeyError, PayloadValidationError, RateLimitExceededError,
    SenderAuthorizationError, TourNotFoundError
)
from ..interfaces import ParticipantRoster, DeviceTokenRegistry, PushTransport
from ..logging_config import (
    PerformanceTimer, log_batch_metrics, log_fanout_summary, log_spoof_rejection
)
from .models import (
    EventKind, FanoutEvent, FanoutResult, NotificationCategory, PushMessage, PushRecipient,
    ChatMessagePayload
)
from .push import is_valid_push_token
from .rate_limiter import RateLimiter
from .validation import require_store_key, validate_chat_payload
from .verifier import AdminBroadcastVerifier, is_admin_sender_hint


logger = logging.getLogger(__name__)

ANNOUNCEMENT_PREFIX = re.compile(r"^ANNOUNCEMENT:\s*", re.IGNORECASE)
DEVICE_NOT_REGISTERED = "DeviceNotRegistered"


def truncate_body(text: str, limit: int = 200) -> str:
    """Cut text to ``limit`` characters, ending in an ellipsis when shortened."""
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


class NotificationFanoutService:
    """Turns one data-change event into individually addressed push messages.

    Each invocation is independent. The rate limiter passed in is the only
    state shared between invocations.
    """

    def __init__(self,
                 roster: ParticipantRoster,
                 token_registry: DeviceTokenRegistry,
                 transport: PushTransport,
                 rate_limiter: RateLimiter,
                 verifier: AdminBroadcastVerifier,
                 config: Optional[CompanionConfig] = None):
        """Initialize the fan-out service.

        Args:
            roster: Tour and participant lookups
            token_registry: Push tokens and preferences per user
            transport: Push gateway
            rate_limiter: Shared fixed-window limiter
            verifier: Admin broadcast verifier
            config: Budgets and message limits (defaults if None)
        """
        self._roster = roster
        self._tokens = token_registry
        self._transport = transport
        self._rate_limiter = rate_limiter
        self._verifier = verifier
        self._config = config or CompanionConfig()
        self._cleanup_tasks: Set[asyncio.Task] = set()

    async def handle(self, event: FanoutEvent) -> FanoutResult:
        """Run the fan-out pipeline for one event.

        Never raises. Every failure is logged and reported through
        ``FanoutResult.aborted_reason``.
        """
        kind_name = event.kind.value if isinstance(event.kind, EventKind) else str(event.kind)
        result = FanoutResult(kind=event.kind, tour_id=event.tour_id)
        context = {"tour_id": event.tour_id, "message_id": event.message_id,
                   "event_type": kind_name}

        with PerformanceTimer(logger, f"fanout:{kind_name}") as timer:
            try:
                if event.kind == EventKind.CHAT_MESSAGE:
                    await self._handle_chat_message(event, result, timer)
                elif event.kind == EventKind.ITINERARY_UPDATE:
                    await self._handle_itinerary_update(event, result, timer)
                else:
                    result.aborted_reason = "unsupported_event"
                    logger.error(f"Unsupported event kind: {event.kind}", extra=context)
            except (InvalidKeyError, PayloadValidationError) as e:
                result.aborted_reason = e.error_code
                logger.error(f"Rejected event: {e.message}", extra=context)
            except RateLimitExceededError as e:
                result.aborted_reason = e.error_code
                logger.warning(f"Rate limit exceeded: {e.details['rate_limit_key']}", extra=context)
            except SenderAuthorizationError as e:
                result.aborted_reason = e.error_code
                log_spoof_rejection(
                    logger, e.details["tour_id"], e.details["sender_id"], e.details["reason"],
                    claimed_admin=e.details["claimed_admin"], message_id=event.message_id)
            except TourNotFoundError as e:
                result.aborted_reason = e.error_code
                logger.error(e.message, extra=context)
            except CompanionError as e:
                result.aborted_reason = e.error_code
                logger.error(f"Fan-out failed: {e.message}", extra=context)
            except Exception as e:
                result.aborted_reason = "internal_error"
                logger.error(f"Fatal error in {kind_name} fan-out: {e}",
                             exc_info=True, extra=context)
            finally:
                result.elapsed_ms = timer.current_ms()

        return result

    async def drain_cleanup(self) -> None:
        """Wait for outstanding token cleanups (shutdown and tests)."""
        if self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks), return_exceptions=True)

    def _check_rate_limit(self, key: str, max_requests: int, window_ms: int) -> None:
        if not self._rate_limiter.allow(key, max_requests, window_ms):
            raise RateLimitExceededError(key, max_requests, window_ms)

    async def _authorize_sender(self, tour_id: str, message: ChatMessagePayload) -> bool:
        """Authorize the sender; returns whether it is a verified admin broadcast."""
        if is_admin_sender_hint(message.sender_id, self._config.admin_sender_prefixes):
            if not await self._verifier.verify(message.to_claim()):
                raise SenderAuthorizationError(
                    tour_id, message.sender_id,
                    "spoofed admin broadcast: invalid or missing senderUid",
                    claimed_admin=True)
            return True

        try:
            is_member = await self._roster.is_participant(tour_id, message.sender_id)
        except Exception as e:
            logger.error(f"Error verifying participant: {e}",
                         extra={"tour_id": tour_id, "sender_id": message.sender_id})
            is_member = False

        if not is_member:
            raise SenderAuthorizationError(
                tour_id, message.sender_id, "sender is not a participant of the tour")
        return False

    async def _handle_chat_message(self, event: FanoutEvent, result: FanoutResult,
                                   timer: PerformanceTimer) -> None:
        tour_id = require_store_key(event.tour_id, "tour_id")
        message_id = require_store_key(event.message_id, "message_id")

        message = validate_chat_payload(event.payload, self._config.max_message_length)

        self._check_rate_limit(
            f"chat_notify_{tour_id}_{message.sender_id}",
            self._config.chat_rate_limit_max,
            self._config.chat_rate_limit_window_ms)

        is_admin = await self._authorize_sender(tour_id, message)
        result.is_admin_broadcast = is_admin

        logger.info("Processing chat notification",
                    extra={"tour_id": tour_id, "sender_id": message.sender_id,
                           "is_admin": is_admin})

        tour = await self._roster.get_tour(tour_id)
        if tour is None:
            raise TourNotFoundError(tour_id)
        tour_name = tour.name or "Tour Chat"

        participants = await self._roster.list_participants(tour_id)
        if not participants:
            logger.info("No participants found", extra={"tour_id": tour_id})
            return

        category = NotificationCategory.DRIVER_UPDATES if is_admin else NotificationCategory.GROUP_CHAT
        recipients = await self._build_recipients(
            tour_id, participants, category, result, exclude_user=message.sender_id)

        messages = [
            self._shape_chat_message(recipient, tour_id, tour_name, message_id, message, is_admin)
            for recipient in recipients
        ]
        await self._dispatch(tour_id, messages, recipients, result, timer)

    async def _handle_itinerary_update(self, event: FanoutEvent, result: FanoutResult,
                                       timer: PerformanceTimer) -> None:
        tour_id = require_store_key(event.tour_id, "tour_id")

        logger.info("Processing itinerary update notification", extra={"tour_id": tour_id})

        self._check_rate_limit(
            f"itinerary_notify_{tour_id}",
            self._config.itinerary_rate_limit_max,
            self._config.itinerary_rate_limit_window_ms)

        tour = await self._roster.get_tour(tour_id)
        if tour is None:
            raise TourNotFoundError(tour_id)

        if not tour.is_active:
            logger.info("Tour is inactive, skipping notification", extra={"tour_id": tour_id})
            result.aborted_reason = "tour_inactive"
            return
        tour_name = tour.name or "Your Tour"

        participants = await self._roster.list_participants(tour_id)
        if not participants:
            logger.info("No participants for itinerary update", extra={"tour_id": tour_id})
            return

        recipients = await self._build_recipients(
            tour_id, participants, NotificationCategory.ITINERARY_CHANGES, result)

        sent_at = int(time.time() * 1000)
        messages = [
            PushMessage(
                to=recipient.token,
                title="📅 Itinerary Update",
                body=f"The schedule for {tour_name} has been updated. Tap to see the changes.",
                data={"tourId": tour_id, "screen": "Itinerary", "timestamp": sent_at},
            )
            for recipient in recipients
        ]
        await self._dispatch(tour_id, messages, recipients, result, timer)

    async def _build_recipients(self, tour_id: str, participant_ids: List[str],
                                category: NotificationCategory, result: FanoutResult,
                                exclude_user: Optional[str] = None) -> List[PushRecipient]:
        """Look up every participant concurrently and keep the eligible ones.

        Participants without a token or with the category muted are skipped.
        Invalid tokens are queued for removal without waiting on it.
        """
        candidates = [user_id for user_id in participant_ids if user_id != exclude_user]
        outcomes = await asyncio.gather(
            *(self._lookup_recipient(tour_id, user_id, category) for user_id in candidates))

        recipients: List[PushRecipient] = []
        invalid_users: List[str] = []
        for outcome in outcomes:
            if outcome is None:
                continue
            recipient, token_is_valid = outcome
            if token_is_valid:
                recipients.append(recipient)
            else:
                invalid_users.append(recipient.user_id)

        if invalid_users:
            result.invalid_token_count += len(invalid_users)
            self._schedule_token_cleanup(invalid_users)

        return recipients

    async def _lookup_recipient(self, tour_id: str, user_id: str,
                                category: NotificationCategory) -> Optional[Tuple[PushRecipient, bool]]:
        context = {"tour_id": tour_id, "user_id": user_id}
        try:
            profile = await self._tokens.get_device_profile(user_id)
        except Exception as e:
            logger.error(f"Error processing user: {e}", extra=context)
            return None

        if profile is None or not profile.push_token:
            logger.info("No token for user", extra=context)
            return None

        if not profile.wants(category):
            logger.info(f"User has muted {category.value} notifications", extra=context)
            return None

        recipient = PushRecipient(user_id=user_id, token=profile.push_token,
                                  preference_flags=profile.preferences)
        if not is_valid_push_token(profile.push_token):
            logger.warning("Invalid push token", extra=context)
            return recipient, False

        return recipient, True

    def _shape_chat_message(self, recipient: PushRecipient, tour_id: str, tour_name: str,
                            message_id: str, message: ChatMessagePayload,
                            is_admin: bool) -> PushMessage:
        body = truncate_body(message.text, self._config.notification_body_limit)

        if is_admin:
            title = f"📢 {tour_name} Announcement"
            body = ANNOUNCEMENT_PREFIX.sub("", body, count=1)
        else:
            title = f"New message in {tour_name}"
            body = f"{message.sender_name}: {body}"

        return PushMessage(
            to=recipient.token,
            title=title,
            body=body,
            data={
                "tourId": tour_id,
                "screen": "Chat",
                "messageId": message_id,
                "isAdminBroadcast": is_admin,
            },
            priority="high" if is_admin else "default",
        )

    async def _dispatch(self, tour_id: str, messages: List[PushMessage],
                        recipients: List[PushRecipient], result: FanoutResult,
                        timer: PerformanceTimer) -> None:
        """Send messages chunk by chunk and account for every ticket.

        ``timer`` is the invocation timer; the summary reports its elapsed time.
        """
        if not messages:
            logger.info("No valid recipients found", extra={"tour_id": tour_id})
            return

        result.dispatched = True
        result.recipient_count = len(messages)
        user_by_token: Dict[str, str] = {r.token: r.user_id for r in recipients}
        unregistered: List[str] = []

        for chunk in self._transport.chunk(messages):
            chunk_start = time.time()
            try:
                tickets = await self._transport.send(chunk)
            except Exception as e:
                result.error_count += len(chunk)
                logger.error(f"Error sending notification chunk: {e}",
                             extra={"tour_id": tour_id, "chunk_size": len(chunk)})
                continue

            chunk_success = 0
            chunk_errors = 0
            for message, ticket in zip(chunk, tickets):
                if ticket.is_ok:
                    chunk_success += 1
                    continue
                chunk_errors += 1
                logger.error(f"Notification ticket error: {ticket.message}",
                             extra={"tour_id": tour_id, "details": ticket.details})
                if ticket.details.get("error") == DEVICE_NOT_REGISTERED and message.to in user_by_token:
                    unregistered.append(user_by_token[message.to])

            # A short ticket list means the missing messages were not accepted
            chunk_errors += max(0, len(chunk) - len(tickets))

            result.success_count += chunk_success
            result.error_count += chunk_errors
            log_batch_metrics(logger, len(chunk), (time.time() - chunk_start) * 1000,
                              chunk_success, chunk_errors, tour_id=tour_id)

        if unregistered:
            self._schedule_token_cleanup(unregistered)

        log_fanout_summary(
            logger, result.kind.value, tour_id, result.recipient_count,
            result.success_count, result.error_count, timer.current_ms(),
            is_admin_broadcast=result.is_admin_broadcast)

    def _schedule_token_cleanup(self, user_ids: List[str]) -> None:
        for user_id in user_ids:
            task = asyncio.create_task(self._remove_invalid_token(user_id))
            self._cleanup_tasks.add(task)
            task.add_done_callback(self._cleanup_tasks.discard)

    async def _remove_invalid_token(self, user_id: str) -> None:
        try:
            await self._tokens.remove_push_token(user_id)
            logger.info("Removed invalid token", extra={"user_id": user_id})
        except Exception as e:
            logger.error(f"Failed to remove invalid token: {e}", extra={"user_id": user_id})
