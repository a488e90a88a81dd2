"""One-off data migrations against the backend tree store."""

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from tqdm import tqdm

from .memory import InMemoryBackendStore
from .patch import PatchSet


logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class MigrationReport:
    """Outcome of a broadcast timestamp normalization run."""
    scanned: int = 0
    normalized: int = 0
    days: int = 14
    dry_run: bool = True
    updates: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "normalized": self.normalized,
            "days": self.days,
            "dryRun": self.dry_run,
        }


def parse_legacy_timestamp(value: Any) -> Optional[int]:
    """Read a stored timestamp as epoch milliseconds.

    Accepts numbers, numeric strings and ISO-8601 strings. Returns None for
    anything else.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            # Naive strings were written by the web admin in UTC
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return None


def is_broadcast_message(message: Any) -> bool:
    if not isinstance(message, dict):
        return False
    if message.get("messageType") == "ADMIN_BROADCAST" or message.get("source") == "web_admin":
        return True
    text = message.get("text")
    return isinstance(text, str) and text.upper().startswith("ANNOUNCEMENT:")


def normalize_broadcast_timestamps(store: InMemoryBackendStore, days: int = 14,
                                   dry_run: bool = True, now_ms: Optional[int] = None,
                                   show_progress: bool = False) -> MigrationReport:
    """Rewrite string timestamps of recent admin broadcasts to epoch milliseconds.

    Args:
        store: Backend store holding ``chats/{tourId}/messages``
        days: Only broadcasts newer than this many days are touched (minimum 1)
        dry_run: Count what would change without writing
        now_ms: Reference time, defaults to the current time
        show_progress: Show a tqdm progress bar over tours

    Returns:
        MigrationReport with scanned and normalized counts
    """
    days = max(int(days), 1)
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    cutoff_ms = now_ms - days * DAY_MS

    report = MigrationReport(days=days, dry_run=dry_run)
    chats = store.read("chats") or {}

    for tour_id, tour_chat in tqdm(chats.items(), desc="Scanning tour chats", unit="tour",
                                   ncols=80, disable=not show_progress):
        messages = tour_chat.get("messages") if isinstance(tour_chat, dict) else None
        if not isinstance(messages, dict):
            continue

        for message_id, message in messages.items():
            report.scanned += 1
            if not is_broadcast_message(message):
                continue

            raw = message.get("timestamp")
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                continue

            timestamp_ms = parse_legacy_timestamp(raw)
            if timestamp_ms is None or timestamp_ms < cutoff_ms:
                continue

            report.updates[f"chats/{tour_id}/messages/{message_id}/timestamp"] = timestamp_ms
            report.normalized += 1

    if not dry_run and report.updates:
        patch = PatchSet()
        for path, value in report.updates.items():
            patch.set(path, value)
        store.apply_patch(patch)

    logger.info(f"Broadcast timestamp normalization: {report.normalized}/{report.scanned} "
                f"messages {'would be ' if dry_run else ''}normalized (last {days} days)")
    return report
