"""Read-through cache of the last-known-good identity and tour packs."""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..exceptions import CacheStorageError
from ..interfaces import KeyValueStore
from .models import CachedIdentity, TourPack, TourPackMeta, SCHEMA_VERSION


logger = logging.getLogger(__name__)

IDENTITY_KEY = "session_identity_v1"


def _pack_key(tour_id: str, role: str) -> str:
    return f"tour_pack_{role}_{tour_id}"


def _meta_key(tour_id: str, role: str) -> str:
    return f"tour_pack_meta_{role}_{tour_id}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OfflineCacheStore:
    """Whole-object reads and writes of cached identity and tour packs.

    Every public call holds the store lock for its full duration, so a
    resolver never reads a pack while it is being replaced.
    """

    def __init__(self, storage: KeyValueStore, clock: Callable[[], datetime] = _utc_now):
        """Initialize the cache store.

        Args:
            storage: Key-value persistence layer
            clock: Local clock used to stamp ``last_synced_at``
        """
        self._storage = storage
        self._clock = clock
        self._lock = threading.RLock()

    def _read_json(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._storage.get_item(key)
        if raw is None:
            return None
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding unreadable cache entry {key}")
            return None
        if not isinstance(parsed, dict):
            logger.warning(f"Discarding malformed cache entry {key}")
            return None
        return parsed

    def _write_json(self, key: str, value: Dict[str, Any]) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheStorageError(key, "write", f"value is not JSON serializable: {e}") from e
        self._storage.set_item(key, raw)

    def read_cached_identity(self) -> Optional[CachedIdentity]:
        with self._lock:
            data = self._read_json(IDENTITY_KEY)
        if data is None:
            return None
        try:
            return CachedIdentity.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding invalid cached identity: {e}")
            return None

    def write_cached_identity(self, identity: CachedIdentity) -> None:
        """Persist an identity; callers only do so after a successful online verification."""
        with self._lock:
            self._write_json(IDENTITY_KEY, identity.to_dict())
        logger.info("Cached login identity updated", extra={"tour_id": identity.tour_id})

    def clear_cached_identity(self) -> None:
        with self._lock:
            self._storage.remove_item(IDENTITY_KEY)

    def read_tour_pack(self, tour_id: str, role: str = "passenger") -> Optional[TourPack]:
        if not tour_id or not role:
            return None
        with self._lock:
            data = self._read_json(_pack_key(tour_id, role))
        if data is None:
            return None
        try:
            return TourPack.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding invalid tour pack for {tour_id}: {e}")
            return None

    def write_tour_pack(self, pack: TourPack) -> TourPack:
        """Replace a tour pack wholesale and stamp its sync time from the local clock.

        Args:
            pack: Freshly fetched pack; any previously cached pack is discarded

        Returns:
            The pack as stored, with ``last_synced_at`` set
        """
        if not pack.tour_id or not pack.role:
            raise CacheStorageError(_pack_key(pack.tour_id, pack.role), "write",
                                    "tour_id and role are required")

        synced_at = self._clock().isoformat()
        stored = TourPack.from_dict({**pack.to_dict(), "lastSyncedAt": synced_at,
                                     "schemaVersion": SCHEMA_VERSION})
        meta = TourPackMeta(tour_id=pack.tour_id, role=pack.role, last_synced_at=synced_at)

        with self._lock:
            self._write_json(_pack_key(pack.tour_id, pack.role), stored.to_dict())
            self._write_json(_meta_key(pack.tour_id, pack.role), meta.to_dict())

        logger.info(f"Tour pack cached for {pack.tour_id} ({pack.role})",
                    extra={"tour_id": pack.tour_id})
        return stored

    def read_meta(self, tour_id: str, role: str = "passenger") -> Optional[TourPackMeta]:
        if not tour_id or not role:
            return None
        with self._lock:
            data = self._read_json(_meta_key(tour_id, role))
        if data is None:
            return None
        try:
            return TourPackMeta.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding invalid tour pack meta for {tour_id}: {e}")
            return None
