"""In-memory backend tree store.

Holds the same tree the hosted realtime database holds (``tours``, ``users``,
``chats``, ``booking_identities``) and serves every backend collaborator the
fan-out and login service need. Used by the CLI against JSON snapshots and
by the tests.
"""

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exceptions import PatchConflictError
from ..interfaces import (
    AuthAuthority, BookingIdentityDirectory, DeviceTokenRegistry, ParticipantRoster
)
from ..login.results import BookingIdentity
from ..notifications.models import DeviceProfile, PrincipalRecord, TourRecord
from .patch import DELETE, PatchSet, PathLike, split_path


logger = logging.getLogger(__name__)


class InMemoryBackendStore(ParticipantRoster, DeviceTokenRegistry, AuthAuthority,
                           BookingIdentityDirectory):
    """Tree-shaped store with atomic multi-path updates."""

    def __init__(self, data: Optional[Dict[str, Any]] = None,
                 principals: Optional[Dict[str, PrincipalRecord]] = None):
        """Initialize the store.

        Args:
            data: Initial tree (copied)
            principals: Authentication records keyed by uid
        """
        self._tree: Dict[str, Any] = copy.deepcopy(data) if data else {}
        self._principals: Dict[str, PrincipalRecord] = dict(principals or {})
        self._lock = threading.RLock()

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "InMemoryBackendStore":
        """Load a store from a JSON snapshot.

        The snapshot is either the bare tree or an object with ``database``
        and ``auth`` keys, where ``auth`` maps uid to
        ``{"disabled": bool, "providerIds": [...]}``.
        """
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        if not isinstance(raw, dict):
            raise ValueError(f"Snapshot {path} must contain a JSON object")

        if "database" in raw:
            tree = raw.get("database") or {}
            auth = raw.get("auth") or {}
        else:
            tree, auth = raw, {}

        principals = {
            uid: PrincipalRecord(
                uid=uid,
                disabled=bool(record.get("disabled", False)),
                provider_ids=list(record.get("providerIds", [])),
            )
            for uid, record in auth.items()
        }
        logger.info(f"Loaded backend snapshot from {path} ({len(principals)} principals)")
        return cls(tree, principals)

    def save_json_file(self, path: Union[str, Path]) -> None:
        """Write the store back out in the ``database``/``auth`` snapshot format."""
        with self._lock:
            snapshot = {
                "database": copy.deepcopy(self._tree),
                "auth": {
                    uid: {"disabled": p.disabled, "providerIds": list(p.provider_ids)}
                    for uid, p in self._principals.items()
                },
            }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2, ensure_ascii=False)

    def read(self, path: PathLike) -> Any:
        """Return a copy of the node at ``path``, or None if absent."""
        segments = split_path(path)
        with self._lock:
            node: Any = self._tree
            for segment in segments:
                if not isinstance(node, dict) or segment not in node:
                    return None
                node = node[segment]
            return copy.deepcopy(node)

    def apply_patch(self, patch: PatchSet) -> None:
        """Apply every operation of a patch set, or none of them.

        Raises:
            PatchConflictError: If a path runs through a non-object node
        """
        with self._lock:
            staged = copy.deepcopy(self._tree)
            for segments, value in patch:
                if value is DELETE or value is None:
                    _delete_at(staged, segments)
                else:
                    _set_at(staged, segments, copy.deepcopy(value))
            self._tree = staged

        logger.debug(f"Applied patch with {len(patch)} operations")

    def add_principal(self, principal: PrincipalRecord) -> None:
        with self._lock:
            self._principals[principal.uid] = principal

    # ParticipantRoster

    async def get_tour(self, tour_id: str) -> Optional[TourRecord]:
        node = self.read(("tours", tour_id))
        if not isinstance(node, dict):
            return None
        name = node.get("name")
        return TourRecord(
            tour_id=tour_id,
            name=name if isinstance(name, str) else None,
            is_active=node.get("isActive") is not False,
        )

    async def list_participants(self, tour_id: str) -> List[str]:
        participants = self.read(("tours", tour_id, "participants"))
        if not isinstance(participants, dict):
            return []
        return [user_id for user_id, joined in participants.items() if joined]

    async def is_participant(self, tour_id: str, user_id: str) -> bool:
        return bool(self.read(("tours", tour_id, "participants", user_id)))

    # DeviceTokenRegistry

    async def get_device_profile(self, user_id: str) -> Optional[DeviceProfile]:
        node = self.read(("users", user_id))
        if not isinstance(node, dict):
            return None
        preferences = node.get("preferences")
        return DeviceProfile(
            user_id=user_id,
            push_token=node.get("pushToken"),
            preferences=preferences if isinstance(preferences, dict) else {},
        )

    async def remove_push_token(self, user_id: str) -> None:
        self.apply_patch(PatchSet().delete(("users", user_id, "pushToken")))

    # AuthAuthority

    async def get_principal(self, uid: str) -> PrincipalRecord:
        with self._lock:
            principal = self._principals.get(uid)
        if principal is None:
            raise KeyError(f"No principal with uid {uid}")
        return principal

    # BookingIdentityDirectory

    async def get_booking_identity(self, booking_ref: str) -> Optional[BookingIdentity]:
        node = self.read(("booking_identities", booking_ref))
        if not isinstance(node, dict):
            return None
        return BookingIdentity(
            booking_ref=node.get("bookingRef") or booking_ref,
            email=node.get("email"),
            tour_id=node.get("tourId"),
            tour_code=node.get("tourCode"),
        )


def _set_at(tree: Dict[str, Any], segments, value: Any) -> None:
    node = tree
    for index, segment in enumerate(segments[:-1]):
        child = node.get(segment)
        if child is None:
            child = {}
            node[segment] = child
        elif not isinstance(child, dict):
            raise PatchConflictError(
                "/".join(segments), f"{'/'.join(segments[:index + 1])} is not an object")
        node = child
    node[segments[-1]] = value


def _delete_at(tree: Dict[str, Any], segments) -> None:
    parents = []
    node: Any = tree
    for segment in segments[:-1]:
        if not isinstance(node, dict) or segment not in node:
            return
        parents.append((node, segment))
        node = node[segment]

    if isinstance(node, dict):
        node.pop(segments[-1], None)

    # Empty parents disappear, as they do in the hosted store
    while parents:
        parent, segment = parents.pop()
        if parent[segment] == {}:
            del parent[segment]
        else:
            break
