"""Unified sync status derivation.

Merges network reachability, backend health and local write-queue counts into
exactly one status descriptor. The merge is a precedence list: the first rule
that matches wins, so a snapshot can never produce two states.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union


class SyncState(Enum):
    """Overall sync states, listed from worst to best."""
    OFFLINE_NO_NETWORK = "OFFLINE_NO_NETWORK"
    ONLINE_BACKEND_DEGRADED = "ONLINE_BACKEND_DEGRADED"
    ONLINE_BACKLOG_PENDING = "ONLINE_BACKLOG_PENDING"
    ONLINE_HEALTHY = "ONLINE_HEALTHY"


class Severity(Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class StalenessBucket(Enum):
    FRESH = "fresh"
    STALE = "stale"
    OLD = "old"


@dataclass(frozen=True)
class SyncStatusDescriptor:
    """Display descriptor for one sync state."""
    state_key: SyncState
    label: str
    description: str
    severity: Severity
    icon: str
    can_retry: bool
    show_last_sync: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stateKey": self.state_key.value,
            "label": self.label,
            "description": self.description,
            "severity": self.severity.value,
            "icon": self.icon,
            "canRetry": self.can_retry,
            "showLastSync": self.show_last_sync,
        }


SYNC_STATUS_DESCRIPTORS: Mapping[SyncState, SyncStatusDescriptor] = MappingProxyType({
    SyncState.OFFLINE_NO_NETWORK: SyncStatusDescriptor(
        state_key=SyncState.OFFLINE_NO_NETWORK,
        label="Offline",
        description="No network connection. Changes are saved and will sync when online.",
        severity=Severity.CRITICAL,
        icon="wifi-off",
        can_retry=False,
        show_last_sync=True,
    ),
    SyncState.ONLINE_BACKEND_DEGRADED: SyncStatusDescriptor(
        state_key=SyncState.ONLINE_BACKEND_DEGRADED,
        label="Service issue",
        description="Connected to network, but the sync service is temporarily unavailable.",
        severity=Severity.WARNING,
        icon="cloud-alert",
        can_retry=True,
        show_last_sync=True,
    ),
    SyncState.ONLINE_BACKLOG_PENDING: SyncStatusDescriptor(
        state_key=SyncState.ONLINE_BACKLOG_PENDING,
        label="Syncing backlog",
        description="Connection restored. Pending updates are still being processed.",
        severity=Severity.INFO,
        icon="clock-sync",
        can_retry=True,
        show_last_sync=True,
    ),
    SyncState.ONLINE_HEALTHY: SyncStatusDescriptor(
        state_key=SyncState.ONLINE_HEALTHY,
        label="Up to date",
        description="Everything is synced and working normally.",
        severity=Severity.SUCCESS,
        icon="cloud-check",
        can_retry=False,
        show_last_sync=True,
    ),
})


def normalize_count(value: Any) -> int:
    """Coerce a queue count: non-numeric -> 0, negative -> 0, fractional -> truncated."""
    if isinstance(value, bool):
        return int(value)
    try:
        numeric = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(numeric):
        return 0
    return max(0, math.trunc(numeric))


@dataclass(frozen=True)
class NetworkProbe:
    is_online: bool = False


@dataclass(frozen=True)
class BackendProbe:
    is_reachable: bool = True
    is_degraded: bool = False


@dataclass(frozen=True)
class QueueCounts:
    pending: int = 0
    syncing: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.syncing + self.failed


@dataclass(frozen=True)
class SyncSnapshot:
    """Transient view of the three status signals."""
    network: NetworkProbe
    backend: BackendProbe
    queue: QueueCounts

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None) -> "SyncSnapshot":
        """Build a snapshot from loosely-typed probe output.

        A missing network section is treated as offline; a missing backend
        section as reachable and healthy.
        """
        data = data or {}
        network = data.get("network") or {}
        backend = data.get("backend") or {}
        queue = data.get("queue") or {}
        return cls(
            network=NetworkProbe(is_online=bool(network.get("isOnline", False))),
            backend=BackendProbe(
                is_reachable=backend.get("isReachable", True) is not False,
                is_degraded=bool(backend.get("isDegraded", False)),
            ),
            queue=QueueCounts(
                pending=normalize_count(queue.get("pending")),
                syncing=normalize_count(queue.get("syncing")),
                failed=normalize_count(queue.get("failed")),
            ),
        )


@dataclass(frozen=True)
class UnifiedSyncStatus:
    """A descriptor plus the signal summary it was derived from."""
    descriptor: SyncStatusDescriptor
    network_online: bool
    backend_reachable: bool
    backend_degraded: bool
    pending: int
    syncing: int
    failed: int
    last_sync_at: Optional[Union[str, datetime]] = None

    @property
    def state_key(self) -> SyncState:
        return self.descriptor.state_key

    @property
    def backend_healthy(self) -> bool:
        return self.network_online and self.backend_reachable and not self.backend_degraded

    @property
    def total(self) -> int:
        return self.pending + self.syncing + self.failed

    @property
    def has_backlog(self) -> bool:
        return self.pending > 0 or self.syncing > 0

    def to_dict(self) -> Dict[str, Any]:
        last_sync = self.last_sync_at.isoformat() if isinstance(self.last_sync_at, datetime) else self.last_sync_at
        return {
            **self.descriptor.to_dict(),
            "syncSummary": {
                "networkOnline": self.network_online,
                "backendHealthy": self.backend_healthy,
                "backendReachable": self.backend_reachable,
                "backendDegraded": self.backend_degraded,
                "pending": self.pending,
                "syncing": self.syncing,
                "failed": self.failed,
                "total": self.total,
                "hasBacklog": self.has_backlog,
                "lastSyncAt": last_sync,
            },
        }


def derive_sync_state(snapshot: SyncSnapshot) -> SyncState:
    """Pick the single overall state for a snapshot.

    Degraded outranks backlog because a backlog cannot drain while the backend
    is unhealthy. Failed items never change the state on their own.
    """
    if not snapshot.network.is_online:
        return SyncState.OFFLINE_NO_NETWORK
    if not snapshot.backend.is_reachable or snapshot.backend.is_degraded:
        return SyncState.ONLINE_BACKEND_DEGRADED
    if snapshot.queue.pending > 0 or snapshot.queue.syncing > 0:
        return SyncState.ONLINE_BACKLOG_PENDING
    return SyncState.ONLINE_HEALTHY


def get_descriptor(state: SyncState) -> SyncStatusDescriptor:
    return SYNC_STATUS_DESCRIPTORS[state]


def describe_sync_status(snapshot: SyncSnapshot,
                         last_sync_at: Optional[Union[str, datetime]] = None) -> UnifiedSyncStatus:
    """Derive the state and attach the signal summary, including the failed count."""
    return UnifiedSyncStatus(
        descriptor=get_descriptor(derive_sync_state(snapshot)),
        network_online=snapshot.network.is_online,
        backend_reachable=snapshot.backend.is_reachable,
        backend_degraded=snapshot.backend.is_degraded,
        pending=snapshot.queue.pending,
        syncing=snapshot.queue.syncing,
        failed=snapshot.queue.failed,
        last_sync_at=last_sync_at,
    )


# Staleness helpers

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse epoch milliseconds, an ISO string or a datetime into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def get_staleness_bucket(last_synced_at: Any, now: Optional[datetime] = None) -> StalenessBucket:
    parsed = parse_timestamp(last_synced_at)
    if parsed is None:
        return StalenessBucket.OLD
    now = now or datetime.now(timezone.utc)
    age_minutes = (now - parsed).total_seconds() / 60
    if age_minutes <= 15:
        return StalenessBucket.FRESH
    if age_minutes <= 24 * 60:
        return StalenessBucket.STALE
    return StalenessBucket.OLD


def get_staleness_label(last_synced_at: Any, now: Optional[datetime] = None) -> Dict[str, str]:
    """Human label for the last-sync time shown under a status descriptor."""
    parsed = parse_timestamp(last_synced_at)
    if parsed is None:
        return {"bucket": StalenessBucket.OLD.value, "label": "Not synced yet"}

    now = now or datetime.now(timezone.utc)
    bucket = get_staleness_bucket(parsed, now).value
    diff_minutes = int((now - parsed).total_seconds() // 60)
    if diff_minutes < 1:
        return {"bucket": StalenessBucket.FRESH.value, "label": "Updated just now"}
    if diff_minutes < 60:
        return {"bucket": bucket, "label": f"Updated {diff_minutes} min ago"}

    diff_hours = diff_minutes // 60
    if diff_hours < 24:
        return {"bucket": bucket, "label": f"Updated {diff_hours}h ago"}

    return {"bucket": StalenessBucket.OLD.value, "label": "Cached data from yesterday"}


# Replay summaries

SYNC_SUMMARY_SOURCES = frozenset({"unknown", "manual-refresh", "auto-replay", "startup"})


@dataclass(frozen=True)
class SyncSummary:
    synced_count: int = 0
    pending_count: int = 0
    failed_count: int = 0
    last_success_at: Optional[str] = None
    source: str = "unknown"


def build_sync_summary(data: Any = None) -> SyncSummary:
    summary = data if isinstance(data, Mapping) else {}
    source = summary.get("source")
    return SyncSummary(
        synced_count=normalize_count(summary.get("syncedCount")),
        pending_count=normalize_count(summary.get("pendingCount")),
        failed_count=normalize_count(summary.get("failedCount")),
        last_success_at=summary.get("lastSuccessAt"),
        source=source if isinstance(source, str) and source in SYNC_SUMMARY_SOURCES else "unknown",
    )


def format_sync_outcome(data: Any = None) -> str:
    summary = build_sync_summary(data)
    return f"{summary.synced_count} synced / {summary.pending_count} pending / {summary.failed_count} failed"
