"""Property-based tests for unified sync status derivation."""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st

from tour_companion.sync.status import (
    SYNC_STATUS_DESCRIPTORS, Severity, StalenessBucket, SyncSnapshot, SyncState,
    build_sync_summary, derive_sync_state, describe_sync_status, format_sync_outcome,
    get_descriptor, get_staleness_bucket, get_staleness_label, normalize_count
)


# Strategies for generating test data
@st.composite
def snapshot_strategy(draw):
    """Generate raw probe dictionaries, including junk queue counts."""
    count = st.one_of(
        st.integers(min_value=-5, max_value=50),
        st.floats(allow_nan=True, allow_infinity=True),
        st.text(max_size=4),
        st.none(),
    )
    return {
        "network": {"isOnline": draw(st.booleans())},
        "backend": {"isReachable": draw(st.booleans()), "isDegraded": draw(st.booleans())},
        "queue": {"pending": draw(count), "syncing": draw(count), "failed": draw(count)},
    }


def snapshot(online=True, reachable=True, degraded=False, pending=0, syncing=0, failed=0):
    return SyncSnapshot.from_dict({
        "network": {"isOnline": online},
        "backend": {"isReachable": reachable, "isDegraded": degraded},
        "queue": {"pending": pending, "syncing": syncing, "failed": failed},
    })


class TestDeriveSyncState:
    """Tests for the precedence merge."""

    @given(snapshot_strategy())
    def test_exactly_one_known_state_property(self, raw):
        """Every snapshot maps to exactly one of the four states."""
        state = derive_sync_state(SyncSnapshot.from_dict(raw))
        assert state in set(SyncState)

    @given(snapshot_strategy())
    def test_offline_always_wins_property(self, raw):
        """With the network down nothing else matters."""
        raw["network"]["isOnline"] = False
        assert derive_sync_state(SyncSnapshot.from_dict(raw)) == SyncState.OFFLINE_NO_NETWORK

    @given(st.integers(min_value=1, max_value=1000), st.integers(min_value=0, max_value=1000))
    def test_degraded_outranks_backlog_property(self, pending, syncing):
        state = derive_sync_state(snapshot(degraded=True, pending=pending, syncing=syncing))
        assert state == SyncState.ONLINE_BACKEND_DEGRADED

    def test_unreachable_backend_is_degraded(self):
        assert derive_sync_state(snapshot(reachable=False)) == SyncState.ONLINE_BACKEND_DEGRADED

    def test_syncing_alone_is_backlog(self):
        assert derive_sync_state(snapshot(syncing=1)) == SyncState.ONLINE_BACKLOG_PENDING

    def test_failed_items_do_not_change_state(self):
        assert derive_sync_state(snapshot(failed=7)) == SyncState.ONLINE_HEALTHY

    def test_missing_network_section_is_offline(self):
        assert derive_sync_state(SyncSnapshot.from_dict({})) == SyncState.OFFLINE_NO_NETWORK

    def test_healthy(self):
        assert derive_sync_state(snapshot()) == SyncState.ONLINE_HEALTHY


class TestDescriptors:
    """Tests for the descriptor table."""

    def test_every_descriptor_shows_last_sync(self):
        assert len(SYNC_STATUS_DESCRIPTORS) == 4
        for descriptor in SYNC_STATUS_DESCRIPTORS.values():
            assert descriptor.show_last_sync is True

    def test_descriptor_table_is_read_only(self):
        with pytest.raises(TypeError):
            SYNC_STATUS_DESCRIPTORS[SyncState.ONLINE_HEALTHY] = None

    def test_offline_descriptor(self):
        descriptor = get_descriptor(SyncState.OFFLINE_NO_NETWORK)
        assert descriptor.label == "Offline"
        assert descriptor.severity == Severity.CRITICAL
        assert descriptor.can_retry is False

    def test_descriptor_keys_match_states(self):
        for state, descriptor in SYNC_STATUS_DESCRIPTORS.items():
            assert descriptor.state_key == state

    def test_describe_reports_failed_separately(self):
        status = describe_sync_status(snapshot(pending=2, failed=3), "2024-05-01T10:00:00Z")
        data = status.to_dict()

        assert status.state_key == SyncState.ONLINE_BACKLOG_PENDING
        assert data["stateKey"] == "ONLINE_BACKLOG_PENDING"
        assert data["syncSummary"]["failed"] == 3
        assert data["syncSummary"]["total"] == 5
        assert data["syncSummary"]["hasBacklog"] is True
        assert data["syncSummary"]["lastSyncAt"] == "2024-05-01T10:00:00Z"

    def test_backend_healthy_requires_network(self):
        status = describe_sync_status(snapshot(online=False))
        assert status.backend_healthy is False


class TestNormalizeCount:

    @pytest.mark.parametrize("value,expected", [
        (3, 3), (-2, 0), (2.9, 2), ("4", 4), ("abc", 0), (None, 0),
        (float("nan"), 0), (float("inf"), 0),
    ])
    def test_normalize_count(self, value, expected):
        assert normalize_count(value) == expected

    @given(st.one_of(st.integers(), st.floats(), st.text(), st.none()))
    def test_normalized_count_never_negative_property(self, value):
        assert normalize_count(value) >= 0


class TestStaleness:
    """Tests for last-sync staleness buckets and labels."""

    NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_buckets(self):
        assert get_staleness_bucket(self.NOW - timedelta(minutes=15), self.NOW) == StalenessBucket.FRESH
        assert get_staleness_bucket(self.NOW - timedelta(minutes=16), self.NOW) == StalenessBucket.STALE
        assert get_staleness_bucket(self.NOW - timedelta(hours=24), self.NOW) == StalenessBucket.STALE
        assert get_staleness_bucket(self.NOW - timedelta(hours=25), self.NOW) == StalenessBucket.OLD
        assert get_staleness_bucket(None, self.NOW) == StalenessBucket.OLD
        assert get_staleness_bucket("not a date", self.NOW) == StalenessBucket.OLD

    def test_epoch_millis_accepted(self):
        last = int((self.NOW - timedelta(minutes=5)).timestamp() * 1000)
        assert get_staleness_bucket(last, self.NOW) == StalenessBucket.FRESH

    def test_labels(self):
        assert get_staleness_label(self.NOW, self.NOW)["label"] == "Updated just now"
        assert get_staleness_label(self.NOW - timedelta(minutes=42), self.NOW)["label"] == "Updated 42 min ago"
        assert get_staleness_label(self.NOW - timedelta(hours=3), self.NOW)["label"] == "Updated 3h ago"
        assert get_staleness_label(self.NOW - timedelta(days=2), self.NOW)["label"] == "Cached data from yesterday"
        assert get_staleness_label(None, self.NOW) == {"bucket": "old", "label": "Not synced yet"}

    def test_iso_string_with_z_suffix(self):
        label = get_staleness_label("2024-05-01T11:30:00Z", self.NOW)
        assert label == {"bucket": "stale", "label": "Updated 30 min ago"}


class TestSyncSummary:

    def test_format_sync_outcome(self):
        outcome = format_sync_outcome({"syncedCount": 3, "pendingCount": 1, "failedCount": 0})
        assert outcome == "3 synced / 1 pending / 0 failed"

    def test_unknown_source_is_normalized(self):
        summary = build_sync_summary({"source": "cron", "syncedCount": "2"})
        assert summary.source == "unknown"
        assert summary.synced_count == 2

    def test_known_source_kept(self):
        assert build_sync_summary({"source": "manual-refresh"}).source == "manual-refresh"

    def test_non_mapping_input(self):
        assert format_sync_outcome(None) == "0 synced / 0 pending / 0 failed"
