"""Tests for local storage and the offline cache store."""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest
from hypothesis import given, strategies as st

from tour_companion.exceptions import CacheStorageError
from tour_companion.sync.cache_store import IDENTITY_KEY, OfflineCacheStore
from tour_companion.sync.models import CachedIdentity, TourPack
from tour_companion.sync.storage import DuckDBKeyValueStore, InMemoryKeyValueStore


FIXED_NOW = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)


def sample_pack(tour_id="tour_1", role="passenger", **overrides):
    data = dict(
        tour_id=tour_id,
        role=role,
        tour={"name": "Highlands Explorer"},
        booking={"id": "ABC123", "normalizedEmail": "pax@example.com"},
        itinerary={"days": [{"day": 1, "title": "Arrival"}]},
    )
    data.update(overrides)
    return TourPack(**data)


class TestInMemoryKeyValueStore:

    def test_set_get_remove(self):
        storage = InMemoryKeyValueStore()
        storage.set_item("a", "1")
        assert storage.get_item("a") == "1"
        storage.remove_item("a")
        assert storage.get_item("a") is None

    def test_namespaces_are_isolated(self):
        first = InMemoryKeyValueStore(namespace="one")
        first.set_item("key", "value")
        assert first._items == {"one_key": "value"}

    def test_remove_missing_key_is_noop(self):
        storage = InMemoryKeyValueStore()
        storage.remove_item("missing")
        assert len(storage) == 0


class TestDuckDBKeyValueStore:
    """Tests for the DuckDB-backed storage."""

    def test_roundtrip_and_overwrite(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "cache.duckdb"
            with DuckDBKeyValueStore(db_path) as storage:
                storage.set_item("identity", '{"a": 1}')
                storage.set_item("identity", '{"a": 2}')
                assert storage.get_item("identity") == '{"a": 2}'

            # Data survives reopening
            with DuckDBKeyValueStore(db_path) as storage:
                assert storage.get_item("identity") == '{"a": 2}'
                storage.remove_item("identity")
                assert storage.get_item("identity") is None

    def test_use_without_connection_raises(self):
        storage = DuckDBKeyValueStore(Path("unused.duckdb"))
        with pytest.raises(CacheStorageError) as exc_info:
            storage.get_item("identity")
        assert exc_info.value.error_code == "cache_storage_error"
        assert exc_info.value.details["operation"] == "read"

    def test_cache_store_over_duckdb(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with DuckDBKeyValueStore(Path(tmpdir) / "cache.duckdb") as storage:
                cache = OfflineCacheStore(storage, clock=lambda: FIXED_NOW)
                cache.write_tour_pack(sample_pack())
                pack = cache.read_tour_pack("tour_1")

        assert pack is not None
        assert pack.booking["id"] == "ABC123"
        assert pack.last_synced_at == FIXED_NOW.isoformat()


class TestOfflineCacheStore:
    """Tests for identity and tour pack caching."""

    def test_identity_roundtrip_normalizes(self, cache_store):
        cache_store.write_cached_identity(
            CachedIdentity(booking_reference=" abc123 ", normalized_email=" Pax@Example.COM ",
                           tour_id="tour_1"))

        identity = cache_store.read_cached_identity()
        assert identity.booking_reference == "ABC123"
        assert identity.normalized_email == "pax@example.com"
        assert identity.tour_id == "tour_1"

    def test_clear_identity(self, cache_store):
        cache_store.write_cached_identity(CachedIdentity("ABC123", "pax@example.com"))
        cache_store.clear_cached_identity()
        assert cache_store.read_cached_identity() is None

    def test_write_tour_pack_stamps_sync_time_and_meta(self):
        cache = OfflineCacheStore(InMemoryKeyValueStore(), clock=lambda: FIXED_NOW)
        stored = cache.write_tour_pack(sample_pack(last_synced_at="2000-01-01T00:00:00"))

        assert stored.last_synced_at == FIXED_NOW.isoformat()
        meta = cache.read_meta("tour_1")
        assert meta.tour_id == "tour_1"
        assert meta.role == "passenger"
        assert meta.last_synced_at == FIXED_NOW.isoformat()

    def test_tour_pack_replaced_wholesale(self, cache_store):
        cache_store.write_tour_pack(sample_pack(itinerary={"days": [1, 2, 3]}, driver_info={"note": "x"}))
        cache_store.write_tour_pack(sample_pack(itinerary={"days": [4]}))

        pack = cache_store.read_tour_pack("tour_1")
        assert pack.itinerary == {"days": [4]}
        assert pack.driver_info == {}

    def test_roles_are_cached_separately(self, cache_store):
        cache_store.write_tour_pack(sample_pack(role="driver", driver_info={"id": "D-BUS1"}))
        assert cache_store.read_tour_pack("tour_1", "passenger") is None
        assert cache_store.read_tour_pack("tour_1", "driver").driver_info["id"] == "D-BUS1"

    def test_corrupt_entry_reads_as_absent(self):
        storage = InMemoryKeyValueStore()
        storage.set_item(IDENTITY_KEY, "{not json")
        storage.set_item("tour_pack_passenger_tour_1", json.dumps(["not", "an", "object"]))
        cache = OfflineCacheStore(storage)

        assert cache.read_cached_identity() is None
        assert cache.read_tour_pack("tour_1") is None

    def test_pack_without_tour_id_is_rejected(self, cache_store):
        with pytest.raises(CacheStorageError):
            cache_store.write_tour_pack(sample_pack(tour_id=""))

    def test_missing_tour_id_reads_none(self, cache_store):
        assert cache_store.read_tour_pack("") is None
        assert cache_store.read_meta("") is None

    @given(st.dictionaries(st.text(min_size=1, max_size=10),
                           st.one_of(st.integers(), st.text(max_size=20), st.booleans()),
                           max_size=5))
    def test_tour_payload_survives_storage_property(self, tour):
        cache = OfflineCacheStore(InMemoryKeyValueStore(), clock=lambda: FIXED_NOW)
        cache.write_tour_pack(sample_pack(tour=tour))
        assert cache.read_tour_pack("tour_1").tour == tour


class TestCacheModels:

    @pytest.mark.parametrize("section", ["tour", "booking", "itinerary", "driverInfo"])
    def test_tour_pack_rejects_non_object_sections(self, section):
        with pytest.raises(ValueError):
            TourPack.from_dict({"tourId": "T1", section: ["ABC123"]})

    def test_identity_rejects_non_object_profile(self):
        with pytest.raises(ValueError):
            CachedIdentity.from_dict({"bookingReference": "ABC123", "normalizedEmail": "a@b.c",
                                      "profile": "Alice"})

    def test_missing_sections_default_to_empty(self):
        pack = TourPack.from_dict({"tourId": "T1", "booking": None})
        assert pack.booking == {}
        assert pack.driver_info == {}
