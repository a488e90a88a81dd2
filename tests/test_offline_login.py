"""Tests for offline login resolution."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from hypothesis import given, strategies as st

from tour_companion.exceptions import CacheStorageError
from tour_companion.login.results import LoginReason, LoginRole, LoginSource
from tour_companion.sync.cache_store import OfflineCacheStore
from tour_companion.sync.models import CachedIdentity, TourPack
from tour_companion.sync.offline_login import OfflineLoginResolver, mask_identifier
from tour_companion.sync.storage import InMemoryKeyValueStore


SYNCED_AT = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_cache(clock=lambda: SYNCED_AT):
    return OfflineCacheStore(InMemoryKeyValueStore(), clock=clock)


def passenger_pack(reference="ABC123", email="pax@example.com"):
    return TourPack(
        tour_id="tour_1",
        tour={"name": "Highlands Explorer"},
        booking={"id": reference, "normalizedEmail": email},
    )


def resolver_for(cache, now=SYNCED_AT + timedelta(days=1)):
    return OfflineLoginResolver(cache, cache_ttl=timedelta(days=30), clock=lambda: now)


class TestSessionIdentity:
    """The cached session identity is consulted first and is final."""

    def test_session_match_succeeds(self):
        cache = make_cache()
        cache.write_cached_identity(CachedIdentity("ABC123", "pax@example.com", tour_id="tour_1"))

        result = resolver_for(cache).resolve(" abc123 ", "PAX@example.com ")

        assert result.success is True
        assert result.reason == LoginReason.OK
        assert result.source == LoginSource.SESSION
        assert result.type == LoginRole.PASSENGER
        assert result.booking_ref == "ABC123"
        assert result.tour_id == "tour_1"

    def test_session_mismatch_does_not_fall_through_to_pack(self):
        cache = make_cache()
        cache.write_cached_identity(CachedIdentity("ABC123", "old@example.com", tour_id="tour_1"))
        cache.write_tour_pack(passenger_pack(email="new@example.com"))

        result = resolver_for(cache).resolve("ABC123", "new@example.com")

        assert result.success is False
        assert result.reason == LoginReason.EMAIL_MISMATCH
        assert result.source == LoginSource.SESSION

    def test_session_success_attaches_cached_tour(self):
        cache = make_cache()
        cache.write_cached_identity(CachedIdentity("ABC123", "pax@example.com", tour_id="tour_1"))
        cache.write_tour_pack(passenger_pack())

        result = resolver_for(cache).resolve("ABC123", "pax@example.com")
        assert result.tour == {"name": "Highlands Explorer"}


class TestTourPackFallback:
    """Tour packs are consulted when the session identity is for another reference."""

    def test_pack_match_succeeds(self):
        cache = make_cache()
        cache.write_cached_identity(CachedIdentity("OTHER1", "other@example.com", tour_id="tour_1"))
        cache.write_tour_pack(passenger_pack())

        result = resolver_for(cache).resolve("ABC123", "pax@example.com")

        assert result.success is True
        assert result.source == LoginSource.TOUR_PACK
        assert result.tour_id == "tour_1"

    def test_pack_email_mismatch(self):
        cache = make_cache()
        cache.write_tour_pack(passenger_pack())

        result = resolver_for(cache).resolve("ABC123", "someone@example.com", tour_id="tour_1")

        assert result.reason == LoginReason.EMAIL_MISMATCH
        assert result.source == LoginSource.TOUR_PACK

    def test_expired_pack(self):
        cache = make_cache()
        cache.write_tour_pack(passenger_pack())

        result = resolver_for(cache, now=SYNCED_AT + timedelta(days=31)).resolve(
            "ABC123", "pax@example.com", tour_id="tour_1")

        assert result.success is False
        assert result.reason == LoginReason.CACHE_EXPIRED

    def test_pack_for_other_reference(self):
        cache = make_cache()
        cache.write_tour_pack(passenger_pack(reference="ZZZ999"))

        result = resolver_for(cache).resolve("ABC123", "pax@example.com", tour_id="tour_1")
        assert result.reason == LoginReason.EMAIL_NOT_CACHED


class TestDriverCodes:

    def test_driver_skips_email_check(self):
        cache = make_cache()
        cache.write_tour_pack(TourPack(tour_id="tour_1", role="driver", driver_info={"id": "D-BUS1"}))

        result = resolver_for(cache).resolve("d-bus1", "", tour_id="tour_1")

        assert result.success is True
        assert result.type == LoginRole.DRIVER
        assert result.source == LoginSource.TOUR_PACK


class TestFailures:

    def test_nothing_cached(self):
        result = resolver_for(make_cache()).resolve("ABC123", "pax@example.com")
        assert result.success is False
        assert result.reason == LoginReason.EMAIL_NOT_CACHED

    def test_empty_reference(self):
        result = resolver_for(make_cache()).resolve("   ", "pax@example.com")
        assert result.reason == LoginReason.INVALID_INPUT

    def test_storage_failure_is_internal_error(self):
        cache = Mock(spec=OfflineCacheStore)
        cache.read_cached_identity.side_effect = CacheStorageError("session_identity_v1", "read", "disk gone")

        result = OfflineLoginResolver(cache).resolve("ABC123", "pax@example.com")

        assert result.success is False
        assert result.reason == LoginReason.INTERNAL_ERROR

    def test_pack_with_malformed_booking_is_discarded(self):
        storage = InMemoryKeyValueStore()
        storage.set_item("tour_pack_passenger_T1", json.dumps({"tourId": "T1", "booking": ["ABC123"]}))

        result = resolver_for(OfflineCacheStore(storage)).resolve("ABC123", "a@b.c", tour_id="T1")

        assert result.success is False
        assert result.reason == LoginReason.EMAIL_NOT_CACHED

    def test_unexpected_storage_error_is_internal_error(self):
        storage = Mock(spec=InMemoryKeyValueStore)
        storage.get_item.side_effect = OSError("device storage unavailable")

        result = resolver_for(OfflineCacheStore(storage)).resolve("ABC123", "pax@example.com")

        assert result.success is False
        assert result.reason == LoginReason.INTERNAL_ERROR

    @given(st.text(alphabet="ABCDEFGHJKLMNPQRSTUVWXYZ23456789", min_size=3, max_size=10),
           st.emails(), st.emails())
    def test_email_mismatch_never_succeeds_property(self, reference, cached_email, typed_email):
        """A differing email is a hard failure for passengers, whatever else is cached."""
        if cached_email.strip().lower() == typed_email.strip().lower():
            return
        if reference.startswith("D-"):
            return
        cache = make_cache()
        cache.write_cached_identity(CachedIdentity(reference, cached_email, tour_id="tour_1"))
        cache.write_tour_pack(passenger_pack(reference=reference, email=typed_email.lower()))

        result = resolver_for(cache).resolve(reference, typed_email)

        assert result.success is False
        assert result.reason == LoginReason.EMAIL_MISMATCH


def test_mask_identifier():
    assert mask_identifier("ABC123") == "AB**23"
    assert mask_identifier("AB") == "**"
