"""
Pytest configuration and fixtures for the test suite.
"""
import logging

import pytest
from hypothesis import settings

from tour_companion.notifications.models import PrincipalRecord, PushTicket, TicketStatus
from tour_companion.store.memory import InMemoryBackendStore
from tour_companion.sync.cache_store import OfflineCacheStore
from tour_companion.sync.storage import InMemoryKeyValueStore

# Configure Hypothesis settings for all tests
# Disable deadline to avoid flaky failures during parallel execution
settings.register_profile("default", deadline=None)
settings.load_profile("default")


def expo_token(suffix: str) -> str:
    return f"ExponentPushToken[{suffix}]"


@pytest.fixture
def backend_tree():
    """A small backend tree with one active tour and three participants."""
    return {
        "tours": {
            "tour_1": {
                "name": "Highlands Explorer",
                "isActive": True,
                "participants": {"alice": True, "bob": True, "carol": True},
            },
            "tour_closed": {
                "name": "Autumn Coast",
                "isActive": False,
                "participants": {"alice": True},
            },
        },
        "users": {
            "alice": {"pushToken": expo_token("alice")},
            "bob": {
                "pushToken": expo_token("bob"),
                "preferences": {"ops": {"group_chat": True, "driver_updates": True}},
            },
            "carol": {
                "pushToken": expo_token("carol"),
                "preferences": {"ops": {"group_chat": False, "itinerary_changes": True}},
            },
        },
        "booking_identities": {
            "ABC123": {"email": "Pax@Example.com", "tourId": "tour_1", "tourCode": "HX-2024"},
            "NOTOUR": {"email": "pax@example.com"},
        },
        "chats": {},
    }


@pytest.fixture
def backend_store(backend_tree):
    """Backend store with the sample tree and one admin principal."""
    store = InMemoryBackendStore(backend_tree)
    store.add_principal(PrincipalRecord(uid="uid_admin", provider_ids=["password"]))
    store.add_principal(PrincipalRecord(uid="uid_anon", provider_ids=[]))
    store.add_principal(PrincipalRecord(uid="uid_disabled", disabled=True, provider_ids=["password"]))
    return store


@pytest.fixture
def cache_store():
    """Offline cache store over in-memory storage."""
    return OfflineCacheStore(InMemoryKeyValueStore())


class RecordingTransport:
    """Push transport double that records batches and returns ok tickets."""

    def __init__(self, chunk_size: int = 100, fail_batches=None, ticket_factory=None):
        self.chunk_size = chunk_size
        self.fail_batches = set(fail_batches or [])
        self.ticket_factory = ticket_factory
        self.batches = []

    def chunk(self, messages):
        return [messages[i:i + self.chunk_size] for i in range(0, len(messages), self.chunk_size)]

    async def send(self, messages):
        index = len(self.batches)
        self.batches.append(list(messages))
        if index in self.fail_batches:
            raise ConnectionError("gateway unreachable")
        if self.ticket_factory is not None:
            return [self.ticket_factory(message) for message in messages]
        return [PushTicket(status=TicketStatus.OK, ticket_id=f"ticket-{i}") for i, _ in enumerate(messages)]

    @property
    def sent_messages(self):
        return [message for batch in self.batches for message in batch]


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def make_transport():
    """Factory for transports with failing batches or custom tickets."""
    return RecordingTransport


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers the CLI installs so later tests do not write to closed streams."""
    yield
    package_logger = logging.getLogger("tour_companion")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
